import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from trendwarden.common.models.models import Candle  # noqa: E402

HOUR_MS = 3_600_000
T0_MS = 1_704_067_200_000  # 2024-01-01 00:00 UTC


def make_candles(closes, spread: float = 1.0, start_ms: int = T0_MS) -> list[Candle]:
    """按收盘价序列构造 1h K 线：open=前收，high/low = max/min ± spread。"""
    out = []
    prev = closes[0]
    for i, c in enumerate(closes):
        out.append(
            Candle(
                timestamp=start_ms + i * HOUR_MS,
                open=float(prev),
                high=float(max(prev, c) + spread),
                low=float(min(prev, c) - spread),
                close=float(c),
                volume=1.0,
            )
        )
        prev = c
    return out


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 1, 3, 12, 0, tzinfo=timezone.utc)  # 周三

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def send(self, event) -> None:
        self.events.append(event)

    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def flat_candles() -> list[Candle]:
    return make_candles([100.0] * 120, spread=0.5)


@pytest.fixture
def trending_candles() -> list[Candle]:
    # 先横盘再单边上涨，再回落：覆盖金叉与死叉
    closes = [100.0] * 40 + [100.0 + 1.5 * i for i in range(1, 61)] + [190.0 - 2.0 * i for i in range(1, 61)]
    return make_candles(closes)
