"""EMA 与 MACD。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from trendwarden.common.models.models import Candle


def ema_values(values: Sequence[float], period: int) -> list[float]:
    """对任意数值序列计算 EMA。

    Notes
    -----
    - 乘数为 `2 / (period + 1)`；
    - 首个值直接取原值，样本不足 `period - 1` 个之前用累计简单平均作种子，
      之后进入指数递推 `ema = (x - prev) * k + prev`。
    """
    if period <= 0:
        raise ValueError("EMA period must be > 0")
    k = 2.0 / (period + 1)
    out: list[float] = []
    running = 0.0
    for i, x in enumerate(values):
        running += x
        if i == 0:
            out.append(float(x))
        elif i < period - 1:
            out.append(running / (i + 1))
        else:
            prev = out[i - 1]
            out.append((x - prev) * k + prev)
    return out


def ema(candles: Sequence[Candle], period: int) -> list[float]:
    return ema_values([c.close for c in candles], period)


@dataclass(frozen=True)
class MACDResult:
    macd: list[float]
    signal: list[float]
    histogram: list[float]


def macd(
    candles: Sequence[Candle],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDResult:
    """MACD = 快 EMA − 慢 EMA；信号线是 MACD 的 EMA（以首个 MACD 值为种子）。"""
    if signal_period <= 0:
        raise ValueError("MACD signal period must be > 0")
    fast = ema(candles, fast_period)
    slow = ema(candles, slow_period)
    line = [f - s for f, s in zip(fast, slow)]

    k = 2.0 / (signal_period + 1)
    signal: list[float] = []
    for i, m in enumerate(line):
        if i == 0:
            signal.append(m)
        else:
            signal.append((m - signal[i - 1]) * k + signal[i - 1])

    hist = [m - s for m, s in zip(line, signal)]
    return MACDResult(macd=line, signal=signal, histogram=hist)
