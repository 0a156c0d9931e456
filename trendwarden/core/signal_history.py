"""按币种保存最近的趋势信号（有界环形缓冲，满了丢弃最旧的）。"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Optional

from trendwarden.common.models.models import TrendSignal


@dataclass(frozen=True)
class SignalRecord:
    symbol: str
    at: datetime
    signal: TrendSignal


class SignalHistory:
    def __init__(self, capacity: int = 100):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._records: dict[str, Deque[SignalRecord]] = {}

    def record(self, symbol: str, signal: TrendSignal, at: datetime) -> SignalRecord:
        rec = SignalRecord(symbol, at, signal)
        self._records.setdefault(symbol, deque(maxlen=self.capacity)).append(rec)
        return rec

    def latest(self, symbol: str) -> Optional[SignalRecord]:
        buf = self._records.get(symbol)
        return buf[-1] if buf else None

    def recent(self, symbol: str, n: int | None = None) -> list[SignalRecord]:
        buf = list(self._records.get(symbol, ()))
        return buf if n is None else buf[-n:]

    def symbols(self) -> list[str]:
        return sorted(self._records)

    def __len__(self) -> int:
        return sum(len(b) for b in self._records.values())
