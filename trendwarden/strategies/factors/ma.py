"""简单移动平均（SMA）。"""

from __future__ import annotations

from typing import Sequence

from trendwarden.common.models.models import Candle


def sma(candles: Sequence[Candle], period: int) -> list[float]:
    """尾部 `period` 根收盘价的算术平均；预热期内输出 0。"""
    if period <= 0:
        raise ValueError("SMA period must be > 0")
    closes = [c.close for c in candles]
    out: list[float] = []
    for i in range(len(closes)):
        if i < period - 1:
            out.append(0.0)
        else:
            out.append(sum(closes[i - period + 1 : i + 1]) / period)
    return out
