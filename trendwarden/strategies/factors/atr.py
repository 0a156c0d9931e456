"""平均真实波幅（ATR，Wilder 平滑）。"""

from __future__ import annotations

from typing import Sequence

from trendwarden.common.models.models import Candle


def true_range(candles: Sequence[Candle]) -> list[float]:
    """逐根真实波幅；第 0 根没有前收盘价，记为 0。"""
    out = [0.0] if candles else []
    for i in range(1, len(candles)):
        cur = candles[i]
        prev_close = candles[i - 1].close
        out.append(
            max(
                cur.high - cur.low,
                abs(cur.high - prev_close),
                abs(cur.low - prev_close),
            )
        )
    return out


def atr(candles: Sequence[Candle], period: int = 14) -> list[float]:
    """ATR。

    Notes
    -----
    - `atr[0] = 0`；
    - `i < period`：当前 TR 与此前已有 ATR 值的简单平均；
    - `i == period`：前 `period` 个 TR（下标 1..period）的均值；
    - 之后：`atr[i] = (atr[i-1] * (period-1) + tr[i]) / period`。
    """
    if period <= 0:
        raise ValueError("ATR period must be > 0")
    if not candles:
        return []
    tr = true_range(candles)
    out = [0.0]
    for i in range(1, len(candles)):
        if i < period:
            window = [tr[i]] + out[max(1, i - period + 1) : i]
            out.append(sum(window) / len(window))
        elif i == period:
            out.append(sum(tr[1 : period + 1]) / period)
        else:
            out.append((out[i - 1] * (period - 1) + tr[i]) / period)
    return out
