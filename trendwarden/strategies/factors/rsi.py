"""相对强弱指数（RSI）。"""

from __future__ import annotations

from typing import Sequence

from trendwarden.common.models.models import Candle


def rsi(candles: Sequence[Candle], period: int = 14) -> list[float]:
    """尾部 `period` 个涨跌幅的平均涨幅/平均跌幅比。

    预热期内输出 50（中性）；平均跌幅为 0 时输出 100。
    """
    if period <= 0:
        raise ValueError("RSI period must be > 0")
    out: list[float] = []
    gains: list[float] = []
    losses: list[float] = []
    for i, c in enumerate(candles):
        if i == 0:
            out.append(50.0)
            gains.append(0.0)
            losses.append(0.0)
            continue

        change = c.close - candles[i - 1].close
        gains.append(change if change > 0 else 0.0)
        losses.append(-change if change < 0 else 0.0)

        if i < period:
            out.append(50.0)
            continue

        avg_gain = sum(gains[i - period + 1 : i + 1]) / period
        avg_loss = sum(losses[i - period + 1 : i + 1]) / period
        if avg_loss == 0:
            out.append(100.0)
        else:
            rs = avg_gain / avg_loss
            out.append(100.0 - 100.0 / (1.0 + rs))
    return out
