"""指标库。

所有函数都接收按时间升序的 K 线序列，返回与输入等长、逐位对齐的序列。
"""

from trendwarden.strategies.factors.adx import ADXResult, adx
from trendwarden.strategies.factors.atr import atr, true_range
from trendwarden.strategies.factors.ema import MACDResult, ema, ema_values, macd
from trendwarden.strategies.factors.ma import sma
from trendwarden.strategies.factors.rsi import rsi

__all__ = [
    "ADXResult",
    "MACDResult",
    "adx",
    "atr",
    "ema",
    "ema_values",
    "macd",
    "rsi",
    "sma",
    "true_range",
]
