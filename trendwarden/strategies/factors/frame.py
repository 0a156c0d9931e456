"""指标表：把一组 K 线的全部指标汇总为 DataFrame，便于检查与导出。"""

from __future__ import annotations

from typing import Sequence

import pandas as pd

from trendwarden.common.config.schema import TrendConfig
from trendwarden.common.models.models import Candle
from trendwarden.strategies.factors.adx import adx
from trendwarden.strategies.factors.atr import atr
from trendwarden.strategies.factors.ema import ema, macd
from trendwarden.strategies.factors.rsi import rsi

FRAME_COLUMNS = [
    "close",
    "ema_fast",
    "ema_slow",
    "rsi",
    "atr",
    "adx",
    "plus_di",
    "minus_di",
    "macd",
    "macd_signal",
    "macd_hist",
]


def indicator_frame(candles: Sequence[Candle], cfg: TrendConfig | None = None) -> pd.DataFrame:
    """按趋势配置计算全部指标，索引为 UTC 时间。"""
    cfg = cfg or TrendConfig()
    if not candles:
        return pd.DataFrame(columns=FRAME_COLUMNS)

    adx_res = adx(candles, 14)
    macd_res = macd(candles)
    df = pd.DataFrame(
        {
            "close": [c.close for c in candles],
            "ema_fast": ema(candles, cfg.fast_period),
            "ema_slow": ema(candles, cfg.slow_period),
            "rsi": rsi(candles, 14),
            "atr": atr(candles, 14),
            "adx": adx_res.adx,
            "plus_di": adx_res.plus_di,
            "minus_di": adx_res.minus_di,
            "macd": macd_res.macd,
            "macd_signal": macd_res.signal,
            "macd_hist": macd_res.histogram,
        },
        index=pd.to_datetime([c.timestamp for c in candles], unit="ms", utc=True),
    )
    df.index.name = "timestamp"
    return df
