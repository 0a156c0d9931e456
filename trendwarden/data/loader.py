"""K 线数据加载。

CSV 列：`timestamp, open, high, low, close[, volume]`，
timestamp 可以是毫秒/秒时间戳或 ISO-8601 字符串。
输出统一为按时间升序、时间戳唯一的 `Candle` 列表。
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd

from trendwarden.common.models.models import Candle
from trendwarden.common.utils.logging import setup_logger

REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close")

logger = setup_logger("data-loader")


def _to_epoch_ms(col: pd.Series) -> pd.Series:
    if pd.api.types.is_numeric_dtype(col):
        values = col.astype("int64")
        # 秒级时间戳统一换算为毫秒
        return values.where(values > 10**12, values * 1000)
    parsed = pd.to_datetime(col, utc=True)
    return (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)


def load_candles_csv(path: str | Path) -> list[Candle]:
    """读取 CSV 并返回升序 K 线。

    Raises
    ------
    FileNotFoundError
        文件不存在。
    ValueError
        缺少必需列。
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Candle file not found: {p}")
    df = pd.read_csv(p)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle CSV missing columns: {missing}")
    if "volume" not in df.columns:
        df["volume"] = 0.0

    df["timestamp"] = _to_epoch_ms(df["timestamp"])
    before = len(df)
    df = df.sort_values("timestamp", kind="stable").drop_duplicates(subset="timestamp", keep="last")
    if len(df) != before:
        logger.warning("Dropped %d duplicate candles from %s", before - len(df), p)

    return [
        Candle(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]


def candles_from_ohlcv(rows: Iterable[Sequence[float]]) -> list[Candle]:
    """ccxt OHLCV 行（`[ts, o, h, l, c, v]`）转 K 线；按时间排序。"""
    candles = [
        Candle(
            timestamp=int(r[0]),
            open=float(r[1]),
            high=float(r[2]),
            low=float(r[3]),
            close=float(r[4]),
            volume=float(r[5] or 0.0) if len(r) > 5 else 0.0,
        )
        for r in rows
    ]
    candles.sort(key=lambda c: c.timestamp)
    return candles


def ensure_ordered(candles: Sequence[Candle]) -> None:
    """校验时间戳严格递增。

    Raises
    ------
    ValueError
        出现乱序或重复时间戳。
    """
    for prev, cur in zip(candles, candles[1:]):
        if cur.timestamp <= prev.timestamp:
            raise ValueError(f"Candles not strictly increasing at {cur.timestamp} (prev {prev.timestamp})")
