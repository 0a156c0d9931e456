from __future__ import annotations

from pathlib import Path

import pytest

from conftest import HOUR_MS, T0_MS, make_candles
from trendwarden.data.loader import candles_from_ohlcv, ensure_ordered, load_candles_csv


def _write(tmp_path: Path, text: str) -> Path:
    p = tmp_path / "candles.csv"
    p.write_text(text)
    return p


def test_load_ms_timestamps_sorted_and_deduplicated(tmp_path: Path):
    p = _write(
        tmp_path,
        "timestamp,open,high,low,close,volume\n"
        f"{T0_MS + HOUR_MS},2,3,1,2.5,10\n"
        f"{T0_MS},1,2,0.5,1.5,5\n"
        f"{T0_MS + HOUR_MS},2,3,1,2.8,12\n",
    )
    candles = load_candles_csv(p)
    assert [c.timestamp for c in candles] == [T0_MS, T0_MS + HOUR_MS]
    assert candles[0].close == 1.5
    assert candles[1].close == 2.8


def test_load_second_timestamps_are_converted(tmp_path: Path):
    p = _write(tmp_path, f"timestamp,open,high,low,close\n{T0_MS // 1000},1,2,0.5,1.5\n")
    candles = load_candles_csv(p)
    assert candles[0].timestamp == T0_MS
    assert candles[0].volume == 0.0


def test_load_iso_timestamps_and_mixed_case_headers(tmp_path: Path):
    p = _write(
        tmp_path,
        "Timestamp,Open,High,Low,Close,Volume\n"
        "2024-01-01T00:00:00Z,1,2,0.5,1.5,5\n"
        "2024-01-01T01:00:00Z,1.5,2.5,1,2,6\n",
    )
    candles = load_candles_csv(p)
    assert [c.timestamp for c in candles] == [T0_MS, T0_MS + HOUR_MS]


def test_missing_columns_and_file(tmp_path: Path):
    p = _write(tmp_path, "timestamp,open,close\n1,2,3\n")
    with pytest.raises(ValueError, match="missing columns"):
        load_candles_csv(p)
    with pytest.raises(FileNotFoundError):
        load_candles_csv(tmp_path / "nope.csv")


def test_candles_from_ohlcv_sorts_rows():
    rows = [[T0_MS + HOUR_MS, 2, 3, 1, 2.5, 10], [T0_MS, 1, 2, 0.5, 1.5, None]]
    candles = candles_from_ohlcv(rows)
    assert [c.timestamp for c in candles] == [T0_MS, T0_MS + HOUR_MS]
    assert candles[0].volume == 0.0


def test_ensure_ordered():
    candles = make_candles([1, 2, 3])
    ensure_ordered(candles)
    with pytest.raises(ValueError):
        ensure_ordered([candles[1], candles[0]])
    with pytest.raises(ValueError):
        ensure_ordered([candles[0], candles[0]])
