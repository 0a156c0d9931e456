from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from conftest import make_candles
from trendwarden.strategies.factors import adx, atr, ema, ema_values, macd, rsi, sma, true_range
from trendwarden.strategies.factors.frame import FRAME_COLUMNS, indicator_frame


def test_all_indicators_are_index_aligned():
    candles = make_candles([100 + (i % 7) for i in range(60)])
    n = len(candles)
    res = adx(candles, 14)
    m = macd(candles)
    for series in (sma(candles, 5), ema(candles, 10), rsi(candles), atr(candles), res.adx, res.plus_di, m.histogram):
        assert len(series) == n


def test_sma_warmup_zero_then_trailing_mean():
    out = sma(make_candles([1, 2, 3, 4, 5]), 3)
    assert out[:2] == [0.0, 0.0]
    assert out[2:] == pytest.approx([2.0, 3.0, 4.0])


def test_sma_rejects_non_positive_period():
    with pytest.raises(ValueError):
        sma(make_candles([1, 2]), 0)


def test_ema_seeds_with_running_average_then_recurs():
    values = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    out = ema_values(values, 4)
    k = 2 / 5
    assert out[0] == 1.0
    assert out[1] == pytest.approx(1.5)
    assert out[2] == pytest.approx(2.0)
    assert out[3] == pytest.approx((4.0 - out[2]) * k + out[2])
    assert out[5] == pytest.approx((6.0 - out[4]) * k + out[4])


def test_ema_of_constant_series_is_constant():
    out = ema(make_candles([42.0] * 30), 10)
    assert np.allclose(out, 42.0)


def test_rsi_neutral_during_warmup_and_100_without_losses():
    out = rsi(make_candles([float(i) for i in range(1, 25)]), 14)
    assert out[:14] == [50.0] * 14
    assert out[14:] == [100.0] * (len(out) - 14)


def test_rsi_stays_in_range():
    closes = [100, 101, 99, 102, 98, 103, 97, 104, 96, 105, 95, 106, 94, 107, 93, 108, 92]
    out = np.array(rsi(make_candles(closes), 5))
    assert ((out >= 0) & (out <= 100)).all()


def test_true_range_uses_previous_close():
    candles = make_candles([10, 12], spread=0.0)
    tr = true_range(candles)
    assert tr[0] == 0.0
    assert tr[1] == pytest.approx(2.0)


def test_atr_switches_to_wilder_smoothing_after_period():
    candles = make_candles([100 + (i % 3) * 2 for i in range(30)])
    tr = true_range(candles)
    out = atr(candles, 5)
    assert out[0] == 0.0
    assert out[5] == pytest.approx(sum(tr[1:6]) / 5)
    assert out[6] == pytest.approx((out[5] * 4 + tr[6]) / 5)


def test_adx_short_series_returns_zeros():
    res = adx(make_candles([1, 2, 3, 4, 5]), 14)
    assert res.adx == [0.0] * 5
    assert res.plus_di == [0.0] * 5
    assert res.minus_di == [0.0] * 5


def test_adx_flat_series_converges_to_zero(flat_candles):
    res = adx(flat_candles, 14)
    assert res.adx[-1] < 1.0
    assert res.plus_di[-1] == pytest.approx(res.minus_di[-1])


def test_adx_strong_uptrend_reads_trending():
    candles = make_candles([100 + 2 * i for i in range(80)], spread=0.5)
    res = adx(candles, 14)
    assert res.adx[-1] > 25
    assert res.plus_di[-1] > res.minus_di[-1]


def test_macd_histogram_is_macd_minus_signal():
    candles = make_candles([100 + np.sin(i / 5) * 5 for i in range(80)])
    res = macd(candles)
    assert res.signal[0] == res.macd[0]
    assert np.allclose(res.histogram, np.array(res.macd) - np.array(res.signal))


def test_indicator_frame_columns_and_index():
    candles = make_candles([100 + i for i in range(70)])
    df = indicator_frame(candles)
    assert list(df.columns) == FRAME_COLUMNS
    assert len(df) == 70
    assert df.index.name == "timestamp"
    assert df.index[0] == pd.Timestamp("2024-01-01", tz="UTC")
    assert df["close"].iloc[-1] == 169.0


def test_indicator_frame_empty():
    df = indicator_frame([])
    assert df.empty
    assert list(df.columns) == FRAME_COLUMNS
