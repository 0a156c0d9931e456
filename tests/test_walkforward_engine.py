from __future__ import annotations

import math

import pytest

from conftest import make_candles
from trendwarden.common.config.schema import WalkForwardConfig
from trendwarden.common.models.models import StrategySignal, TradeAction
from trendwarden.core.walkforward_engine import (
    Verdict,
    WalkForwardEngine,
    decide_verdict,
    degradation_pct,
    is_window_overfit,
    window_sharpe,
)


def _hold(candles, position):
    return StrategySignal(TradeAction.HOLD)


def _buy_first(candles, position):
    return StrategySignal(TradeAction.BUY if len(candles) == 1 else TradeAction.HOLD)


def _engine(**overrides) -> WalkForwardEngine:
    params = {"in_sample_period": 100, "out_of_sample_period": 50, "initial_balance": 1000.0}
    params.update(overrides)
    return WalkForwardEngine(WalkForwardConfig(**params))


@pytest.mark.parametrize("n", [150, 175, 199, 200, 260, 400])
def test_window_count(n):
    engine = _engine()
    assert len(engine.window_bounds(n)) == (n - 150) // 50 + 1


def test_windows_slide_by_oos_length_without_overlap():
    bounds = _engine().window_bounds(300)
    assert bounds[0] == (0, 100, 100, 150)
    assert bounds[1] == (50, 150, 150, 200)
    for prev, cur in zip(bounds, bounds[1:]):
        assert cur[2] == prev[3]


def test_zero_windows_is_fail_with_reason():
    res = _engine().run(make_candles([100.0] * 120), _hold, "BTC/USDT:USDT", "short")
    assert res.windows == ()
    assert res.aggregate.verdict is Verdict.FAIL
    assert "need 150 candles, have 120" in res.aggregate.verdict_reason
    assert res.aggregate.overfit_reasons == ("No walk-forward windows generated",)


def test_run_labels_and_spans():
    candles = make_candles([100.0 + i * 0.1 for i in range(250)])
    res = _engine().run(candles, _hold, "BTC/USDT:USDT", "wf")
    assert len(res.windows) == 3
    w = res.windows[1]
    assert w.is_result.label == "wf_IS_1"
    assert w.oos_result.label == "wf_OOS_1"
    assert w.oos_result.start_ts == candles[w.oos_start].timestamp
    assert res.total_candles == 250


def test_hold_strategy_warns_on_too_few_trades():
    res = _engine().run(make_candles([100.0] * 300), _hold, "X", "hold")
    assert res.aggregate.total_trades == 0
    assert res.aggregate.verdict is Verdict.WARNING
    assert res.aggregate.verdict_reason.startswith("Only 0 trades")


def test_oos_returns_compound():
    candles = make_candles([100.0 + i for i in range(300)])
    res = _engine(min_trades=0, max_sharpe_threshold=1e9).run(candles, _buy_first, "X", "up")
    expected = 1.0
    for w in res.windows:
        expected *= 1 + w.oos_result.total_return_pct / 100
    assert res.aggregate.oos_return_pct == pytest.approx((expected - 1) * 100)
    assert res.aggregate.total_trades == len(res.windows)


def test_degradation_pct():
    assert degradation_pct(10.0, 5.0) == pytest.approx(50.0)
    assert degradation_pct(0.0, -5.0) == 0.0
    assert degradation_pct(-10.0, -20.0) == pytest.approx(100.0)


def test_window_overfit_rules():
    assert is_window_overfit(10.0, 2.0, 80.0)
    assert is_window_overfit(60.0, -1.0, 10.0)
    assert not is_window_overfit(60.0, 1.0, 10.0)
    assert not is_window_overfit(10.0, 5.0, 50.0)


def test_window_sharpe_population_stdev():
    assert window_sharpe([]) == 0.0
    assert window_sharpe([5.0, 5.0]) == 0.0
    assert window_sharpe([1.0, 3.0]) == pytest.approx(2.0 * math.sqrt(2))


def _verdict(**overrides):
    params = dict(
        overfit_reasons=(),
        total_trades=50,
        min_trades=30,
        oos_return_pct=10.0,
        oos_win_rate=55.0,
        avg_degradation=10.0,
        window_count=4,
    )
    params.update(overrides)
    return decide_verdict(**params)


def test_verdict_order():
    # 过拟合优先于交易数不足
    verdict, reason = _verdict(overfit_reasons=("x",), total_trades=1)
    assert verdict is Verdict.FAIL and reason.startswith("Overfitting detected")
    # 交易数不足优先于亏损
    verdict, _ = _verdict(total_trades=5, oos_return_pct=-5.0)
    assert verdict is Verdict.WARNING
    verdict, reason = _verdict(oos_return_pct=-5.0, avg_degradation=40.0)
    assert verdict is Verdict.FAIL and "unprofitable" in reason
    verdict, reason = _verdict(avg_degradation=40.0)
    assert verdict is Verdict.WARNING and "degradation" in reason
    verdict, reason = _verdict()
    assert verdict is Verdict.PASS
    assert reason == "Strategy validated: 10.00% OOS return, 55.0% win rate, 50 trades across 4 windows."


def test_suspicious_sharpe_flags_overfit():
    candles = make_candles([100.0 + i for i in range(300)])
    res = _engine(min_trades=0, max_sharpe_threshold=0.5).run(candles, _buy_first, "X", "up")
    assert res.aggregate.verdict is Verdict.FAIL
    assert any("suspiciously high" in r for r in res.aggregate.overfit_reasons)
