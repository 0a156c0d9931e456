from __future__ import annotations

import pytest

from conftest import make_candles
from trendwarden.common.models.models import StrategySignal, TradeAction
from trendwarden.core.backtest_engine import Backtester
from trendwarden.strategies.presets import sma_crossover


def _scripted(actions: dict[int, TradeAction]):
    """按 K 线下标返回预设动作的策略。"""

    def _strategy(candles, position):
        return StrategySignal(actions.get(len(candles) - 1, TradeAction.HOLD))

    return _strategy


def test_empty_candles_neutral_result():
    res = Backtester(1000).run([], _scripted({}), "BTC/USDT:USDT", "empty")
    assert res.total_trades == 0
    assert res.final_balance == 1000
    assert res.total_return_pct == 0
    assert res.start_ts is None
    assert res.equity_curve == (1000.0,)


def test_buy_then_sell_all_in_all_out():
    candles = make_candles([100, 110, 120, 90])
    res = Backtester(1000).run(candles, _scripted({0: TradeAction.BUY, 2: TradeAction.SELL}), "X", "t")
    assert res.total_trades == 2
    assert res.trades[0].quantity == pytest.approx(10.0)
    assert res.trades[1].value == pytest.approx(1200.0)
    assert res.final_balance == pytest.approx(1200.0)
    assert res.total_return_pct == pytest.approx(20.0)
    assert (res.winning_trades, res.losing_trades) == (1, 0)
    assert res.win_rate == 100.0
    assert res.equity_curve == pytest.approx((1000.0, 1000.0, 1100.0, 1200.0, 1200.0))


def test_open_position_marked_to_market_at_end():
    candles = make_candles([100, 80])
    res = Backtester(1000).run(candles, _scripted({0: TradeAction.BUY}), "X", "t")
    assert res.final_balance == pytest.approx(800.0)
    assert res.total_trades == 1
    assert res.winning_trades + res.losing_trades == 0
    assert res.max_drawdown == pytest.approx(200.0)
    assert res.max_drawdown_pct == pytest.approx(20.0)


def test_losing_round_trip_counted():
    candles = make_candles([100, 90, 95])
    res = Backtester(1000).run(candles, _scripted({0: TradeAction.BUY, 1: TradeAction.SELL}), "X", "t")
    assert (res.winning_trades, res.losing_trades) == (0, 1)
    assert res.final_balance == pytest.approx(900.0)


def test_ignores_sell_while_flat_and_buy_while_long():
    candles = make_candles([100, 100, 100])
    res = Backtester(1000).run(
        candles,
        _scripted({0: TradeAction.SELL, 1: TradeAction.BUY, 2: TradeAction.BUY}),
        "X",
        "t",
    )
    assert res.total_trades == 1


def test_strategy_only_sees_candles_so_far():
    seen = []

    def _strategy(candles, position):
        seen.append(len(candles))
        return StrategySignal(TradeAction.HOLD)

    Backtester().run(make_candles([1, 2, 3, 4]), _strategy, "X", "t")
    assert seen == [1, 2, 3, 4]


def test_deterministic_results(trending_candles):
    bt = Backtester(10000)
    a = bt.run(trending_candles, sma_crossover(5, 20), "BTC/USDT:USDT", "det")
    b = bt.run(trending_candles, sma_crossover(5, 20), "BTC/USDT:USDT", "det")
    assert a == b
    assert a.total_trades > 0


def test_rejects_non_positive_balance():
    with pytest.raises(ValueError):
        Backtester(0)
