from __future__ import annotations

from io import StringIO

from rich.console import Console

from conftest import make_candles
from trendwarden.analysis.report import format_backtest_report, format_walkforward_report, print_report
from trendwarden.common.config.schema import WalkForwardConfig
from trendwarden.common.models.models import StrategySignal, TradeAction
from trendwarden.core.backtest_engine import Backtester
from trendwarden.core.walkforward_engine import WalkForwardEngine


def _hold(candles, position):
    return StrategySignal(TradeAction.HOLD)


def test_backtest_report_contains_key_metrics():
    res = Backtester(1000).run(make_candles([100, 101, 102]), _hold, "BTC/USDT:USDT", "demo")
    text = format_backtest_report(res)
    assert "Backtest demo (BTC/USDT:USDT)" in text
    assert "1,000.00" in text
    assert "2024-01-01 00:00 -> 2024-01-01 02:00" in text


def test_walkforward_report_shows_verdict_tag_and_windows():
    cfg = WalkForwardConfig(in_sample_period=100, out_of_sample_period=50)
    res = WalkForwardEngine(cfg).run(make_candles([100.0] * 250), _hold, "ETH/USDT:USDT", "wf")
    text = format_walkforward_report(res)
    assert "WALK-FORWARD ANALYSIS: wf" in text
    assert "[WARN] Only 0 trades" in text
    assert "Window breakdown" in text
    assert "Overfitting warnings" not in text


def test_walkforward_report_lists_overfit_reasons_when_no_windows():
    cfg = WalkForwardConfig(in_sample_period=100, out_of_sample_period=50)
    res = WalkForwardEngine(cfg).run(make_candles([100.0] * 20), _hold, "ETH/USDT:USDT", "tiny")
    text = format_walkforward_report(res)
    assert "[FAIL] Insufficient data" in text
    assert "- No walk-forward windows generated" in text


def test_print_report_writes_plain_text():
    buf = StringIO()
    print_report("[PASS] ok", Console(file=buf, no_color=True))
    assert buf.getvalue().strip() == "[PASS] ok"
