from __future__ import annotations

import json
from pathlib import Path

import pandas as pd
import pytest

import trendwarden.research.experiment as experiment
from conftest import make_candles
from trendwarden.alerts.notifier import LogNotifier
from trendwarden.common.models.models import Candle
from trendwarden.execution.exchange import CloseAllResult


def _write_csv(path: Path, candles: list[Candle]) -> Path:
    pd.DataFrame([c.__dict__ for c in candles]).to_csv(path, index=False)
    return path


@pytest.fixture
def data_csv(tmp_path: Path, trending_candles) -> Path:
    return _write_csv(tmp_path / "btc_1h.csv", trending_candles)


@pytest.fixture
def cfg_path(tmp_path: Path) -> Path:
    p = tmp_path / "config.yml"
    p.write_text(
        "log_level: WARNING\n"
        "walkforward:\n"
        "  in_sample_period: 60\n"
        "  out_of_sample_period: 30\n"
        "  min_trades: 1\n"
        "backtest:\n"
        "  initial_balance: 1000\n"
        "  strategy:\n"
        "    type: sma_crossover\n"
        "    short_window: 5\n"
        "    long_window: 20\n"
        "bot:\n"
        "  pairs: [BTC/USDT:USDT]\n"
        "  scan_interval_s: 0.01\n"
    )
    return p


def test_backtest_writes_artifacts(cfg_path, data_csv, tmp_path):
    out = tmp_path / "results"
    summary = experiment.run_experiment(str(cfg_path), task="backtest", data=str(data_csv), output_dir=str(out))
    assert summary["label"] == "sma_crossover"
    assert summary["candles"] == 160
    assert summary["total_trades"] > 0

    run_dirs = list(out.iterdir())
    assert len(run_dirs) == 1 and run_dirs[0].name.startswith("backtest_")
    saved = json.loads((run_dirs[0] / "summary.json").read_text())
    assert saved["total_trades"] == summary["total_trades"]
    assert "Backtest sma_crossover" in (run_dirs[0] / "report.txt").read_text()


def test_backtest_strategy_override(cfg_path, data_csv):
    summary = experiment.run_experiment(str(cfg_path), task="backtest", data=str(data_csv), strategy="rsi_reversal")
    assert summary["label"] == "rsi_reversal"


def test_walkforward_summary_has_verdict(cfg_path, data_csv):
    summary = experiment.run_experiment(str(cfg_path), task="walkforward", data=str(data_csv))
    assert summary["windows"] == (160 - 90) // 30 + 1
    assert summary["verdict"] in {"PASS", "WARNING", "FAIL"}
    assert summary["verdict_reason"]


def test_analyze_reports_current_signal(cfg_path, data_csv):
    summary = experiment.run_experiment(str(cfg_path), task="analyze", data=str(data_csv))
    assert summary["action"] in {"LONG", "SHORT", "CLOSE_LONG", "CLOSE_SHORT", "HOLD"}
    assert summary["reason"]
    assert summary["symbol"] == "BTC/USDT:USDT"


def test_analyze_labels_requested_symbol(cfg_path, data_csv):
    summary = experiment.run_experiment(str(cfg_path), task="analyze", data=str(data_csv), symbol="ETH/USDT:USDT")
    assert summary["symbol"] == "ETH/USDT:USDT"


def test_unknown_task(cfg_path):
    with pytest.raises(ValueError, match="Unknown task"):
        experiment.run_experiment(str(cfg_path), task="sweep")


class _OfflineExchange:
    def get_candles(self, symbol, interval, limit):
        return make_candles([100.0] * 60)

    def place_order(self, order):
        return "x"

    def cancel_all_orders(self, symbol):
        pass

    def close_all_positions(self):
        return CloseAllResult()

    def set_leverage(self, symbol, leverage):
        pass

    def fetch_equity(self):
        return 200.0


def test_runner_runs_bounded_dry_run(monkeypatch, cfg_path):
    monkeypatch.setattr(experiment, "build_exchange", lambda cfg: _OfflineExchange())
    status = experiment.run_runner(str(cfg_path), max_scans=2)
    assert status["scans"] == 2
    assert status["kill_switch"] is False
    assert status["latest_signals"]["BTC/USDT:USDT"]["action"] == "HOLD"


def test_build_exchange_wraps_paper_in_dry_run(monkeypatch):
    from trendwarden.common.config.schema import MainConfig
    from trendwarden.execution.paper_broker import PaperExchange

    sentinel = object()
    monkeypatch.setattr(experiment.CcxtFuturesClient, "from_config", classmethod(lambda cls, cfg: sentinel))
    ex = experiment.build_exchange(MainConfig())
    assert isinstance(ex, PaperExchange)
    assert ex.market_data is sentinel
    assert ex.fetch_equity() == 200.0

    live = experiment.build_exchange(MainConfig.model_validate({"bot": {"dry_run": False}}))
    assert live is sentinel


def test_runner_closes_notifier(monkeypatch, cfg_path):
    closed = []

    class _Notifier(LogNotifier):
        def close(self):
            closed.append(True)

    monkeypatch.setattr(experiment, "build_exchange", lambda cfg: _OfflineExchange())
    monkeypatch.setattr(experiment, "build_notifier", lambda cfg: _Notifier())
    experiment.run_runner(str(cfg_path), max_scans=1)
    assert closed == [True]
