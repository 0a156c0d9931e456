from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

import main as app_main


@pytest.fixture
def calls(monkeypatch):
    recorded: list[dict[str, Any]] = []

    def _fake_run_experiment(cfg_path: str, task: str, **kwargs):
        recorded.append({"cfg_path": cfg_path, "task": task, "kwargs": kwargs})
        return {"verdict": "WARNING"} if task == "walkforward" else {"ok": True}

    monkeypatch.setattr(app_main, "run_experiment", _fake_run_experiment)
    return recorded


def test_main_backtest_delegates_to_experiment(calls):
    res = app_main.main(["--config", "config/other.yml", "backtest", "--data", "d.csv"])
    assert res == {"ok": True}
    assert calls == [
        {
            "cfg_path": "config/other.yml",
            "task": "backtest",
            "kwargs": {"data": "d.csv", "symbol": "BTC/USDT:USDT", "strategy": None, "output_dir": None},
        }
    ]


def test_main_accepts_config_after_subcommand(calls):
    app_main.main(["walkforward", "--data", "d.csv", "--config", "config/wf.yml", "--strategy", "sma_crossover"])
    assert calls[0]["cfg_path"] == "config/wf.yml"
    assert calls[0]["kwargs"]["strategy"] == "sma_crossover"


def test_main_analyze_passes_symbol(calls):
    app_main.main(["analyze", "--data", "d.csv", "--symbol", "ETH/USDT:USDT"])
    assert calls == [
        {"cfg_path": "config/config.yml", "task": "analyze", "kwargs": {"data": "d.csv", "symbol": "ETH/USDT:USDT"}}
    ]


def test_main_runner_uses_run_runner(monkeypatch):
    seen = {}

    def _fake_runner(cfg_path, max_scans=None):
        seen.update(cfg_path=cfg_path, max_scans=max_scans)
        return {"scans": max_scans}

    monkeypatch.setattr(app_main, "run_runner", _fake_runner)
    assert app_main.main(["--config", "config/config.yml", "runner", "--max-scans", "12"]) == {"scans": 12}
    assert seen == {"cfg_path": "config/config.yml", "max_scans": 12}


def test_default_task_is_runner():
    args = app_main.parse_args([])
    assert args.task == "runner"
    assert args.config == "config/config.yml"


def test_data_is_required_for_backtest():
    with pytest.raises(SystemExit):
        app_main.parse_args(["backtest"])


@pytest.mark.parametrize(
    "result, code",
    [({"verdict": "PASS"}, 0), ({"verdict": "WARNING"}, 1), ({"verdict": "FAIL"}, 2), ({"ok": True}, 0), (None, 0)],
)
def test_exit_code(result, code):
    assert app_main.exit_code(result) == code


@pytest.mark.parametrize("verdict, code", [("PASS", 0), ("WARNING", 1), ("FAIL", 2)])
def test_cli_exit_code_follows_walkforward_verdict(monkeypatch, verdict, code):
    monkeypatch.setattr(app_main, "run_experiment", lambda cfg_path, task, **kw: {"verdict": verdict})
    assert app_main.cli(["walkforward", "--data", "d.csv"]) == code


def test_cli_returns_zero_for_backtest(calls):
    assert app_main.cli(["backtest", "--data", "d.csv"]) == 0


def test_console_script_points_at_cli():
    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    assert 'trendwarden = "main:cli"' in pyproject.read_text(encoding="utf-8")
