"""离线实验与实盘入口：backtest / walkforward / analyze / runner。

指定 `output_dir` 时，把本次结果落盘到 `<output_dir>/<task>_<utc_ts>/`：
- summary.json
- report.txt
"""

from __future__ import annotations

import asyncio
import json
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from trendwarden.alerts.notifier import build_notifier
from trendwarden.analysis.report import format_backtest_report, format_walkforward_report, print_report
from trendwarden.common.config.config_loader import load_config
from trendwarden.common.config.schema import MainConfig
from trendwarden.common.utils.logging import set_log_level, setup_logger
from trendwarden.core.backtest_engine import Backtester
from trendwarden.core.trading_engine import TradingEngine
from trendwarden.core.walkforward_engine import WalkForwardEngine
from trendwarden.data.loader import load_candles_csv
from trendwarden.execution.ccxt_client import CcxtFuturesClient
from trendwarden.execution.exchange import ExchangeClient
from trendwarden.execution.paper_broker import PaperExchange
from trendwarden.strategies.factors.frame import indicator_frame
from trendwarden.strategies.presets import build_strategy
from trendwarden.strategies.trend import analyze_trend

logger = setup_logger("experiment")


def _load(cfg_path: str) -> MainConfig:
    cfg = load_config(cfg_path)
    set_log_level(cfg.log_level)
    return cfg


def _write_artifacts(output_dir: str | None, task: str, summary: dict[str, Any], report: str) -> Path | None:
    if not output_dir:
        return None
    run_dir = Path(output_dir) / f"{task}_{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}"
    run_dir.mkdir(parents=True, exist_ok=True)
    (run_dir / "summary.json").write_text(json.dumps(summary, indent=2, default=str), encoding="utf-8")
    (run_dir / "report.txt").write_text(report, encoding="utf-8")
    logger.info("Artifacts written to %s", run_dir)
    return run_dir


def _strategy_cfg(cfg: MainConfig, strategy: str | None) -> Any:
    if strategy is None:
        return cfg.backtest.strategy
    if strategy == cfg.backtest.strategy.type:
        return cfg.backtest.strategy
    return {"type": strategy}


def run_backtest(
    cfg_path: str,
    *,
    data: str,
    symbol: str = "BTC/USDT:USDT",
    strategy: str | None = None,
    output_dir: str | None = None,
) -> dict[str, Any]:
    cfg = _load(cfg_path)
    candles = load_candles_csv(data)
    strat_cfg = _strategy_cfg(cfg, strategy)
    label = strategy or cfg.backtest.strategy.type
    result = Backtester(cfg.backtest.initial_balance).run(candles, build_strategy(strat_cfg), symbol, label)

    report = format_backtest_report(result)
    print_report(report)
    summary = {
        "symbol": result.symbol,
        "label": result.label,
        "candles": len(candles),
        "final_balance": result.final_balance,
        "total_return_pct": result.total_return_pct,
        "total_trades": result.total_trades,
        "win_rate": result.win_rate,
        "max_drawdown_pct": result.max_drawdown_pct,
    }
    _write_artifacts(output_dir, "backtest", summary, report)
    return summary


def run_walkforward(
    cfg_path: str,
    *,
    data: str,
    symbol: str = "BTC/USDT:USDT",
    strategy: str | None = None,
    output_dir: str | None = None,
) -> dict[str, Any]:
    cfg = _load(cfg_path)
    candles = load_candles_csv(data)
    strat_cfg = _strategy_cfg(cfg, strategy)
    label = strategy or cfg.backtest.strategy.type
    result = WalkForwardEngine(cfg.walkforward).run(candles, build_strategy(strat_cfg), symbol, label)

    report = format_walkforward_report(result)
    print_report(report)
    agg = result.aggregate
    summary = {
        "symbol": result.symbol,
        "label": result.label,
        "windows": len(result.windows),
        "verdict": agg.verdict.value,
        "verdict_reason": agg.verdict_reason,
        "oos_return_pct": agg.oos_return_pct,
        "oos_win_rate": agg.oos_win_rate,
        "oos_sharpe": agg.oos_sharpe,
        "total_trades": agg.total_trades,
        "avg_degradation": agg.avg_degradation,
        "overfit_reasons": list(agg.overfit_reasons),
    }
    _write_artifacts(output_dir, "walkforward", summary, report)
    return summary


def run_analyze(cfg_path: str, *, data: str, symbol: str = "BTC/USDT:USDT", rows: int = 5) -> dict[str, Any]:
    cfg = _load(cfg_path)
    candles = load_candles_csv(data)
    sig = analyze_trend(candles, cfg.trend)
    frame = indicator_frame(candles, cfg.trend)
    print_report(frame.tail(rows).round(4).to_string())
    print_report(f"{symbol} {sig.action.value} ({sig.confidence:.0f}) {sig.regime.value}: {sig.reason}")
    return {
        "symbol": symbol,
        "action": sig.action.value,
        "confidence": sig.confidence,
        "regime": sig.regime.value,
        "adx": sig.adx_value,
        "stop_loss": sig.stop_loss,
        "take_profit": sig.take_profit,
        "reason": sig.reason,
    }


def build_exchange(cfg: MainConfig) -> ExchangeClient:
    client = CcxtFuturesClient.from_config(cfg.exchange)
    if cfg.bot.dry_run:
        return PaperExchange(client, equity=cfg.bot.starting_equity)
    return client


def run_runner(cfg_path: str, *, max_scans: int | None = None) -> dict[str, Any]:
    """启动交易循环；SIGINT/SIGTERM 触发优雅停止。"""
    cfg = _load(cfg_path)
    if not cfg.bot.dry_run:
        logger.warning("⚠️ LIVE TRADING ENABLED!")
    notifier = build_notifier(cfg.notifier)
    engine = TradingEngine(cfg, build_exchange(cfg), notifier, max_scans=max_scans)

    async def _main() -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, engine.stop)
            except NotImplementedError:
                pass
        return await engine.run()

    try:
        return asyncio.run(_main())
    finally:
        notifier.close()


def run_experiment(cfg_path: str, task: str, **kwargs: Any) -> dict[str, Any]:
    """按 task 分发离线实验。"""
    if task == "backtest":
        return run_backtest(cfg_path, **kwargs)
    if task == "walkforward":
        return run_walkforward(cfg_path, **kwargs)
    if task == "analyze":
        return run_analyze(cfg_path, **kwargs)
    raise ValueError(f"Unknown task: {task}")
