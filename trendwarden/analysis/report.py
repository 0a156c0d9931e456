"""回测与 Walk-Forward 报告（rich 表格渲染为文本）。"""

from __future__ import annotations

from datetime import datetime, timezone
from io import StringIO
from typing import Iterable

from rich import box
from rich.console import Console
from rich.table import Table

from trendwarden.core.backtest_engine import BacktestResult
from trendwarden.core.walkforward_engine import Verdict, WalkForwardResult

REPORT_WIDTH = 100

_VERDICT_TAG = {
    Verdict.PASS: "[PASS]",
    Verdict.WARNING: "[WARN]",
    Verdict.FAIL: "[FAIL]",
}


def _fmt_ts(ts: int | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _render(renderables: Iterable[object]) -> str:
    buf = StringIO()
    console = Console(file=buf, width=REPORT_WIDTH, no_color=True, highlight=False)
    for item in renderables:
        console.print(item, markup=False)
    return buf.getvalue()


def format_backtest_report(result: BacktestResult) -> str:
    table = Table(title=f"📊 Backtest {result.label} ({result.symbol})", box=box.ROUNDED, show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Period", f"{_fmt_ts(result.start_ts)} -> {_fmt_ts(result.end_ts)}")
    table.add_row("Initial balance", f"{result.initial_balance:,.2f}")
    table.add_row("Final balance", f"{result.final_balance:,.2f}")
    table.add_row("Total return", f"{result.total_return:,.2f} ({result.total_return_pct:.2f}%)")
    table.add_row("Trades", str(result.total_trades))
    table.add_row("Wins / losses", f"{result.winning_trades} / {result.losing_trades}")
    table.add_row("Win rate", f"{result.win_rate:.1f}%")
    table.add_row("Max drawdown", f"{result.max_drawdown:,.2f} ({result.max_drawdown_pct:.2f}%)")
    return _render([table])


def format_walkforward_report(result: WalkForwardResult) -> str:
    """Walk-Forward 文本报告：结论、OOS 汇总、逐窗口明细、过拟合警告。"""
    agg = result.aggregate
    cfg = result.config
    header = (
        f"WALK-FORWARD ANALYSIS: {result.label}\n"
        f"Symbol: {result.symbol} | Candles: {result.total_candles} | Windows: {len(result.windows)} | "
        f"IS {cfg.in_sample_period} / OOS {cfg.out_of_sample_period}\n\n"
        f"{_VERDICT_TAG[agg.verdict]} {agg.verdict_reason}"
    )

    summary = Table(title="OOS aggregate metrics", box=box.SIMPLE, show_header=False)
    summary.add_column("Metric", style="cyan")
    summary.add_column("Value", justify="right")
    summary.add_row("Total return", f"{agg.oos_return_pct:.2f}%")
    summary.add_row("Win rate", f"{agg.oos_win_rate:.1f}%")
    summary.add_row("Total trades", str(agg.total_trades))
    summary.add_row("Sharpe (per window)", f"{agg.oos_sharpe:.2f}")
    summary.add_row("Max drawdown", f"{agg.oos_max_drawdown_pct:.2f}%")
    summary.add_row("Avg degradation", f"{agg.avg_degradation:.1f}%")

    windows = Table(title="Window breakdown", box=box.SIMPLE_HEAD)
    windows.add_column("Window", justify="right")
    windows.add_column("IS return", justify="right")
    windows.add_column("OOS return", justify="right")
    windows.add_column("OOS trades", justify="right")
    windows.add_column("Degradation", justify="right")
    windows.add_column("Flag")
    for w in result.windows:
        windows.add_row(
            str(w.index + 1),
            f"{w.is_result.total_return_pct:.2f}%",
            f"{w.oos_result.total_return_pct:.2f}%",
            str(w.oos_result.total_trades),
            f"{w.degradation_pct:.1f}%",
            "OVERFIT" if w.is_overfit else "",
        )

    parts: list[object] = [header, summary, windows]
    if agg.overfit_reasons:
        parts.append("Overfitting warnings:\n" + "\n".join(f"  - {r}" for r in agg.overfit_reasons))
    return _render(parts)


def print_report(text: str, console: Console | None = None) -> None:
    (console or Console()).print(text, highlight=False, markup=False)
