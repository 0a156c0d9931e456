"""Walk-Forward 引擎。

在完整 K 线序列上滚动切分 IS/OOS 窗口，用*同一组固定参数*分别回测，
检查参数在时间维度上的稳健性（不是逐窗口重新优化）。

窗口推进：
- IS = `[start, start + IS)`，OOS 紧随其后 `[start + IS, start + IS + OOS)`；
- 每轮 `start += OOS`，相邻窗口的 OOS 区间不重叠；
- OOS 实际长度不足目标长度的 `min_oos_fraction`（默认 50%）时丢弃该窗口。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from statistics import mean, pstdev
from typing import Sequence

from trendwarden.common.config.schema import WalkForwardConfig
from trendwarden.common.models.models import Candle
from trendwarden.common.utils.logging import setup_logger
from trendwarden.core.backtest_engine import Backtester, BacktestResult
from trendwarden.strategies.trend import Strategy

OVERFIT_DEGRADATION_PCT = 70.0
OVERFIT_IS_RETURN_PCT = 50.0
OVERFIT_WINDOW_SHARE = 0.5
OVERFIT_AVG_DEGRADATION_PCT = 50.0
WARN_AVG_DEGRADATION_PCT = 30.0


class Verdict(str, Enum):
    PASS = "PASS"
    WARNING = "WARNING"
    FAIL = "FAIL"


@dataclass(frozen=True)
class WalkForwardWindow:
    index: int
    is_start: int
    is_end: int
    oos_start: int
    oos_end: int
    is_result: BacktestResult
    oos_result: BacktestResult
    degradation_pct: float
    is_overfit: bool


@dataclass(frozen=True)
class WalkForwardAggregate:
    total_trades: int
    oos_win_rate: float
    oos_return_pct: float
    oos_sharpe: float
    oos_max_drawdown_pct: float
    avg_degradation: float
    is_overfit: bool
    overfit_reasons: tuple[str, ...]
    passes_min_trades: bool
    verdict: Verdict
    verdict_reason: str


@dataclass(frozen=True)
class WalkForwardResult:
    label: str
    symbol: str
    config: WalkForwardConfig
    windows: tuple[WalkForwardWindow, ...]
    aggregate: WalkForwardAggregate
    total_candles: int = 0


def degradation_pct(is_return_pct: float, oos_return_pct: float) -> float:
    """IS→OOS 收益衰减百分比；IS 收益为 0 时记为 0。"""
    if is_return_pct == 0:
        return 0.0
    return (is_return_pct - oos_return_pct) / abs(is_return_pct) * 100.0


def is_window_overfit(is_return_pct: float, oos_return_pct: float, degradation: float) -> bool:
    return degradation > OVERFIT_DEGRADATION_PCT or (
        is_return_pct > OVERFIT_IS_RETURN_PCT and oos_return_pct < 0
    )


def window_sharpe(returns_pct: Sequence[float]) -> float:
    """按窗口 OOS 收益率计算的 Sharpe 近似值。

    Notes
    -----
    mean / 总体标准差 * sqrt(窗口数)。样本通常只有几个窗口，
    只作粗略的“过好”信号，不等同于日收益 Sharpe。
    """
    if not returns_pct:
        return 0.0
    sigma = pstdev(returns_pct)
    if sigma == 0:
        return 0.0
    return mean(returns_pct) / sigma * math.sqrt(len(returns_pct))


def decide_verdict(
    *,
    overfit_reasons: Sequence[str],
    total_trades: int,
    min_trades: int,
    oos_return_pct: float,
    oos_win_rate: float,
    avg_degradation: float,
    window_count: int,
) -> tuple[Verdict, str]:
    """按固定顺序判定，命中第一条即返回。"""
    if overfit_reasons:
        return Verdict.FAIL, f"Overfitting detected: {'; '.join(overfit_reasons)}"
    if total_trades < min_trades:
        return (
            Verdict.WARNING,
            f"Only {total_trades} trades across OOS windows (need {min_trades}+). "
            "Results not statistically significant.",
        )
    if oos_return_pct < 0:
        return Verdict.FAIL, f"Strategy is unprofitable in out-of-sample testing ({oos_return_pct:.2f}%)"
    if avg_degradation > WARN_AVG_DEGRADATION_PCT:
        return (
            Verdict.WARNING,
            f"Strategy profitable but significant IS-to-OOS degradation ({avg_degradation:.1f}%). "
            "Consider simpler parameters.",
        )
    return (
        Verdict.PASS,
        f"Strategy validated: {oos_return_pct:.2f}% OOS return, {oos_win_rate:.1f}% win rate, "
        f"{total_trades} trades across {window_count} windows.",
    )


class WalkForwardEngine:
    """滚动窗口验证引擎。

    Parameters
    ----------
    cfg:
        窗口长度与判定阈值；为空时使用默认值。
    """

    def __init__(self, cfg: WalkForwardConfig | None = None):
        self.cfg = cfg or WalkForwardConfig()
        self.logger = setup_logger("walkforward")

    def window_bounds(self, n_candles: int) -> list[tuple[int, int, int, int]]:
        """返回全部有效窗口的 (is_start, is_end, oos_start, oos_end)。"""
        is_len = self.cfg.in_sample_period
        oos_len = self.cfg.out_of_sample_period
        bounds: list[tuple[int, int, int, int]] = []
        start = 0
        while start + is_len + oos_len <= n_candles:
            is_end = start + is_len
            oos_end = min(is_end + oos_len, n_candles)
            if oos_end - is_end < oos_len * self.cfg.min_oos_fraction:
                break
            bounds.append((start, is_end, is_end, oos_end))
            start += oos_len
        return bounds

    def run(self, candles: Sequence[Candle], strategy: Strategy, symbol: str, label: str) -> WalkForwardResult:
        """执行 walk-forward 验证。

        Returns
        -------
        WalkForwardResult
            总是带有 verdict 与原因；数据不足时为 FAIL，不抛异常。
        """
        windows: list[WalkForwardWindow] = []
        for idx, (is_start, is_end, oos_start, oos_end) in enumerate(self.window_bounds(len(candles))):
            is_res = Backtester(self.cfg.initial_balance).run(
                candles[is_start:is_end], strategy, symbol, f"{label}_IS_{idx}"
            )
            oos_res = Backtester(self.cfg.initial_balance).run(
                candles[oos_start:oos_end], strategy, symbol, f"{label}_OOS_{idx}"
            )
            deg = degradation_pct(is_res.total_return_pct, oos_res.total_return_pct)
            windows.append(
                WalkForwardWindow(
                    index=idx,
                    is_start=is_start,
                    is_end=is_end,
                    oos_start=oos_start,
                    oos_end=oos_end,
                    is_result=is_res,
                    oos_result=oos_res,
                    degradation_pct=deg,
                    is_overfit=is_window_overfit(is_res.total_return_pct, oos_res.total_return_pct, deg),
                )
            )
            self.logger.debug(
                "window %d: IS %.2f%% OOS %.2f%% degradation %.1f%%",
                idx,
                is_res.total_return_pct,
                oos_res.total_return_pct,
                deg,
            )

        aggregate = self._aggregate(windows, len(candles))
        self.logger.info(
            "Walk-forward %s on %s: %d windows, verdict %s",
            label,
            symbol,
            len(windows),
            aggregate.verdict.value,
        )
        return WalkForwardResult(
            label=label,
            symbol=symbol,
            config=self.cfg,
            windows=tuple(windows),
            aggregate=aggregate,
            total_candles=len(candles),
        )

    def _aggregate(self, windows: Sequence[WalkForwardWindow], n_candles: int) -> WalkForwardAggregate:
        if not windows:
            need = self.cfg.in_sample_period + self.cfg.out_of_sample_period
            return WalkForwardAggregate(
                total_trades=0,
                oos_win_rate=0.0,
                oos_return_pct=0.0,
                oos_sharpe=0.0,
                oos_max_drawdown_pct=0.0,
                avg_degradation=0.0,
                is_overfit=True,
                overfit_reasons=("No walk-forward windows generated",),
                passes_min_trades=False,
                verdict=Verdict.FAIL,
                verdict_reason=(
                    f"Insufficient data for walk-forward analysis (need {need} candles, have {n_candles})"
                ),
            )

        oos = [w.oos_result for w in windows]
        total_trades = sum(r.total_trades for r in oos)
        wins = sum(r.winning_trades for r in oos)
        losses = sum(r.losing_trades for r in oos)

        compounded = 1.0
        for r in oos:
            compounded *= 1.0 + r.total_return_pct / 100.0
        oos_return_pct = (compounded - 1.0) * 100.0
        oos_win_rate = wins / (wins + losses) * 100.0 if wins + losses > 0 else 0.0
        avg_degradation = mean(w.degradation_pct for w in windows)
        sharpe = window_sharpe([r.total_return_pct for r in oos])

        reasons: list[str] = []
        overfit_windows = sum(1 for w in windows if w.is_overfit)
        if overfit_windows > len(windows) * OVERFIT_WINDOW_SHARE:
            reasons.append(f"{overfit_windows}/{len(windows)} windows show overfitting (>50%)")
        if avg_degradation > OVERFIT_AVG_DEGRADATION_PCT:
            reasons.append(f"Average OOS degradation is {avg_degradation:.1f}% (>50%)")
        if sharpe > self.cfg.max_sharpe_threshold:
            reasons.append(
                f"OOS Sharpe of {sharpe:.2f} exceeds {self.cfg.max_sharpe_threshold:g}, suspiciously high"
            )

        verdict, reason = decide_verdict(
            overfit_reasons=reasons,
            total_trades=total_trades,
            min_trades=self.cfg.min_trades,
            oos_return_pct=oos_return_pct,
            oos_win_rate=oos_win_rate,
            avg_degradation=avg_degradation,
            window_count=len(windows),
        )
        return WalkForwardAggregate(
            total_trades=total_trades,
            oos_win_rate=oos_win_rate,
            oos_return_pct=oos_return_pct,
            oos_sharpe=sharpe,
            oos_max_drawdown_pct=max(r.max_drawdown_pct for r in oos),
            avg_degradation=avg_degradation,
            is_overfit=bool(reasons),
            overfit_reasons=tuple(reasons),
            passes_min_trades=total_trades >= self.cfg.min_trades,
            verdict=verdict,
            verdict_reason=reason,
        )
