"""实盘风控：仓位计算、交易闸门、回撤熔断、kill switch 与心跳。

RiskManager 是 RiskState 的唯一修改者。实盘中由 `RiskWorker` 独占调用，
扫描循环与心跳监控都通过消息队列访问，不会交错执行。
"""

from __future__ import annotations

import copy
import math
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from statistics import mean, pstdev
from typing import Callable, Deque, Iterable, Optional, Protocol

from trendwarden.alerts.notifier import EventKind, NotificationEvent, Notifier, safe_notify
from trendwarden.common.config.schema import RiskConfig
from trendwarden.common.models.models import (
    EquitySnapshot,
    PositionSide,
    PositionState,
    RiskCheckResult,
    SizingResult,
)
from trendwarden.common.utils.logging import setup_logger


class KillSwitchHandler(Protocol):
    """kill switch 触发后的外部动作（通常是平掉交易所全部仓位）。"""

    def flatten_all(self, reason: str) -> None: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_daily_reset(now: datetime) -> datetime:
    """下一个 UTC 零点。"""
    day = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return day + timedelta(days=1)


def next_weekly_reset(now: datetime) -> datetime:
    """下一个 UTC 周一零点（周一当天返回下周一）。"""
    day = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return day + timedelta(days=7 - day.weekday())


@dataclass
class RiskState:
    starting_equity: float
    current_equity: float
    peak_equity: float
    daily_reset_at: datetime
    weekly_reset_at: datetime
    last_heartbeat: datetime
    positions: dict[str, PositionState] = field(default_factory=dict)
    equity_history: Deque[EquitySnapshot] = field(default_factory=deque)
    daily_pnl: float = 0.0
    weekly_pnl: float = 0.0
    total_pnl: float = 0.0
    is_halted: bool = False
    halt_reason: Optional[str] = None
    halted_at: Optional[datetime] = None
    kill_switch_triggered: bool = False
    weekly_reduction_active: bool = False


class RiskManager:
    """风险管理器。

    Parameters
    ----------
    starting_equity:
        启动时权益。
    cfg:
        风控阈值；为空时使用默认值。
    notifier:
        通知协作方；投递失败不影响风控状态。
    now_fn:
        返回当前 UTC 时间的函数（测试注入假时钟）。
    """

    def __init__(
        self,
        starting_equity: float,
        cfg: RiskConfig | None = None,
        notifier: Notifier | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ):
        if starting_equity <= 0:
            raise ValueError("starting_equity must be > 0")
        self.cfg = cfg or RiskConfig()
        self.notifier = notifier
        self.now_fn = now_fn or _utc_now
        self.logger = setup_logger("risk")
        self._kill_switch_handler: KillSwitchHandler | None = None

        now = self.now_fn()
        self.state = RiskState(
            starting_equity=float(starting_equity),
            current_equity=float(starting_equity),
            peak_equity=float(starting_equity),
            daily_reset_at=next_daily_reset(now),
            weekly_reset_at=next_weekly_reset(now),
            last_heartbeat=now,
            equity_history=deque([EquitySnapshot(now, float(starting_equity))], maxlen=self.cfg.equity_history_size),
        )

    # ------------------------------------------------------------------
    # sizing
    # ------------------------------------------------------------------
    def _base_risk_pct(self, risk_pct: float) -> float:
        if self.state.weekly_reduction_active or self._is_weekly_breached():
            return risk_pct * self.cfg.weekly_reduction_factor
        return risk_pct

    def calculate_position_size(
        self,
        win_rate: float,
        avg_win: float,
        avg_loss: float,
        price: float,
        leverage: float = 1.0,
    ) -> SizingResult:
        """分数 Kelly 仓位。

        Parameters
        ----------
        win_rate:
            胜率（0~1）。
        avg_win, avg_loss:
            平均盈利/亏损金额（均为正数）。
        price:
            当前价格。
        leverage:
            杠杆倍数。

        Returns
        -------
        SizingResult
            Kelly 为负或 avg_win <= 0 时数量为 0。
        """
        kelly_pct = (win_rate * avg_win - (1 - win_rate) * avg_loss) / avg_win if avg_win > 0 else 0.0
        risk_pct = min(max(kelly_pct * self.cfg.kelly_fraction, 0.0), self.cfg.max_risk_per_trade)
        risk_pct = self._base_risk_pct(risk_pct)
        risk_amount = self.state.current_equity * risk_pct
        quantity = risk_amount * leverage / price if price > 0 else 0.0
        return SizingResult(quantity=quantity, risk_amount=risk_amount, risk_pct=risk_pct)

    def calculate_simple_position_size(self, price: float, stop_price: float, leverage: float = 1.0) -> SizingResult:
        """按止损距离定仓：触发止损时亏损恰好等于风险预算。

        Notes
        -----
        平仓盈亏按 `价差 * 数量 * 杠杆` 计算，因此数量要除以杠杆；
        止损距离为 0 时退化为按风险金额作为名义价值。
        """
        risk_pct = self._base_risk_pct(self.cfg.max_risk_per_trade)
        risk_amount = self.state.current_equity * risk_pct
        if price <= 0:
            return SizingResult(quantity=0.0, risk_amount=risk_amount, risk_pct=risk_pct)
        risk_per_unit = abs(price - stop_price) / price
        position_value = risk_amount / risk_per_unit if risk_per_unit > 0 else risk_amount
        quantity = position_value / (price * leverage)
        return SizingResult(quantity=quantity, risk_amount=risk_amount, risk_pct=risk_pct)

    # ------------------------------------------------------------------
    # gate
    # ------------------------------------------------------------------
    def check_trade(
        self,
        symbol: str,
        side: PositionSide,
        quantity: float,
        price: float,
        leverage: float = 1.0,
    ) -> RiskCheckResult:
        """按固定顺序检查一笔拟开仓交易，命中即返回。

        顺序：kill switch → 暂停 → 最大持仓数 → 单币种集中度 → 总回撤。
        集中度超限且仍有余量时，把数量裁剪到恰好填满余量并继续后续检查；
        裁剪后的交易同样要经过总回撤闸门，不会提前放行。
        `side`/`leverage` 只用于日志，名义价值按 `quantity * price` 计。
        """
        st = self.state
        if st.kill_switch_triggered:
            return RiskCheckResult(False, "Kill switch triggered, all trading halted")

        if st.is_halted:
            return RiskCheckResult(
                False,
                f"Trading halted: {st.halt_reason}. Resumes at {st.daily_reset_at.isoformat()}",
            )

        existing = st.positions.get(symbol)
        if len(st.positions) >= self.cfg.max_concurrent_positions and existing is None:
            return RiskCheckResult(False, f"Max concurrent positions reached ({self.cfg.max_concurrent_positions})")

        adjusted = quantity
        reason = "All risk checks passed"
        existing_notional = existing.notional_value if existing else 0.0
        exposure = existing_notional + quantity * price
        cap = self.cfg.max_single_asset_pct * st.current_equity
        if exposure > cap:
            room = cap - existing_notional
            if room <= 0:
                pct = exposure / st.current_equity * 100 if st.current_equity > 0 else math.inf
                return RiskCheckResult(
                    False,
                    f"Single asset limit exceeded ({pct:.1f}% > {self.cfg.max_single_asset_pct * 100:g}%)",
                )
            adjusted = room / price
            reason = f"Quantity reduced to fit {self.cfg.max_single_asset_pct * 100:g}% concentration limit"

        if self._total_drawdown() <= self.cfg.total_drawdown_limit:
            self.trigger_kill_switch("Total drawdown limit breached")
            return RiskCheckResult(False, "Total drawdown limit breached, kill switch activated")

        self.logger.debug("check_trade %s %s qty=%.6f adjusted=%.6f x%.1f", symbol, side.value, quantity, adjusted, leverage)
        return RiskCheckResult(True, reason, adjusted_quantity=adjusted)

    # ------------------------------------------------------------------
    # positions
    # ------------------------------------------------------------------
    def open_position(
        self,
        symbol: str,
        side: PositionSide,
        entry_price: float,
        quantity: float,
        leverage: float = 1.0,
        stop_loss: float | None = None,
        take_profit: float | None = None,
    ) -> PositionState:
        """记录一笔已在交易所成交的开仓。

        Raises
        ------
        ValueError
            该币种已有持仓（单向持仓模式，每个币种最多一条）。
        """
        if symbol in self.state.positions:
            raise ValueError(f"Position already open for {symbol}")
        pos = PositionState(
            symbol=symbol,
            side=side,
            entry_price=entry_price,
            quantity=quantity,
            notional_value=quantity * entry_price,
            leverage=leverage,
            opened_at=self.now_fn(),
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
        self.state.positions[symbol] = pos
        self.logger.info("Opened %s %s qty=%.6f @ %.4f x%g", pos.side.value, symbol, quantity, entry_price, leverage)
        return pos

    def close_position(self, symbol: str, exit_price: float) -> float:
        """平仓并结算盈亏，随后重新检查回撤限制。

        Returns
        -------
        float
            已实现盈亏；无持仓时为 0。
        """
        st = self.state
        pos = st.positions.get(symbol)
        if pos is None:
            self.logger.warning("close_position: no open position for %s", symbol)
            return 0.0

        pnl = pos.side.direction * (exit_price - pos.entry_price) * pos.quantity * pos.leverage
        st.current_equity += pnl
        st.daily_pnl += pnl
        st.weekly_pnl += pnl
        st.total_pnl += pnl
        st.peak_equity = max(st.peak_equity, st.current_equity)
        st.equity_history.append(EquitySnapshot(self.now_fn(), st.current_equity))
        del st.positions[symbol]

        self.logger.info("Closed %s %s @ %.4f pnl=%.4f equity=%.4f", pos.side.value, symbol, exit_price, pnl, st.current_equity)
        self.check_drawdown_limits()
        return pnl

    def discard_positions(self, symbols: Iterable[str]) -> list[str]:
        """移除已在交易所被强平/批量平掉的持仓，不结算盈亏。

        成交价未知，权益变化留给下一次 `update_equity` 同步。

        Returns
        -------
        list[str]
            实际移除的币种。
        """
        removed = [s for s in symbols if self.state.positions.pop(s, None) is not None]
        if removed:
            self.logger.warning("Dropped positions flattened on exchange: %s", ", ".join(removed))
        return removed

    def update_equity(self, new_equity: float) -> None:
        """用交易所回报的权益刷新状态（含未实现盈亏、资金费等）。"""
        st = self.state
        delta = new_equity - st.current_equity
        st.current_equity = new_equity
        st.daily_pnl += delta
        st.weekly_pnl += delta
        st.total_pnl = new_equity - st.starting_equity
        st.peak_equity = max(st.peak_equity, new_equity)
        st.equity_history.append(EquitySnapshot(self.now_fn(), new_equity))
        self.check_drawdown_limits()

    # ------------------------------------------------------------------
    # drawdown / resets
    # ------------------------------------------------------------------
    def _total_drawdown(self) -> float:
        st = self.state
        return (st.current_equity - st.peak_equity) / st.peak_equity

    def _pnl_ratio(self, pnl: float) -> float:
        equity = self.state.current_equity
        if equity <= 0:
            return -math.inf
        return pnl / equity

    def _is_weekly_breached(self) -> bool:
        return self._pnl_ratio(self.state.weekly_pnl) <= self.cfg.weekly_drawdown_limit

    def apply_period_resets(self) -> None:
        """执行到期的日/周重置。

        - 日重置：清零 daily_pnl；未触发 kill switch 时解除日内暂停；
        - 周重置：只清零 weekly_pnl，不解除周度减仓与 kill switch。
        """
        st = self.state
        now = self.now_fn()
        if now >= st.daily_reset_at:
            st.daily_pnl = 0.0
            st.daily_reset_at = next_daily_reset(now)
            if st.is_halted and not st.kill_switch_triggered:
                st.is_halted = False
                st.halt_reason = None
                st.halted_at = None
                self.logger.info("Daily halt lifted, trading resumed")

        if now >= st.weekly_reset_at:
            st.weekly_pnl = 0.0
            st.weekly_reset_at = next_weekly_reset(now)
            self.logger.info("Weekly PnL reset")

    def check_drawdown_limits(self) -> None:
        """平仓或权益刷新后调用：先处理周期重置，再检查日/周/总回撤。"""
        self.apply_period_resets()
        st = self.state

        daily = self._pnl_ratio(st.daily_pnl)
        if daily <= self.cfg.daily_drawdown_limit and not st.is_halted:
            st.is_halted = True
            st.halt_reason = f"Daily drawdown limit breached ({daily * 100:.1f}%)"
            st.halted_at = self.now_fn()
            self.logger.warning("HALT: %s", st.halt_reason)
            self._notify_breach("daily", daily)

        weekly = self._pnl_ratio(st.weekly_pnl)
        if weekly <= self.cfg.weekly_drawdown_limit and not st.weekly_reduction_active:
            st.weekly_reduction_active = True
            self.logger.warning(
                "Weekly drawdown limit breached (%.1f%%), position size x%g until cleared",
                weekly * 100,
                self.cfg.weekly_reduction_factor,
            )
            self._notify_breach("weekly", weekly)

        total = self._total_drawdown()
        if total <= self.cfg.total_drawdown_limit and not st.kill_switch_triggered:
            self._notify_breach("total", total)
            self.trigger_kill_switch(f"Total drawdown {total * 100:.1f}% exceeds limit")

    def clear_weekly_reduction(self) -> None:
        """人工解除周度减仓。"""
        self.state.weekly_reduction_active = False
        self.logger.info("Weekly size reduction cleared manually")

    def _notify_breach(self, period: str, ratio: float) -> None:
        safe_notify(
            self.notifier,
            NotificationEvent(
                EventKind.DRAWDOWN_BREACH,
                f"{period.capitalize()} drawdown limit breached",
                {
                    "period": period,
                    "drawdown_pct": round(ratio * 100, 2),
                    "equity": self.state.current_equity,
                },
                timestamp=self.now_fn(),
            ),
        )

    # ------------------------------------------------------------------
    # kill switch
    # ------------------------------------------------------------------
    def register_kill_switch_handler(self, handler: KillSwitchHandler) -> None:
        self._kill_switch_handler = handler

    def trigger_kill_switch(self, reason: str) -> None:
        """触发 kill switch（单向锁存，重复调用无效）。

        先写入锁存与暂停原因，再调用外部 handler；handler 异常只记录日志，
        锁存不会因此回退。
        """
        st = self.state
        if st.kill_switch_triggered:
            return
        st.kill_switch_triggered = True
        st.is_halted = True
        st.halt_reason = f"KILL SWITCH: {reason}"
        st.halted_at = self.now_fn()

        self.logger.critical(
            "🚨 KILL SWITCH ACTIVATED: %s | equity=%.2f total_pnl=%.2f at %s",
            reason,
            st.current_equity,
            st.total_pnl,
            st.halted_at.isoformat(),
        )

        handler = self._kill_switch_handler
        if handler is None:
            return
        try:
            handler.flatten_all(reason)
        except Exception:
            self.logger.exception("Kill switch handler failed; trading stays halted")

    def reset_kill_switch(self, new_equity: float | None = None) -> None:
        """人工解除 kill switch，可选择重置当前/峰值权益。"""
        st = self.state
        st.kill_switch_triggered = False
        st.is_halted = False
        st.halt_reason = None
        st.halted_at = None
        if new_equity is not None:
            st.current_equity = float(new_equity)
            st.peak_equity = float(new_equity)
        self.logger.warning("Kill switch manually reset")

    # ------------------------------------------------------------------
    # heartbeat
    # ------------------------------------------------------------------
    def heartbeat(self) -> None:
        self.state.last_heartbeat = self.now_fn()

    def check_heartbeat(self) -> bool:
        """死人开关：距上次心跳超过超时时间则自动触发 kill switch。

        Returns
        -------
        bool
            是否已超时。
        """
        st = self.state
        elapsed = (self.now_fn() - st.last_heartbeat).total_seconds()
        if elapsed <= self.cfg.heartbeat_timeout_s:
            return False
        if not st.kill_switch_triggered:
            self.logger.error("Heartbeat timeout! Last: %s (%.0fs ago)", st.last_heartbeat.isoformat(), elapsed)
            safe_notify(
                self.notifier,
                NotificationEvent(
                    EventKind.HEARTBEAT_TIMEOUT,
                    "Heartbeat timeout",
                    {"last_heartbeat": st.last_heartbeat.isoformat(), "elapsed_s": round(elapsed, 1)},
                    timestamp=self.now_fn(),
                ),
            )
            self.trigger_kill_switch("Dead man's switch, heartbeat timeout")
        return True

    # ------------------------------------------------------------------
    # views / metrics
    # ------------------------------------------------------------------
    def is_trade_allowed(self) -> bool:
        return not self.state.is_halted and not self.state.kill_switch_triggered

    def get_state(self) -> RiskState:
        """返回状态的深拷贝，调用方修改不会影响内部状态。"""
        return copy.deepcopy(self.state)

    def get_current_drawdown(self) -> tuple[float, float]:
        """(金额, 比例)，比例 <= 0。"""
        st = self.state
        amount = st.current_equity - st.peak_equity
        return amount, amount / st.peak_equity if st.peak_equity > 0 else 0.0

    def get_max_drawdown(self) -> tuple[float, float]:
        """回放权益历史得到的最大回撤 (金额, 比例)，均为非负数。"""
        history = self.state.equity_history
        peak = history[0].equity if history else self.state.starting_equity
        max_dd = max_pct = 0.0
        for snap in history:
            peak = max(peak, snap.equity)
            dd = peak - snap.equity
            if dd > max_dd:
                max_dd = dd
                max_pct = dd / peak if peak > 0 else 0.0
        return max_dd, max_pct

    def get_sharpe_ratio(self, risk_free_rate: float = 0.0) -> float:
        """权益历史逐样本收益率的 Sharpe，按 sqrt(365) 年化。"""
        equities = [s.equity for s in self.state.equity_history]
        returns = [(b - a) / a for a, b in zip(equities, equities[1:]) if a != 0]
        if len(returns) < 1:
            return 0.0
        sigma = pstdev(returns)
        if sigma == 0:
            return 0.0
        return (mean(returns) - risk_free_rate) / sigma * math.sqrt(365)
