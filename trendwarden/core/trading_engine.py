"""实盘/模拟交易循环。

架构:

    [scan loop] --(job)--> [RiskWorker] <--(job)-- [heartbeat monitor]
         |                      |
    [Exchange] <----- (orders / flatten) 

- 扫描循环：拉 K 线 → 趋势信号 → 在 worker 内完成 定仓/闸门/下单/记账；
- 心跳监控：定期在 worker 内检查死人开关；
- 日报：UTC 日期变化时推送一次汇总。

停止时只抑制后续 tick：已发出的交易动作不会被取消，worker 会执行完已排队的任务。
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional

from trendwarden.alerts.notifier import EventKind, NotificationEvent, Notifier, safe_notify
from trendwarden.common.config.schema import MainConfig
from trendwarden.common.models.models import OrderSide, PositionSide, SignalAction, SizingResult, TrendSignal
from trendwarden.common.utils.logging import setup_logger
from trendwarden.core.risk_worker import RiskWorker
from trendwarden.core.signal_history import SignalHistory
from trendwarden.data.loader import ensure_ordered
from trendwarden.execution.exchange import CloseAllResult, ExchangeClient, OrderRequest
from trendwarden.strategies.risk.manager import RiskManager
from trendwarden.strategies.trend import analyze_trend

logger = setup_logger("trading-engine")

FALLBACK_STOP_PCT = 0.05


@dataclass
class TradeStats:
    """已平仓交易统计，用于 Kelly 定仓与日报。"""
    opened: int = 0
    closed: int = 0
    wins: int = 0
    gross_win: float = 0.0
    gross_loss: float = 0.0

    def record_close(self, pnl: float) -> None:
        self.closed += 1
        if pnl > 0:
            self.wins += 1
            self.gross_win += pnl
        else:
            self.gross_loss += -pnl

    @property
    def win_rate(self) -> float:
        return self.wins / self.closed if self.closed else 0.0

    @property
    def avg_win(self) -> float:
        return self.gross_win / self.wins if self.wins else 0.0

    @property
    def avg_loss(self) -> float:
        losses = self.closed - self.wins
        return self.gross_loss / losses if losses else 0.0


class TradingEngine:
    """交易循环（组合根）。

    Parameters
    ----------
    cfg:
        总配置（bot/trend/risk 段）。
    exchange:
        交易所协作方；dry-run 时传入 `PaperExchange`。
    notifier:
        通知协作方。
    history:
        信号历史缓冲；为空时按 `bot.signal_history_size` 新建。
    now_fn:
        返回当前 UTC 时间（测试注入假时钟）。
    max_scans:
        扫描次数上限，达到后自动停止；为空表示一直运行。
    """

    def __init__(
        self,
        cfg: MainConfig,
        exchange: ExchangeClient,
        notifier: Notifier | None = None,
        *,
        risk: RiskManager | None = None,
        history: SignalHistory | None = None,
        now_fn: Callable[[], datetime] | None = None,
        max_scans: int | None = None,
    ):
        self.cfg = cfg
        self.bot = cfg.bot
        self.exchange = exchange
        self.notifier = notifier
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))
        self.risk = risk or RiskManager(self.bot.starting_equity, cfg.risk, notifier, self.now_fn)
        self.risk.register_kill_switch_handler(self)
        self.worker = RiskWorker(self.risk)
        self.history = history or SignalHistory(self.bot.signal_history_size)
        self.stats = TradeStats()
        self.max_scans = max_scans
        self.scan_count = 0
        self.running = False
        self._stop = asyncio.Event()
        self._last_summary_date: Optional[date] = None
        self._flatten_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def run(self) -> dict[str, Any]:
        """启动并阻塞直到 `stop()` 或达到 `max_scans`；返回最终状态。"""
        self.running = True
        self._stop.clear()
        mode = "DRY RUN" if self.bot.dry_run else "LIVE"
        logger.info("🚀 Starting trading engine [%s] pairs=%s interval=%s", mode, self.bot.pairs, self.bot.interval)

        await self.worker.start()
        await self.worker.submit(lambda r: r.heartbeat())
        await self._configure_leverage()
        self._last_summary_date = self.now_fn().date()
        safe_notify(
            self.notifier,
            NotificationEvent(
                EventKind.STARTUP,
                f"Trading engine started ({mode})",
                {"equity": self.risk.state.current_equity, "pairs": ", ".join(self.bot.pairs)},
                timestamp=self.now_fn(),
            ),
        )

        tasks = [
            asyncio.create_task(self._scan_loop(), name="scan-loop"),
            asyncio.create_task(self._heartbeat_loop(), name="heartbeat-monitor"),
            asyncio.create_task(self._summary_loop(), name="daily-summary"),
        ]
        try:
            await self._stop.wait()
        finally:
            self._stop.set()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for res in results:
                if isinstance(res, Exception):
                    logger.error("Background task failed: %s", res)
            await self.wait_flattened()
            await self.worker.stop()
            self.running = False
            logger.info("Trading engine stopped after %d scans", self.scan_count)
        return self._status(self.risk)

    def stop(self) -> None:
        """请求停止；当前扫描会执行完，之后不再有新 tick。"""
        logger.info("Shutdown requested")
        self._stop.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _exchange_call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def _configure_leverage(self) -> None:
        for pair in self.bot.pairs:
            try:
                await self._exchange_call(self.exchange.set_leverage, pair, self.bot.leverage)
            except Exception as exc:
                logger.warning("⚠️ Failed to set leverage for %s: %s", pair, exc)

    # ------------------------------------------------------------------
    # periodic tasks
    # ------------------------------------------------------------------
    async def _scan_loop(self) -> None:
        while not self._stop.is_set():
            try:
                await self.scan_all()
            except Exception:
                logger.exception("Scan iteration failed")
            self.scan_count += 1
            if self.max_scans is not None and self.scan_count >= self.max_scans:
                self._stop.set()
                break
            await self._sleep(self.bot.scan_interval_s)

    async def _heartbeat_loop(self) -> None:
        interval = self.cfg.risk.heartbeat_check_interval_s
        while not self._stop.is_set():
            await self._sleep(interval)
            if self._stop.is_set():
                break
            await self.worker.submit(lambda r: r.check_heartbeat())

    async def _summary_loop(self) -> None:
        while not self._stop.is_set():
            await self._sleep(self.bot.summary_check_interval_s)
            if self._stop.is_set():
                break
            await self.maybe_send_daily_summary()

    async def maybe_send_daily_summary(self) -> bool:
        """UTC 日期变化时推送一次日报。"""
        today = self.now_fn().date()
        if self._last_summary_date is not None and today <= self._last_summary_date:
            return False
        status = await self.status()
        safe_notify(
            self.notifier,
            NotificationEvent(
                EventKind.DAILY_SUMMARY,
                f"Daily summary {self._last_summary_date or today}",
                {
                    "equity": status["equity"],
                    "daily_pnl": status["daily_pnl"],
                    "trades": self.stats.opened + self.stats.closed,
                    "win_rate_pct": round(self.stats.win_rate * 100, 1),
                },
                timestamp=self.now_fn(),
            ),
        )
        self._last_summary_date = today
        return True

    # ------------------------------------------------------------------
    # scanning
    # ------------------------------------------------------------------
    async def scan_all(self) -> None:
        """扫描全部交易对；成功完成后打一次心跳。"""
        if self.bot.sync_equity:
            try:
                equity = await self._exchange_call(self.exchange.fetch_equity)
                await self.worker.submit(lambda r: r.update_equity(float(equity)))
            except Exception as exc:
                logger.warning("Equity refresh failed: %s", exc)

        allowed, reason = await self.worker.submit(lambda r: (r.is_trade_allowed(), r.state.halt_reason))
        if not allowed:
            logger.warning("Trading not allowed: %s", reason)
            await self.worker.submit(lambda r: r.heartbeat())
            return

        analyzed = 0
        for pair in self.bot.pairs:
            try:
                await self.analyze_pair(pair)
                analyzed += 1
            except Exception as exc:
                logger.error("❌ Failed to analyze %s: %s", pair, exc)

        if analyzed:
            await self.worker.submit(lambda r: r.heartbeat())
        else:
            logger.error("No pair analyzed successfully; heartbeat not refreshed")

    async def analyze_pair(self, symbol: str) -> TrendSignal:
        candles = await self._exchange_call(self.exchange.get_candles, symbol, self.bot.interval, self.bot.candle_limit)
        ensure_ordered(candles)
        signal = analyze_trend(candles, self.cfg.trend)
        self.history.record(symbol, signal, self.now_fn())
        logger.info(
            "%s %s conf=%.0f regime=%s ADX=%.1f | %s",
            symbol,
            signal.action.value,
            signal.confidence,
            signal.regime.value,
            signal.adx_value,
            signal.reason,
        )
        if signal.action is not SignalAction.HOLD:
            await self.worker.submit(lambda r: self._process_signal(r, symbol, signal))
        return signal

    def _size(self, risk: RiskManager, price: float, stop: float) -> SizingResult:
        lev = self.bot.leverage
        if self.stats.closed >= self.bot.kelly_min_trades and self.stats.avg_win > 0:
            return risk.calculate_position_size(self.stats.win_rate, self.stats.avg_win, self.stats.avg_loss, price, lev)
        return risk.calculate_simple_position_size(price, stop, lev)

    async def _process_signal(self, risk: RiskManager, symbol: str, signal: TrendSignal) -> None:
        """在 worker 内执行：定仓 → 闸门 → 下单 → 记账。

        交易所调用失败时视为未成交，风控状态保持不变。
        """
        existing = risk.state.positions.get(symbol)
        price = signal.price
        lev = self.bot.leverage

        if signal.action in (SignalAction.LONG, SignalAction.SHORT):
            if existing is not None:
                return
            side = PositionSide.LONG if signal.action is SignalAction.LONG else PositionSide.SHORT
            stop = signal.stop_loss
            if stop is None:
                stop = price * (1 - FALLBACK_STOP_PCT * side.direction)
            sizing = self._size(risk, price, stop)
            check = risk.check_trade(symbol, side, sizing.quantity, price, lev)
            if not check.allowed:
                logger.info("[RISK] Trade blocked %s: %s", symbol, check.reason)
                return
            qty = check.adjusted_quantity or 0.0
            if qty <= 0:
                logger.info("[RISK] Zero size for %s, skipped", symbol)
                return

            order = OrderRequest(
                symbol=symbol,
                side=OrderSide.BUY if side is PositionSide.LONG else OrderSide.SELL,
                quantity=qty,
                price=price,
                stop_loss=signal.stop_loss,
                take_profit=signal.take_profit,
            )
            try:
                order_id = await self._exchange_call(self.exchange.place_order, order)
            except Exception as exc:
                logger.error("❌ Order failed for %s: %s", symbol, exc)
                return

            risk.open_position(symbol, side, price, qty, lev, signal.stop_loss, signal.take_profit)
            self.stats.opened += 1
            safe_notify(
                self.notifier,
                NotificationEvent(
                    EventKind.TRADE_OPENED,
                    f"{signal.action.value} {symbol}",
                    {
                        "order_id": order_id,
                        "price": price,
                        "quantity": qty,
                        "leverage": lev,
                        "stop_loss": signal.stop_loss,
                        "take_profit": signal.take_profit,
                        "confidence": signal.confidence,
                        "reason": signal.reason,
                    },
                    timestamp=self.now_fn(),
                ),
            )
            return

        closing = {
            SignalAction.CLOSE_LONG: PositionSide.LONG,
            SignalAction.CLOSE_SHORT: PositionSide.SHORT,
        }.get(signal.action)
        if closing is None or existing is None or existing.side is not closing:
            return

        order = OrderRequest(
            symbol=symbol,
            side=OrderSide.SELL if closing is PositionSide.LONG else OrderSide.BUY,
            quantity=existing.quantity,
            price=price,
            reduce_only=True,
        )
        try:
            await self._exchange_call(self.exchange.place_order, order)
        except Exception as exc:
            logger.error("❌ Close failed for %s, position kept: %s", symbol, exc)
            return

        pnl = risk.close_position(symbol, price)
        self.stats.record_close(pnl)
        safe_notify(
            self.notifier,
            NotificationEvent(
                EventKind.TRADE_CLOSED,
                f"{signal.action.value} {symbol}",
                {"price": price, "quantity": existing.quantity, "pnl": pnl, "reason": signal.reason},
                timestamp=self.now_fn(),
            ),
        )

    # ------------------------------------------------------------------
    # kill switch / status
    # ------------------------------------------------------------------
    def flatten_all(self, reason: str) -> None:
        """kill switch handler：安排在交易所平掉全部仓位，立即返回。

        锁存已由 RiskManager 先行写入；平仓请求在线程池中执行，
        不阻塞扫描循环与心跳监控。没有运行中的事件循环时同步执行。
        """
        logger.critical("KILL SWITCH: closing all positions (%s)", reason)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._apply_flatten(self.risk, reason, self.exchange.close_all_positions())
            return
        task = loop.create_task(self._flatten(reason), name="kill-switch-flatten")
        self._flatten_tasks.add(task)
        task.add_done_callback(self._flatten_tasks.discard)

    async def _flatten(self, reason: str) -> None:
        try:
            result = await self._exchange_call(self.exchange.close_all_positions)
        except Exception as exc:
            logger.critical("❌ Kill switch flatten failed, positions may remain open: %s", exc)
            return
        if self.worker.running:
            await self.worker.submit(lambda r: self._apply_flatten(r, reason, result))
        else:
            self._apply_flatten(self.risk, reason, result)

    def _apply_flatten(self, risk: RiskManager, reason: str, result: CloseAllResult) -> None:
        for symbol, err in result.errors:
            logger.error("❌ Kill switch close failed for %s: %s", symbol, err)
        risk.discard_positions(result.closed)
        safe_notify(
            self.notifier,
            NotificationEvent(
                EventKind.KILL_SWITCH,
                "Kill switch activated",
                {
                    "reason": reason,
                    "closed": ", ".join(result.closed) or "-",
                    "errors": len(result.errors),
                    "equity": risk.state.current_equity,
                },
                timestamp=self.now_fn(),
            ),
        )

    async def wait_flattened(self) -> None:
        """等待已安排的 kill switch 平仓完成。"""
        while self._flatten_tasks:
            await asyncio.gather(*list(self._flatten_tasks), return_exceptions=True)

    async def kill_all(self, reason: str = "Manual kill") -> None:
        await self.worker.submit(lambda r: r.trigger_kill_switch(reason))
        await self.wait_flattened()

    def _status(self, risk: RiskManager) -> dict[str, Any]:
        st = risk.state
        dd_amount, dd_pct = risk.get_current_drawdown()
        latest = {}
        for pair in self.bot.pairs:
            rec = self.history.latest(pair)
            latest[pair] = None if rec is None else {
                "action": rec.signal.action.value,
                "confidence": rec.signal.confidence,
                "at": rec.at.isoformat(),
            }
        return {
            "equity": st.current_equity,
            "peak_equity": st.peak_equity,
            "drawdown": dd_amount,
            "drawdown_pct": dd_pct,
            "daily_pnl": st.daily_pnl,
            "weekly_pnl": st.weekly_pnl,
            "total_pnl": st.total_pnl,
            "is_halted": st.is_halted,
            "halt_reason": st.halt_reason,
            "kill_switch": st.kill_switch_triggered,
            "positions": {s: p.side.value for s, p in st.positions.items()},
            "trades_opened": self.stats.opened,
            "trades_closed": self.stats.closed,
            "wins": self.stats.wins,
            "scans": self.scan_count,
            "latest_signals": latest,
        }

    async def status(self) -> dict[str, Any]:
        if self.worker.running:
            return await self.worker.submit(self._status)
        return self._status(self.risk)
