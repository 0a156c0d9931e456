"""Dry-run 交易所：行情走真实数据源，下单在内存中模拟。

与实盘走同一条代码路径，只是换了一个协作方。成交价取订单参考价，
缺省时取数据源最新收盘价；平仓按 `方向 * 价差 * 数量 * 杠杆` 结算到权益。
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass

from trendwarden.common.models.models import Candle, OrderSide
from trendwarden.common.utils.logging import setup_logger
from trendwarden.execution.exchange import CloseAllResult, ExchangeClient, ExchangeError, OrderRequest

logger = setup_logger("paper-exchange")

MARK_INTERVAL = "1m"


@dataclass
class PaperPosition:
    symbol: str
    side: OrderSide
    quantity: float
    entry_price: float
    leverage: float = 1.0

    @property
    def direction(self) -> int:
        return 1 if self.side is OrderSide.BUY else -1

    def pnl(self, exit_price: float, quantity: float) -> float:
        return self.direction * (exit_price - self.entry_price) * quantity * self.leverage


class PaperExchange:
    """模拟成交的交易所。

    Parameters
    ----------
    market_data:
        提供 `get_candles` 的真实数据源（通常是不带密钥的 ccxt 客户端）。
    equity:
        模拟账户初始权益；之后随平仓盈亏变化。
    """

    def __init__(self, market_data: ExchangeClient, equity: float = 0.0):
        self.market_data = market_data
        self.equity = float(equity)
        self.realized_pnl = 0.0
        self.positions: dict[str, PaperPosition] = {}
        self.orders: list[tuple[str, OrderRequest]] = []
        self.leverage: dict[str, float] = {}
        self._ids = itertools.count(1)

    def get_candles(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        return self.market_data.get_candles(symbol, interval, limit)

    def _mark_price(self, symbol: str) -> float:
        try:
            candles = self.market_data.get_candles(symbol, MARK_INTERVAL, 1)
        except Exception as exc:
            raise ExchangeError(f"No mark price for {symbol}: {exc}") from exc
        if not candles:
            raise ExchangeError(f"No mark price for {symbol}")
        return candles[-1].close

    def _realize(self, pos: PaperPosition, price: float, quantity: float) -> float:
        pnl = pos.pnl(price, quantity)
        self.equity += pnl
        self.realized_pnl += pnl
        return pnl

    def place_order(self, order: OrderRequest) -> str:
        if order.quantity <= 0:
            raise ExchangeError(f"Invalid quantity for {order.symbol}: {order.quantity}")
        pos = self.positions.get(order.symbol)
        if order.reduce_only and (pos is None or pos.side == order.side):
            raise ExchangeError(f"reduce-only order has no position to reduce: {order.symbol}")
        if not order.reduce_only and pos is not None and pos.side != order.side:
            raise ExchangeError(f"Opposite order on open position (one-way mode): {order.symbol}")

        price = order.price if order.price is not None else self._mark_price(order.symbol)
        order_id = f"paper-{next(self._ids)}"
        pnl = 0.0
        if order.reduce_only:
            qty = min(order.quantity, pos.quantity)
            pnl = self._realize(pos, price, qty)
            remaining = pos.quantity - qty
            if remaining > 1e-12:
                pos.quantity = remaining
            else:
                del self.positions[order.symbol]
        elif pos is None:
            lev = self.leverage.get(order.symbol, 1.0)
            self.positions[order.symbol] = PaperPosition(order.symbol, order.side, order.quantity, price, lev)
        else:
            total = pos.quantity + order.quantity
            pos.entry_price = (pos.entry_price * pos.quantity + price * order.quantity) / total
            pos.quantity = total

        self.orders.append((order_id, order))
        logger.info(
            "🔧 DRY: %s %s %s qty=%.6f @ %.4f sl=%s tp=%s reduce_only=%s pnl=%.4f",
            order_id,
            order.side.value,
            order.symbol,
            order.quantity,
            price,
            order.stop_loss,
            order.take_profit,
            order.reduce_only,
            pnl,
        )
        return order_id

    def cancel_all_orders(self, symbol: str) -> None:
        logger.info("🔧 DRY: cancel all orders for %s", symbol)

    def close_all_positions(self) -> CloseAllResult:
        result = CloseAllResult()
        for symbol, pos in list(self.positions.items()):
            try:
                price = self._mark_price(symbol)
            except ExchangeError as exc:
                result.errors.append((symbol, str(exc)))
                continue
            self._realize(pos, price, pos.quantity)
            del self.positions[symbol]
            result.closed.append(symbol)
        logger.info("🔧 DRY: closed all positions %s equity=%.4f", result.closed, self.equity)
        return result

    def set_leverage(self, symbol: str, leverage: float) -> None:
        self.leverage[symbol] = float(leverage)
        logger.info("🔧 DRY: leverage %s x%g", symbol, leverage)

    def fetch_equity(self) -> float:
        return self.equity
