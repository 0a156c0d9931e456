"""ccxt 永续合约适配（默认 Bybit USDT 线性合约）。

所有方法都是同步调用；异步循环里通过 `run_in_executor` 使用。
ccxt 抛出的异常统一包装为 `ExchangeError`。
"""

from __future__ import annotations

import os
from typing import Any

import ccxt
from dotenv import load_dotenv

from trendwarden.common.config.schema import ExchangeConfig
from trendwarden.common.models.models import Candle, OrderSide
from trendwarden.common.utils.logging import setup_logger
from trendwarden.data.loader import candles_from_ohlcv
from trendwarden.execution.exchange import CloseAllResult, ExchangeError, OrderRequest

logger = setup_logger("ccxt-client")


class CcxtFuturesClient:
    """基于 ccxt 统一接口的合约客户端。

    Parameters
    ----------
    exchange:
        已构造好的 ccxt 交易所实例（测试可注入 mock）。
    settle_currency:
        保证金币种，用于读取权益。
    """

    def __init__(self, exchange: Any, settle_currency: str = "USDT"):
        self.exchange = exchange
        self.settle_currency = settle_currency
        self._markets_loaded = False

    @classmethod
    def from_config(cls, cfg: ExchangeConfig, env_path: str | None = None) -> "CcxtFuturesClient":
        """按配置构造；配置里没有密钥时回退到环境变量 EXCHANGE_API_KEY/EXCHANGE_API_SECRET。"""
        load_dotenv(env_path, override=False)
        exchange_cls = getattr(ccxt, cfg.name, None)
        if exchange_cls is None:
            raise ValueError(f"Unknown ccxt exchange: {cfg.name}")
        exchange = exchange_cls(
            {
                "apiKey": cfg.api_key or os.getenv("EXCHANGE_API_KEY"),
                "secret": cfg.api_secret or os.getenv("EXCHANGE_API_SECRET"),
                "enableRateLimit": True,
                "options": {"defaultType": cfg.default_type},
            }
        )
        if cfg.testnet:
            exchange.set_sandbox_mode(True)
        return cls(exchange)

    def _call(self, method: str, *args: Any, **kwargs: Any) -> Any:
        try:
            return getattr(self.exchange, method)(*args, **kwargs)
        except ccxt.BaseError as exc:
            raise ExchangeError(f"{method} failed: {exc}") from exc

    def _ensure_markets(self) -> None:
        if not self._markets_loaded:
            self._call("load_markets")
            self._markets_loaded = True

    def get_candles(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        rows = self._call("fetch_ohlcv", symbol, interval, None, limit)
        return candles_from_ohlcv(rows)

    def place_order(self, order: OrderRequest) -> str:
        self._ensure_markets()
        amount = float(self._call("amount_to_precision", order.symbol, order.quantity))
        params: dict[str, Any] = {}
        if order.reduce_only:
            params["reduceOnly"] = True
        if order.stop_loss is not None:
            params["stopLoss"] = {"triggerPrice": float(self._call("price_to_precision", order.symbol, order.stop_loss))}
        if order.take_profit is not None:
            params["takeProfit"] = {"triggerPrice": float(self._call("price_to_precision", order.symbol, order.take_profit))}

        res = self._call("create_order", order.symbol, order.order_type, order.side.value, amount, None, params)
        order_id = str(res.get("id") or "")
        if not order_id:
            raise ExchangeError(f"create_order returned no id for {order.symbol}")
        logger.info("✅ Order %s %s %s qty=%s reduce_only=%s", order_id, order.side.value, order.symbol, amount, order.reduce_only)
        return order_id

    def cancel_all_orders(self, symbol: str) -> None:
        self._call("cancel_all_orders", symbol)

    def set_leverage(self, symbol: str, leverage: float) -> None:
        self._ensure_markets()
        self._call("set_leverage", leverage, symbol)

    def fetch_equity(self) -> float:
        balance = self._call("fetch_balance")
        total = balance.get("total", {}) or {}
        value = total.get(self.settle_currency)
        if value is None:
            raise ExchangeError(f"No {self.settle_currency} balance in response")
        return float(value)

    def close_all_positions(self) -> CloseAllResult:
        """撤单并以 reduce-only 市价单平掉全部仓位；逐币种收集错误，不中断。"""
        result = CloseAllResult()
        try:
            positions = self._call("fetch_positions")
        except ExchangeError as exc:
            result.errors.append(("*", str(exc)))
            return result

        for pos in positions:
            contracts = float(pos.get("contracts") or 0.0)
            if contracts <= 0:
                continue
            symbol = str(pos.get("symbol"))
            side = OrderSide.SELL if pos.get("side") == "long" else OrderSide.BUY
            try:
                self.cancel_all_orders(symbol)
                self.place_order(OrderRequest(symbol=symbol, side=side, quantity=contracts, reduce_only=True))
                result.closed.append(symbol)
            except ExchangeError as exc:
                logger.error("❌ Failed to close %s: %s", symbol, exc)
                result.errors.append((symbol, str(exc)))
        return result
