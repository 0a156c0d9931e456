"""交易所协作方接口。

核心只依赖这里定义的形状；ccxt 实盘适配与 dry-run 模拟各自实现它。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

from trendwarden.common.models.models import Candle, OrderSide


class ExchangeError(RuntimeError):
    """交易所调用失败（网络、拒单、鉴权等）。"""


@dataclass(frozen=True)
class OrderRequest:
    symbol: str
    side: OrderSide
    quantity: float
    order_type: str = "market"
    price: Optional[float] = None  # 市价单参考价；实盘不下发，dry-run 按它模拟成交
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    reduce_only: bool = False


@dataclass
class CloseAllResult:
    """批量平仓结果：逐币种记录成功与失败，单个失败不影响其他币种。"""
    closed: list[str] = field(default_factory=list)
    errors: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class ExchangeClient(Protocol):
    def get_candles(self, symbol: str, interval: str, limit: int) -> list[Candle]: ...

    def place_order(self, order: OrderRequest) -> str: ...

    def cancel_all_orders(self, symbol: str) -> None: ...

    def close_all_positions(self) -> CloseAllResult: ...

    def set_leverage(self, symbol: str, leverage: float) -> None: ...

    def fetch_equity(self) -> float: ...
