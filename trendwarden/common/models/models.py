"""核心数据模型。

约定：
- K 线序列按时间升序（oldest-first），时间戳严格递增；
- 所有递归型指标（EMA/ATR/ADX）都依赖这一顺序，乱序会静默污染下游结果。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SignalAction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    CLOSE_LONG = "CLOSE_LONG"
    CLOSE_SHORT = "CLOSE_SHORT"
    HOLD = "HOLD"


class MarketRegime(str, Enum):
    TRENDING = "trending"
    RANGING = "ranging"
    VOLATILE = "volatile"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NONE = "none"


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def direction(self) -> int:
        return 1 if self is PositionSide.LONG else -1


class TradeAction(str, Enum):
    """回测策略输出的动作。"""
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Candle:
    timestamp: int  # 开盘时间，毫秒
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class IndicatorSnapshot:
    """信号生成时刻的指标快照。"""
    fast_ema: float = 0.0
    slow_ema: float = 0.0
    rsi: float = 50.0
    atr: float = 0.0
    adx: float = 0.0
    plus_di: float = 0.0
    minus_di: float = 0.0


@dataclass(frozen=True)
class RegimeInfo:
    regime: MarketRegime
    adx_value: float
    trend_direction: TrendDirection


@dataclass(frozen=True)
class TrendSignal:
    action: SignalAction
    reason: str
    regime: MarketRegime
    adx_value: float
    confidence: float
    price: float = 0.0
    indicators: IndicatorSnapshot = field(default_factory=IndicatorSnapshot)
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


@dataclass(frozen=True)
class StrategySignal:
    """回测策略的单步输出。"""
    action: TradeAction
    reason: str = ""


@dataclass(frozen=True)
class PositionState:
    symbol: str
    side: PositionSide
    entry_price: float
    quantity: float
    notional_value: float
    leverage: float
    opened_at: datetime
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None


@dataclass(frozen=True)
class EquitySnapshot:
    timestamp: datetime
    equity: float


@dataclass(frozen=True)
class RiskCheckResult:
    """风控闸门的结构化结果；拒绝不会抛异常。"""
    allowed: bool
    reason: str
    adjusted_quantity: Optional[float] = None


@dataclass(frozen=True)
class SizingResult:
    quantity: float
    risk_amount: float
    risk_pct: float
