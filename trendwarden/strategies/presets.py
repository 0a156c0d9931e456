"""预置回测策略与策略注册表：字符串 -> 策略工厂。

回测策略签名：`(candles_so_far, position) -> StrategySignal`，
position 为当前持有的资产数量（0 表示空仓）。
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Mapping, Sequence

from trendwarden.common.config.schema import StrategyConfig, TrendConfig
from trendwarden.common.models.models import Candle, StrategySignal, TradeAction
from trendwarden.strategies.factors.ema import macd
from trendwarden.strategies.factors.ma import sma
from trendwarden.strategies.factors.rsi import rsi
from trendwarden.strategies.trend import Strategy, ema_crossover_strategy

_HOLD = StrategySignal(TradeAction.HOLD)


def sma_crossover(short_window: int = 10, long_window: int = 20) -> Strategy:
    """SMA 金叉买入、死叉卖出。"""

    def _strategy(candles: Sequence[Candle], position: float) -> StrategySignal:
        if len(candles) < long_window + 1:
            return _HOLD
        fast = sma(candles, short_window)
        slow = sma(candles, long_window)
        if fast[-2] <= slow[-2] and fast[-1] > slow[-1] and position == 0:
            return StrategySignal(TradeAction.BUY, "Golden cross")
        if fast[-2] >= slow[-2] and fast[-1] < slow[-1] and position > 0:
            return StrategySignal(TradeAction.SELL, "Death cross")
        return _HOLD

    return _strategy


def rsi_reversal(period: int = 14, oversold: float = 30, overbought: float = 70) -> Strategy:
    """RSI 上穿超卖线买入，下穿超买线卖出。"""

    def _strategy(candles: Sequence[Candle], position: float) -> StrategySignal:
        if len(candles) < period + 1:
            return _HOLD
        values = rsi(candles, period)
        prev, cur = values[-2], values[-1]
        if prev < oversold <= cur and position == 0:
            return StrategySignal(TradeAction.BUY, f"RSI crossed above {oversold:g}")
        if prev > overbought >= cur and position > 0:
            return StrategySignal(TradeAction.SELL, f"RSI crossed below {overbought:g}")
        return _HOLD

    return _strategy


def macd_histogram(fast_period: int = 12, slow_period: int = 26, signal_period: int = 9) -> Strategy:
    """MACD 柱线上穿 0 买入，下穿 0 卖出。"""
    warmup = slow_period + signal_period

    def _strategy(candles: Sequence[Candle], position: float) -> StrategySignal:
        if len(candles) < warmup:
            return _HOLD
        hist = macd(candles, fast_period, slow_period, signal_period).histogram
        if hist[-2] <= 0 < hist[-1] and position == 0:
            return StrategySignal(TradeAction.BUY, "MACD histogram crossed above 0")
        if hist[-2] >= 0 > hist[-1] and position > 0:
            return StrategySignal(TradeAction.SELL, "MACD histogram crossed below 0")
        return _HOLD

    return _strategy


def sma_rsi_combined(sma_period: int = 20, rsi_period: int = 14) -> Strategy:
    """价格在 SMA 之上且 RSI < 40 买入；跌破 SMA 或 RSI > 70 卖出。"""
    warmup = max(30, sma_period, rsi_period + 1)

    def _strategy(candles: Sequence[Candle], position: float) -> StrategySignal:
        if len(candles) < warmup:
            return _HOLD
        price = candles[-1].close
        avg = sma(candles, sma_period)[-1]
        r = rsi(candles, rsi_period)[-1]
        if price > avg and r < 40 and position == 0:
            return StrategySignal(TradeAction.BUY, f"Price above SMA{sma_period}, RSI shows room to grow")
        if (price < avg or r > 70) and position > 0:
            return StrategySignal(TradeAction.SELL, f"Price below SMA{sma_period} or RSI overbought")
        return _HOLD

    return _strategy


def ema_crossover(**params: Any) -> Strategy:
    """趋势信号生成器的回测适配；参数同 TrendConfig。"""
    return ema_crossover_strategy(TrendConfig(**params))


_REGISTRY: dict[str, Callable[..., Strategy]] = {}


def register_strategy(name: str, factory: Callable[..., Strategy]) -> None:
    _REGISTRY[name] = factory


def get_strategy_factory(name: str) -> Callable[..., Strategy]:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown strategy: {name}")
    return _REGISTRY[name]


def available_strategies() -> list[str]:
    return sorted(_REGISTRY)


def _filter_kwargs(factory: Callable[..., Strategy], params: Mapping[str, Any]) -> dict[str, Any]:
    """过滤出工厂函数支持的参数，避免配置里多字段导致报错。"""
    sig = inspect.signature(factory)
    if any(p.kind == inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values()):
        return dict(params)
    return {k: v for k, v in params.items() if k in sig.parameters}


def build_strategy(cfg: StrategyConfig | Mapping[str, Any] | None) -> Strategy:
    """从配置构建策略。

    支持：
    - StrategyConfig（来自 schema）
    - dict（含 type + 参数字段）
    """
    if cfg is None:
        return ema_crossover()

    if isinstance(cfg, StrategyConfig):
        name = cfg.type
        params = dict(cfg.params)
    elif isinstance(cfg, Mapping):
        name = str(cfg.get("type"))
        params = dict(cfg)
        params.pop("type", None)
    else:
        raise ValueError("strategy cfg must be StrategyConfig or dict")

    factory = get_strategy_factory(name)
    return factory(**_filter_kwargs(factory, params))


# 默认注册
register_strategy("ema_crossover", ema_crossover)
register_strategy("sma_crossover", sma_crossover)
register_strategy("rsi_reversal", rsi_reversal)
register_strategy("macd_histogram", macd_histogram)
register_strategy("sma_rsi_combined", sma_rsi_combined)
