"""趋势信号生成器（EMA 交叉 + ADX 市场状态过滤）。

规则：
- Regime 过滤：ADX 低于阈值时一律 HOLD，趋势入场只在趋势强度足够时发生；
- Entry：快 EMA 从 <= 慢 EMA 变为 > 慢 EMA（金叉）且 +DI > -DI → LONG，
  死叉且 -DI > +DI → SHORT；RSI 过热/过冷时否决；
- Exit：处于上升趋势但 -DI 反超 +DI → CLOSE_LONG，下降趋势对称；
- 止损/止盈按 ATR 倍数放置。

每次调用都是无状态的：只看传入的 K 线序列。
"""

from __future__ import annotations

from typing import Callable, Sequence

from trendwarden.common.config.schema import TrendConfig
from trendwarden.common.models.models import (
    Candle,
    IndicatorSnapshot,
    MarketRegime,
    RegimeInfo,
    SignalAction,
    StrategySignal,
    TradeAction,
    TrendDirection,
    TrendSignal,
)
from trendwarden.strategies.factors.adx import adx
from trendwarden.strategies.factors.atr import atr
from trendwarden.strategies.factors.ema import ema
from trendwarden.strategies.factors.rsi import rsi

INDICATOR_PERIOD = 14
TRENDING_ADX = 25.0
RANGING_ADX = 15.0
VOLATILE_ATR_PCT = 3.0

Strategy = Callable[[Sequence[Candle], float], StrategySignal]


def _classify_regime(adx_value: float, atr_value: float, price: float) -> MarketRegime:
    if adx_value >= TRENDING_ADX:
        return MarketRegime.TRENDING
    if adx_value <= RANGING_ADX:
        return MarketRegime.RANGING
    # 中间地带用 ATR 占价格百分比做 tie-break
    atr_pct = atr_value / price * 100.0 if price > 0 else 0.0
    return MarketRegime.VOLATILE if atr_pct > VOLATILE_ATR_PCT else MarketRegime.RANGING


def _direction(plus_di: float, minus_di: float) -> TrendDirection:
    if plus_di > minus_di:
        return TrendDirection.UP
    if minus_di > plus_di:
        return TrendDirection.DOWN
    return TrendDirection.NONE


def detect_regime(candles: Sequence[Candle], adx_period: int = INDICATOR_PERIOD) -> RegimeInfo:
    """按 ADX（必要时加 ATR%）对市场状态分类。"""
    if not candles:
        return RegimeInfo(MarketRegime.RANGING, 0.0, TrendDirection.NONE)
    res = adx(candles, adx_period)
    adx_value = res.adx[-1]
    atr_value = atr(candles, INDICATOR_PERIOD)[-1]
    regime = _classify_regime(adx_value, atr_value, candles[-1].close)
    return RegimeInfo(regime, adx_value, _direction(res.plus_di[-1], res.minus_di[-1]))


def min_candles_required(cfg: TrendConfig) -> int:
    return max(cfg.slow_period + 5, 30)


def analyze_trend(candles: Sequence[Candle], cfg: TrendConfig | None = None) -> TrendSignal:
    """对最新一根 K 线给出趋势信号。

    Parameters
    ----------
    candles:
        升序 K 线。
    cfg:
        趋势参数；为空时使用默认值。

    Returns
    -------
    TrendSignal
        数据不足时返回 confidence=0 的 HOLD，不抛异常。
    """
    cfg = cfg or TrendConfig()
    need = min_candles_required(cfg)
    if len(candles) < need:
        return TrendSignal(
            action=SignalAction.HOLD,
            reason=f"Insufficient data (need {need} candles, have {len(candles)})",
            regime=MarketRegime.RANGING,
            adx_value=0.0,
            confidence=0.0,
            price=candles[-1].close if candles else 0.0,
            indicators=IndicatorSnapshot(rsi=0.0),
        )

    fast = ema(candles, cfg.fast_period)
    slow = ema(candles, cfg.slow_period)
    rsi_now = rsi(candles, INDICATOR_PERIOD)[-1]
    atr_now = atr(candles, INDICATOR_PERIOD)[-1]
    dmi = adx(candles, INDICATOR_PERIOD)

    price = candles[-1].close
    fast_now, slow_now = fast[-1], slow[-1]
    fast_prev, slow_prev = fast[-2], slow[-2]
    adx_now = dmi.adx[-1]
    plus_di, minus_di = dmi.plus_di[-1], dmi.minus_di[-1]

    snapshot = IndicatorSnapshot(
        fast_ema=fast_now,
        slow_ema=slow_now,
        rsi=rsi_now,
        atr=atr_now,
        adx=adx_now,
        plus_di=plus_di,
        minus_di=minus_di,
    )
    regime = _classify_regime(adx_now, atr_now, price)

    def _signal(action: SignalAction, reason: str, confidence: float, sl: float | None = None, tp: float | None = None) -> TrendSignal:
        return TrendSignal(
            action=action,
            reason=reason,
            regime=regime,
            adx_value=adx_now,
            confidence=confidence,
            price=price,
            indicators=snapshot,
            stop_loss=sl,
            take_profit=tp,
        )

    if adx_now < cfg.adx_threshold:
        return _signal(
            SignalAction.HOLD,
            f"Ranging market (ADX {adx_now:.1f} < {cfg.adx_threshold:g}). No trend-following trades.",
            0.0,
        )

    golden_cross = fast_prev <= slow_prev and fast_now > slow_now
    death_cross = fast_prev >= slow_prev and fast_now < slow_now
    entry_confidence = min(90.0, 50.0 + (adx_now - cfg.adx_threshold) * 2.0)

    if golden_cross and plus_di > minus_di:
        if rsi_now > cfg.rsi_overbought:
            return _signal(SignalAction.HOLD, f"Golden cross but RSI overbought ({rsi_now:.1f})", 30.0)
        return _signal(
            SignalAction.LONG,
            f"Golden cross (EMA{cfg.fast_period} crossed above EMA{cfg.slow_period}), "
            f"ADX {adx_now:.1f}, +DI {plus_di:.1f} > -DI {minus_di:.1f}",
            entry_confidence,
            sl=price - atr_now * cfg.atr_multiplier_sl,
            tp=price + atr_now * cfg.atr_multiplier_tp,
        )

    if death_cross and minus_di > plus_di:
        if rsi_now < cfg.rsi_oversold:
            return _signal(SignalAction.HOLD, f"Death cross but RSI oversold ({rsi_now:.1f})", 30.0)
        return _signal(
            SignalAction.SHORT,
            f"Death cross (EMA{cfg.fast_period} crossed below EMA{cfg.slow_period}), "
            f"ADX {adx_now:.1f}, -DI {minus_di:.1f} > +DI {plus_di:.1f}",
            entry_confidence,
            sl=price + atr_now * cfg.atr_multiplier_sl,
            tp=price - atr_now * cfg.atr_multiplier_tp,
        )

    if fast_now > slow_now and minus_di > plus_di:
        return _signal(SignalAction.CLOSE_LONG, "Trend weakening: -DI crossed above +DI while in uptrend", 60.0)
    if fast_now < slow_now and plus_di > minus_di:
        return _signal(SignalAction.CLOSE_SHORT, "Trend weakening: +DI crossed above -DI while in downtrend", 60.0)

    bias = "bullish" if fast_now > slow_now else "bearish"
    return _signal(
        SignalAction.HOLD,
        f"In {bias} trend (ADX {adx_now:.1f}), waiting for crossover signal",
        40.0,
    )


def ema_crossover_strategy(cfg: TrendConfig | None = None) -> Strategy:
    """把趋势信号适配为回测策略（只做多：SHORT/CLOSE_LONG 都视为平多）。"""
    cfg = cfg or TrendConfig()

    def _strategy(candles: Sequence[Candle], position: float) -> StrategySignal:
        sig = analyze_trend(candles, cfg)
        if sig.action is SignalAction.LONG and position == 0:
            return StrategySignal(TradeAction.BUY, sig.reason)
        if sig.action in (SignalAction.SHORT, SignalAction.CLOSE_LONG) and position > 0:
            return StrategySignal(TradeAction.SELL, sig.reason)
        return StrategySignal(TradeAction.HOLD, sig.reason)

    return _strategy
