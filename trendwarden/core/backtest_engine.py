"""单窗口回测引擎。

仓位模型刻意简化（与实盘 RiskManager 无关）：
- BUY：以当根收盘价用全部现金买入；
- SELL：以当根收盘价卖出全部持仓；
- 权益曲线 = 现金 + 持仓 * 收盘价，起点为初始资金，之后每根 K 线记录一次。

结果只依赖 (candles, strategy, symbol, label)，同样的输入得到完全相同的结果。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from trendwarden.common.models.models import Candle, TradeAction
from trendwarden.strategies.trend import Strategy


@dataclass(frozen=True)
class BacktestTrade:
    timestamp: int
    action: TradeAction
    price: float
    quantity: float
    value: float


@dataclass(frozen=True)
class BacktestResult:
    symbol: str
    label: str
    start_ts: Optional[int]
    end_ts: Optional[int]
    initial_balance: float
    final_balance: float
    total_return: float
    total_return_pct: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    max_drawdown: float
    max_drawdown_pct: float
    trades: tuple[BacktestTrade, ...]
    equity_curve: tuple[float, ...]


def _count_round_trips(trades: Sequence[BacktestTrade]) -> tuple[int, int]:
    """按 (买, 卖) 两两配对统计胜负：卖出金额高于买入金额记为胜。

    Notes
    -----
    假设交易严格买卖交替；末尾未平仓的买入不计入。
    """
    wins = losses = 0
    for i in range(0, len(trades) - 1, 2):
        if trades[i + 1].value > trades[i].value:
            wins += 1
        else:
            losses += 1
    return wins, losses


def _max_drawdown(curve: Sequence[float]) -> float:
    """权益曲线上的最大峰谷回撤（金额）。"""
    if len(curve) == 0:
        return 0.0
    equity = np.asarray(curve, dtype=float)
    return float((np.maximum.accumulate(equity) - equity).max())


class Backtester:
    """单次遍历的回测器。

    Parameters
    ----------
    initial_balance:
        初始现金。
    """

    def __init__(self, initial_balance: float = 10000.0):
        if initial_balance <= 0:
            raise ValueError("initial_balance must be > 0")
        self.initial_balance = float(initial_balance)

    def run(self, candles: Sequence[Candle], strategy: Strategy, symbol: str, label: str) -> BacktestResult:
        """在一段 K 线上回放策略。

        Parameters
        ----------
        candles:
            升序 K 线；第 i 步策略只能看到 `candles[: i + 1]`。
        strategy:
            `(candles_so_far, position) -> StrategySignal`。
        symbol, label:
            写入结果，便于报告区分。

        Returns
        -------
        BacktestResult
            空序列返回零交易的中性结果。
        """
        balance = self.initial_balance
        position = 0.0
        trades: list[BacktestTrade] = []
        curve = [self.initial_balance]

        for i, candle in enumerate(candles):
            signal = strategy(candles[: i + 1], position)
            price = candle.close

            if signal.action is TradeAction.BUY and position == 0:
                qty = balance / price
                trades.append(BacktestTrade(candle.timestamp, TradeAction.BUY, price, qty, balance))
                position = qty
                balance = 0.0
            elif signal.action is TradeAction.SELL and position > 0:
                value = position * price
                trades.append(BacktestTrade(candle.timestamp, TradeAction.SELL, price, position, value))
                balance = value
                position = 0.0

            curve.append(balance + position * price)

        final_price = candles[-1].close if candles else 0.0
        final_balance = balance + position * final_price
        total_return = final_balance - self.initial_balance
        wins, losses = _count_round_trips(trades)
        max_dd = _max_drawdown(curve)

        return BacktestResult(
            symbol=symbol,
            label=label,
            start_ts=candles[0].timestamp if candles else None,
            end_ts=candles[-1].timestamp if candles else None,
            initial_balance=self.initial_balance,
            final_balance=final_balance,
            total_return=total_return,
            total_return_pct=total_return / self.initial_balance * 100.0,
            total_trades=len(trades),
            winning_trades=wins,
            losing_trades=losses,
            win_rate=wins / (wins + losses) * 100.0 if wins + losses > 0 else 0.0,
            max_drawdown=max_dd,
            max_drawdown_pct=max_dd / self.initial_balance * 100.0,
            trades=tuple(trades),
            equity_curve=tuple(curve),
        )
