"""配置架构定义（Pydantic Schema）。

目标：
- 每个阈值都有明确的默认值，且都可以在 YAML 中覆盖；
- 启动阶段尽早失败，避免 typo/类型错误在实盘或长回测中才暴露；
- 业务代码只接触强类型对象，不做 `cfg.get(...)`。
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExchangeConfig(BaseModel):
    """交易所配置（ccxt 统一接口）。"""
    name: str = "bybit"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    testnet: bool = False
    default_type: str = "swap"
    model_config = ConfigDict(extra="forbid")


class TrendConfig(BaseModel):
    """趋势信号参数。"""
    fast_period: int = Field(default=10, gt=0)
    slow_period: int = Field(default=50, gt=0)
    adx_threshold: float = 25.0
    atr_multiplier_sl: float = Field(default=2.0, gt=0)
    atr_multiplier_tp: float = Field(default=3.0, gt=0)
    rsi_overbought: float = 75.0
    rsi_oversold: float = 25.0
    leverage: float = Field(default=3.0, gt=0)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_periods(self) -> "TrendConfig":
        if self.fast_period >= self.slow_period:
            raise ValueError("trend.fast_period must be < trend.slow_period")
        if self.rsi_oversold >= self.rsi_overbought:
            raise ValueError("trend.rsi_oversold must be < trend.rsi_overbought")
        return self


class RiskConfig(BaseModel):
    """风控阈值。

    Notes
    -----
    回撤阈值均为非正数比例，例如 -0.03 表示 -3%。
    """
    max_risk_per_trade: float = Field(default=0.02, gt=0, le=1)
    kelly_fraction: float = Field(default=0.25, gt=0, le=1)
    daily_drawdown_limit: float = Field(default=-0.03, le=0)
    weekly_drawdown_limit: float = Field(default=-0.07, le=0)
    total_drawdown_limit: float = Field(default=-0.15, le=0)
    weekly_reduction_factor: float = Field(default=0.5, gt=0, le=1)
    max_concurrent_positions: int = Field(default=5, ge=1)
    max_single_asset_pct: float = Field(default=0.25, gt=0, le=1)
    heartbeat_interval_s: float = Field(default=300.0, gt=0)
    heartbeat_timeout_s: float = Field(default=300.0, gt=0)
    heartbeat_check_interval_s: float = Field(default=30.0, gt=0)
    equity_history_size: int = Field(default=1000, ge=1)
    model_config = ConfigDict(extra="forbid")


class WalkForwardConfig(BaseModel):
    """Walk-Forward 窗口与判定阈值。"""
    in_sample_period: int = Field(default=4320, gt=0)
    out_of_sample_period: int = Field(default=1440, gt=0)
    initial_balance: float = Field(default=1000.0, gt=0)
    min_trades: int = Field(default=30, ge=0)
    max_sharpe_threshold: float = 3.0
    min_oos_fraction: float = Field(default=0.5, gt=0, le=1)
    model_config = ConfigDict(extra="forbid")


class StrategyConfig(BaseModel):
    """回测策略配置（type + params）。

    说明：`strategy:` 下的扁平字段会被自动挪到 `params`，
    用户写起来方便，schema 又能保持严格（forbid extra keys）。
    """
    type: str = "ema_crossover"
    params: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _pack_flat_params(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "params" in data and isinstance(data.get("params"), dict) and set(data.keys()) <= {"type", "params"}:
            return data
        strat_type = data.get("type", "ema_crossover")
        params = {k: v for k, v in data.items() if k not in {"type", "params"}}
        existing = data.get("params")
        if isinstance(existing, dict):
            params = {**params, **existing}
        return {"type": strat_type, "params": params}


class BacktestConfig(BaseModel):
    initial_balance: float = Field(default=10000.0, gt=0)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    model_config = ConfigDict(extra="forbid")


class BotConfig(BaseModel):
    """实盘/模拟循环配置。"""
    pairs: List[str] = Field(default_factory=lambda: ["BTC/USDT:USDT", "ETH/USDT:USDT"])
    interval: str = "1h"
    leverage: Optional[float] = Field(default=None, gt=0)  # 缺省沿用 trend.leverage
    scan_interval_s: float = Field(default=60.0, gt=0)
    starting_equity: float = Field(default=200.0, gt=0)
    dry_run: bool = True
    candle_limit: int = Field(default=200, gt=0)
    sync_equity: bool = False
    kelly_min_trades: int = Field(default=20, ge=1)
    signal_history_size: int = Field(default=100, ge=1)
    summary_check_interval_s: float = Field(default=60.0, gt=0)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_pairs(self) -> "BotConfig":
        if not self.pairs:
            raise ValueError("bot.pairs must not be empty")
        return self


class NotifierConfig(BaseModel):
    kind: Literal["log", "telegram"] = "log"
    telegram_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_telegram(self) -> "NotifierConfig":
        if self.kind == "telegram" and not (self.telegram_token and self.telegram_chat_id):
            raise ValueError("notifier.kind=telegram requires telegram_token and telegram_chat_id")
        return self


class MainConfig(BaseModel):
    """应用总配置。"""
    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    trend: TrendConfig = Field(default_factory=TrendConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    walkforward: WalkForwardConfig = Field(default_factory=WalkForwardConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    bot: BotConfig = Field(default_factory=BotConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_cross_section(self) -> "MainConfig":
        if self.bot.leverage is None:
            self.bot.leverage = self.trend.leverage
        # 每轮扫描都会打心跳，扫描间隔不能长于期望心跳间隔
        if self.bot.scan_interval_s > self.risk.heartbeat_interval_s:
            raise ValueError("bot.scan_interval_s must be <= risk.heartbeat_interval_s")
        if self.risk.heartbeat_interval_s > self.risk.heartbeat_timeout_s:
            raise ValueError("risk.heartbeat_interval_s must be <= risk.heartbeat_timeout_s")
        return self
