"""执行引擎层（core）。

- `Backtester`：单窗口确定性回测；
- `WalkForwardEngine`：滚动 IS/OOS 验证；
- `TradingEngine`：实盘/模拟循环（扫描 + 心跳监控），风控状态由 `RiskWorker` 独占。
"""
