"""策略层：指标因子、趋势信号、预置回测策略与风控。"""
