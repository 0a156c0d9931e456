"""trendwarden：杠杆永续合约的趋势信号、回测验证与风控核心。"""

__version__ = "0.3.0"
