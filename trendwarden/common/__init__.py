"""公共层（common）：数据模型、配置与日志工具。"""
