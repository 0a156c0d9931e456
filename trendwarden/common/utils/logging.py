"""
轻量日志封装。

Notes
-----
`setup_logger` 会避免重复添加 handler，否则多次调用会出现重复日志。
通过本模块创建的 logger 会被记录下来，`set_log_level` 可以统一调整级别。
"""

from __future__ import annotations

import logging

_LEVEL = logging.INFO
_LOGGERS: dict[str, logging.Logger] = {}


def setup_logger(name: str = "trendwarden", level: int | None = None) -> logging.Logger:
    """
    创建或获取命名 logger。

    Parameters
    ----------
    name:
        Logger 名称。
    level:
        日志级别；为空时使用全局级别（默认 INFO）。

    Returns
    -------
    logging.Logger
        已配置的 logger。
    """
    logger = logging.getLogger(name)
    logger.setLevel(_LEVEL if level is None else level)
    logger.propagate = False

    has_stream = any(isinstance(h, logging.StreamHandler) for h in logger.handlers)
    if not has_stream:
        ch = logging.StreamHandler()
        fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s")
        ch.setFormatter(fmt)
        logger.addHandler(ch)

    _LOGGERS[name] = logger
    return logger


def set_log_level(level: int | str) -> None:
    """调整全局日志级别，并同步到已创建的 logger。"""
    global _LEVEL
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved
    _LEVEL = level
    for logger in _LOGGERS.values():
        logger.setLevel(level)
