"""配置加载。

支持 YAML 配置、环境变量占位符 `${VAR}` 展开，以及 .env/.env.local 自动加载。
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from trendwarden.common.config.schema import MainConfig

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _env_candidates(cfg_path: Path) -> list[Path]:
    """配置文件目录与其上级目录下的 .env/.env.local，靠前的优先。"""
    return [
        cfg_path.parent / ".env",
        cfg_path.parent / ".env.local",
        cfg_path.parent.parent / ".env",
        cfg_path.parent.parent / ".env.local",
    ]


def _load_envs(cfg_path: Path) -> list[Path]:
    """按顺序加载存在的 .env 文件；已有环境变量不会被覆盖。"""
    loaded = []
    for env_file in _env_candidates(cfg_path):
        if env_file.is_file():
            load_dotenv(env_file, override=False)
            loaded.append(env_file)
    return loaded


def expand_env(value: Any) -> Any:
    """递归展开 `${VAR}` 占位符；变量缺失时报错而不是静默替换为空。"""
    if isinstance(value, str):
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ValueError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return _ENV_PATTERN.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def load_config(path: str | Path, load_env: bool = True, expand_env_vars: bool = True) -> MainConfig:
    """从 YAML 读取并解析配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand_env_vars:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    MainConfig
        校验后的配置对象；YAML 中缺失的段落使用默认值。

    Raises
    ------
    FileNotFoundError
        配置文件不存在。
    ValueError
        缺失环境变量，或 YAML 顶层不是映射。
    pydantic.ValidationError
        未知字段或取值越界。
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    if load_env:
        _load_envs(cfg_path)

    with cfg_path.open("r", encoding="utf-8") as f:
        raw_cfg = yaml.safe_load(f) or {}
    if not isinstance(raw_cfg, dict):
        raise ValueError(f"Config root must be a mapping: {cfg_path}")

    if expand_env_vars:
        raw_cfg = expand_env(raw_cfg)
    return MainConfig.model_validate(raw_cfg)
