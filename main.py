"""TrendWarden 统一命令行入口。

通过子命令驱动不同任务：

- `runner`：实盘/干跑主循环。连接交易所，按周期扫描交易对并执行信号。
- `backtest`：单次回测。对 CSV 历史 K 线验证策略。
- `walkforward`：Walk-Forward 验证。退出码 0=PASS，1=WARNING，2=FAIL。
- `analyze`：对 CSV 最新一段数据输出当前趋势信号与指标。
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from typing import Any

from trendwarden.research.experiment import run_experiment, run_runner

VERDICT_EXIT_CODES = {"PASS": 0, "WARNING": 1, "FAIL": 2}


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (runner/backtest/walkforward/analyze)
    """
    config: str
    task: str
    data: str | None = None
    symbol: str = "BTC/USDT:USDT"
    strategy: str | None = None
    output_dir: str | None = None
    max_scans: int | None = None  # 仅用于 debug，扫描 N 轮后退出


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="trendwarden", description="TrendWarden 统一入口")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    def _add_data_args(p: argparse.ArgumentParser, *, with_strategy: bool = True) -> None:
        p.add_argument("--data", required=True, help="K 线 CSV 路径")
        p.add_argument("--symbol", default="BTC/USDT:USDT")
        if with_strategy:
            p.add_argument("--strategy", default=None, help="策略名 (默认取配置 backtest.strategy)")
            p.add_argument("--output-dir", default=None, help="结果落盘目录")

    # 允许 `python main.py --config ... backtest`（全局）与 `python main.py backtest --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_runner = sub.add_parser("runner", help="实盘/干跑主循环")
    _add_config_arg(p_runner, default=argparse.SUPPRESS)
    p_runner.add_argument(
        "--max-scans",
        type=int,
        default=None,
        help="扫描多少轮后退出（用于 dry-run/测试）",
    )

    p_backtest = sub.add_parser("backtest", help="单次回测")
    _add_config_arg(p_backtest, default=argparse.SUPPRESS)
    _add_data_args(p_backtest)

    p_wf = sub.add_parser("walkforward", help="Walk-Forward 验证")
    _add_config_arg(p_wf, default=argparse.SUPPRESS)
    _add_data_args(p_wf)

    p_analyze = sub.add_parser("analyze", help="当前趋势信号")
    _add_config_arg(p_analyze, default=argparse.SUPPRESS)
    _add_data_args(p_analyze, with_strategy=False)

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    """解析命令行参数；未给子命令时默认 runner。"""
    parser = build_parser()
    ns = parser.parse_args(argv)
    task = ns.task or "runner"
    config = getattr(ns, "config", "config/config.yml")
    return CliArgs(
        config=str(config),
        task=task,
        data=getattr(ns, "data", None),
        symbol=str(getattr(ns, "symbol", "BTC/USDT:USDT")),
        strategy=getattr(ns, "strategy", None),
        output_dir=getattr(ns, "output_dir", None),
        max_scans=getattr(ns, "max_scans", None),
    )


def main(argv: list[str] | None = None) -> Any:
    """程序主入口，返回对应子命令的 summary dict。"""
    args = parse_args(argv)

    if args.task == "runner":
        return run_runner(args.config, max_scans=args.max_scans)

    if args.task in ("backtest", "walkforward"):
        return run_experiment(
            args.config,
            task=args.task,
            data=args.data,
            symbol=args.symbol,
            strategy=args.strategy,
            output_dir=args.output_dir,
        )

    if args.task == "analyze":
        return run_experiment(args.config, task="analyze", data=args.data, symbol=args.symbol)

    raise ValueError(f"Unknown task: {args.task}")


def exit_code(result: Any) -> int:
    """walkforward 结果映射为进程退出码，其余任务恒为 0。"""
    if isinstance(result, dict) and "verdict" in result:
        return VERDICT_EXIT_CODES.get(str(result["verdict"]), 2)
    return 0


def cli(argv: list[str] | None = None) -> int:
    """console script 入口：运行任务并返回进程退出码。"""
    return exit_code(main(argv))


if __name__ == "__main__":
    sys.exit(cli())
