"""风控状态的唯一持有者。

扫描循环和心跳监控都不直接调用 RiskManager，而是把任务（接收 RiskManager 的函数，
可以是协程函数）投递到队列，由单个 worker 依次执行。一个任务内部的
“计算仓位 → 闸门 → 下单 → 记账”因此不会与其他任务交错。

Notes
-----
任务内部不能再调用 `submit`，否则会互相等待。
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from trendwarden.common.utils.logging import setup_logger
from trendwarden.strategies.risk.manager import RiskManager

RiskJob = Callable[[RiskManager], Union[Any, Awaitable[Any]]]

logger = setup_logger("risk-worker")


class RiskWorker:
    def __init__(self, risk: RiskManager):
        self.risk = risk
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._accepting = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._accepting = True
        self._task = asyncio.create_task(self._run(), name="risk-worker")

    async def submit(self, job: RiskJob) -> Any:
        """投递任务并等待结果；任务抛出的异常原样传回调用方。"""
        if not self._accepting or self._queue is None:
            raise RuntimeError("RiskWorker is not running")
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((job, fut))
        return await fut

    async def _run(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                job, fut = item
                try:
                    result = job(self.risk)
                    if inspect.isawaitable(result):
                        result = await result
                except Exception as exc:
                    if not fut.cancelled():
                        fut.set_exception(exc)
                else:
                    if not fut.cancelled():
                        fut.set_result(result)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """停止接收新任务，执行完已排队的任务后退出。"""
        if not self.running or self._queue is None:
            return
        self._accepting = False
        await self._queue.put(None)
        assert self._task is not None
        await self._task
        logger.info("Risk worker stopped")
