"""通知协作方。

风控与交易循环只产出结构化事件，投递方式由具体 Notifier 决定。
投递是 fire-and-forget：任何失败只记录日志，不回传到风控核心。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

import requests

from trendwarden.common.config.schema import NotifierConfig
from trendwarden.common.utils.logging import setup_logger

logger = setup_logger("notifier")


class EventKind(str, Enum):
    STARTUP = "startup"
    TRADE_OPENED = "trade_opened"
    TRADE_CLOSED = "trade_closed"
    DRAWDOWN_BREACH = "drawdown_breach"
    HEARTBEAT_TIMEOUT = "heartbeat_timeout"
    KILL_SWITCH = "kill_switch"
    DAILY_SUMMARY = "daily_summary"


_ICONS = {
    EventKind.STARTUP: "🟢",
    EventKind.TRADE_OPENED: "📈",
    EventKind.TRADE_CLOSED: "📉",
    EventKind.DRAWDOWN_BREACH: "⚠️",
    EventKind.HEARTBEAT_TIMEOUT: "💀",
    EventKind.KILL_SWITCH: "🚨",
    EventKind.DAILY_SUMMARY: "📊",
}


@dataclass(frozen=True)
class NotificationEvent:
    kind: EventKind
    title: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def render(self) -> str:
        lines = [f"{_ICONS.get(self.kind, '')} {self.title}".strip()]
        for key, value in self.fields.items():
            if isinstance(value, float):
                value = f"{value:,.4f}".rstrip("0").rstrip(".")
            lines.append(f"{key}: {value}")
        lines.append(self.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC"))
        return "\n".join(lines)


class Notifier(ABC):
    """通知投递接口。`send` 不能阻塞调用方（事件循环线程）。"""

    @abstractmethod
    def send(self, event: NotificationEvent) -> Optional[Future]:
        raise NotImplementedError

    def close(self) -> None:
        """等待已排队的投递完成。"""


class LogNotifier(Notifier):
    """只写日志（dry-run 与测试默认使用）。"""

    def send(self, event: NotificationEvent) -> None:
        logger.info("[%s] %s", event.kind.value, event.render().replace("\n", " | "))


class TelegramNotifier(Notifier):
    """通过 Telegram Bot API `sendMessage` 投递。

    HTTP 请求在单线程后台池中按顺序发出，`send` 立即返回；
    投递失败只记录日志。
    """

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(
        self,
        token: str,
        chat_id: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        executor: Optional[Executor] = None,
    ):
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="telegram")

    def send(self, event: NotificationEvent) -> Future:
        return self._executor.submit(self._post, event)

    def _post(self, event: NotificationEvent) -> bool:
        try:
            resp = self.session.post(
                self.API_URL.format(token=self.token),
                json={"chat_id": self.chat_id, "text": event.render()},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Telegram delivery of %s failed: %s", event.kind.value, exc)
            return False
        return True

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def build_notifier(cfg: NotifierConfig | None) -> Notifier:
    if cfg is None or cfg.kind == "log":
        return LogNotifier()
    return TelegramNotifier(str(cfg.telegram_token), str(cfg.telegram_chat_id))


def safe_notify(notifier: Notifier | None, event: NotificationEvent) -> None:
    """投递事件；失败只记录日志。"""
    if notifier is None:
        return
    try:
        notifier.send(event)
    except Exception as exc:
        logger.warning("Notification %s failed: %s", event.kind.value, exc)
