"""
Базовые интерфейсы доставки.

Назначение:
- единый контракт для каналов уведомлений (сейчас Telegram)
- возможность подменить транспорт в тестах
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class DeliveryResult:
    """
    Результат доставки в один чат.
    """

    ok: bool
    provider: str
    chat_id: str
    message_id: str | None = None
    error: str | None = None
    meta: dict[str, Any] | None = None


class MessageTransport(Protocol):
    """
    Контракт транспорта сообщений.
    """

    def send_message(
        self,
        *,
        chat_id: str,
        text: str,
        parse_mode: str = "Markdown",
        disable_web_page_preview: bool = False,
    ) -> DeliveryResult: ...
