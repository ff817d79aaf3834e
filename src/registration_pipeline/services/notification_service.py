"""
Уведомления о новых регистрациях.

Назначение:
- рендер Markdown-сообщения по шаблону
- рассылка во все чаты из NOTIFICATION_CHAT_ID
- до N попыток с экспоненциальной задержкой (1s, 2s, ...)

Важно:
- по умолчанию попытка "всё или ничего": если хотя бы один чат не принял
  сообщение, следующая попытка шлёт снова во все чаты (возможны дубли)
- NOTIFY_TRACK_PER_CHAT=true: повтор только в чаты без успешной доставки
- ошибка уведомления НЕ роняет задачу: данные уже в БД и таблице
"""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from registration_pipeline.common.logging import get_project_logger
from registration_pipeline.common.metrics import NOTIFY_ATTEMPTS_TOTAL
from registration_pipeline.delivery.base import DeliveryResult, MessageTransport
from registration_pipeline.delivery.telegram.sender import format_sent_at, render_message
from registration_pipeline.queue.retry import call_with_backoff

log = get_project_logger()

REGISTRATION_TEMPLATE = "registration.md.j2"


class NotificationAttemptError(Exception):
    def __init__(self, failed: list[DeliveryResult]) -> None:
        self.failed = failed
        chats = ", ".join(r.chat_id for r in failed)
        super().__init__(f"notification failed for chats: {chats}")


@dataclass
class NotificationReport:
    ok: bool
    attempts: int
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: bool = False


class NotificationService:
    def __init__(
        self,
        transport: MessageTransport | None,
        chat_ids: list[str],
        *,
        max_attempts: int = 3,
        backoff_base_sec: float = 1.0,
        track_per_chat: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.chat_ids = [c for c in chat_ids if c]
        self.max_attempts = max_attempts
        self.backoff_base_sec = backoff_base_sec
        self.track_per_chat = track_per_chat
        self._sleep = sleep

    def _send_all(
        self, transport: MessageTransport, chat_ids: list[str], text: str
    ) -> list[DeliveryResult]:
        def _send(chat_id: str) -> DeliveryResult:
            return transport.send_message(chat_id=chat_id, text=text, parse_mode="Markdown")

        if len(chat_ids) == 1:
            return [_send(chat_ids[0])]
        with ThreadPoolExecutor(max_workers=len(chat_ids)) as pool:
            return list(pool.map(_send, chat_ids))

    def broadcast(self, text: str) -> NotificationReport:
        """
        Разослать готовый текст во все чаты с ретраями. Никогда не бросает.
        """
        if self.transport is None or not self.chat_ids:
            log.warning("notification_skipped", extra={"payload": {"reason": "not_configured"}})
            return NotificationReport(ok=False, attempts=0, skipped=True)

        transport = self.transport
        delivered: set[str] = set()

        def _attempt(attempt: int) -> None:
            targets = list(self.chat_ids)
            if self.track_per_chat:
                targets = [c for c in targets if c not in delivered]
            results = self._send_all(transport, targets, text)
            failed = [r for r in results if not r.ok]
            for r in results:
                if r.ok:
                    delivered.add(r.chat_id)
            if failed:
                NOTIFY_ATTEMPTS_TOTAL.labels(result="failed").inc()
                raise NotificationAttemptError(failed)
            NOTIFY_ATTEMPTS_TOTAL.labels(result="ok").inc()
            log.info(
                "notification_sent",
                extra={
                    "payload": {
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "chats": len(targets),
                    }
                },
            )

        _, outcome = call_with_backoff(
            _attempt,
            max_attempts=self.max_attempts,
            base_delay_sec=self.backoff_base_sec,
            sleep=self._sleep,
            op="notify_registration",
        )
        if not outcome.ok:
            NOTIFY_ATTEMPTS_TOTAL.labels(result="exhausted").inc()
            log.error(
                "notification_exhausted",
                extra={
                    "payload": {
                        "attempts": outcome.attempts,
                        "delivered": sorted(delivered),
                        "err": outcome.last_error,
                    }
                },
            )
        return NotificationReport(
            ok=outcome.ok,
            attempts=outcome.attempts,
            delivered=sorted(delivered),
            failed=[c for c in self.chat_ids if c not in delivered],
        )

    def notify_registration(self, data: dict[str, Any]) -> NotificationReport:
        text = render_message(REGISTRATION_TEMPLATE, sent_at=format_sent_at(), **data)
        return self.broadcast(text)
