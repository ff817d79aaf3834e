"""
Алерты администраторам и обработка ошибок на границе процесса.

Назначение:
- сообщение в Telegram админам (TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID)
- sys.excepthook / threading.excepthook: лог + алерт; ошибки связи
  (connection refused / timeout / host not found) завершают процесс
"""

from __future__ import annotations

import os
import sys
import threading
from collections.abc import Callable

from registration_pipeline.common.errors import error_code_of, is_connectivity_error
from registration_pipeline.common.logging import get_project_logger
from registration_pipeline.delivery.base import MessageTransport
from registration_pipeline.delivery.telegram.sender import (
    TelegramBotSender,
    format_sent_at,
    render_message,
)

log = get_project_logger()

ALERT_TEMPLATE = "worker_alert.md.j2"


class AdminAlerter:
    def __init__(self, transport: MessageTransport | None, chat_ids: list[str]) -> None:
        self.transport = transport
        self.chat_ids = [c for c in chat_ids if c]

    @classmethod
    def from_settings(cls, settings) -> AdminAlerter:
        transport = None
        if settings.alert_bot_token:
            transport = TelegramBotSender(
                bot_token=settings.alert_bot_token,
                api_base=settings.telegram_api_base,
                timeout_sec=settings.http_timeout_sec,
            )
        return cls(transport, settings.alert_chat_id_list())

    def send_error_alert(self, error: BaseException, context: str = "") -> int:
        """
        Разослать алерт. Возвращает число успешных доставок, никогда не бросает.
        """
        if self.transport is None or not self.chat_ids:
            log.warning("alert_skipped", extra={"payload": {"reason": "not_configured"}})
            return 0
        try:
            text = render_message(
                ALERT_TEMPLATE,
                context=context,
                message=str(error)[:500] or type(error).__name__,
                code=error_code_of(error),
                sent_at=format_sent_at(),
            )
            delivered = 0
            for chat_id in self.chat_ids:
                if self.transport.send_message(chat_id=chat_id, text=text).ok:
                    delivered += 1
        except Exception as e:
            log.error("alert_send_failed", extra={"payload": {"err": str(e)[:200]}})
            return 0
        log.info(
            "alert_sent",
            extra={"payload": {"delivered": delivered, "chats": len(self.chat_ids)}},
        )
        return delivered


def handle_uncaught(
    error: BaseException,
    context: str,
    alerter: AdminAlerter,
    *,
    exit_fn: Callable[[int], None] = os._exit,
) -> bool:
    """
    Лог + алерт. Для ошибок связи завершает процесс (код 1) и возвращает True.
    """
    log.error(
        "uncaught_error",
        exc_info=(type(error), error, error.__traceback__),
        extra={"payload": {"context": context, "code": error_code_of(error)}},
    )
    alerter.send_error_alert(error, context)
    if is_connectivity_error(error):
        log.error("fatal_connection_error_exiting", extra={"payload": {"context": context}})
        exit_fn(1)
        return True
    return False


def install_process_hooks(alerter: AdminAlerter) -> None:
    def _sys_hook(exc_type, exc, tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        handle_uncaught(exc, "Uncaught Exception", alerter)

    def _thread_hook(args: threading.ExceptHookArgs) -> None:
        if args.exc_value is None:
            return
        thread_name = args.thread.name if args.thread else "?"
        context = f"Uncaught Exception in thread {thread_name}"
        if not handle_uncaught(args.exc_value, context, alerter):
            # упал только поток, процесс продолжает работу
            log.warning("worker_continuing_after_error", extra={"payload": {"context": context}})

    sys.excepthook = _sys_hook
    threading.excepthook = _thread_hook
