"""
Утилиты для работы с результатами доставки.

Назначение:
- нормализация ошибок
- единое представление статусов для логов
"""

from __future__ import annotations

from .base import DeliveryResult


def ok_result(
    provider: str, chat_id: str, message_id: str | None = None, meta: dict | None = None
) -> DeliveryResult:
    return DeliveryResult(
        ok=True, provider=provider, chat_id=chat_id, message_id=message_id, meta=meta
    )


def fail_result(
    provider: str, chat_id: str, error: str, meta: dict | None = None
) -> DeliveryResult:
    return DeliveryResult(ok=False, provider=provider, chat_id=chat_id, error=error, meta=meta)
