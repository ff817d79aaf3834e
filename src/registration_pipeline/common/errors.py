"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для логов/DLQ
- разделение ошибок задачи (в DLQ) и ошибок инфраструктуры (фатальные)
"""

from __future__ import annotations

import errno
import socket
from dataclasses import dataclass

import redis
import requests


class ErrCode:
    # Общие
    TIMEOUT = "timeout"

    # Задачи очереди
    INVALID_PAYLOAD = "invalid_payload"
    REGISTRATION_NOT_FOUND = "registration_not_found"

    # Провайдеры
    STORAGE_PROVIDER_ERROR = "storage_provider_error"
    DRIVE_PROVIDER_ERROR = "drive_provider_error"
    SHEETS_PROVIDER_ERROR = "sheets_provider_error"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов/PII)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class InvalidJobPayloadError(AppError):
    """
    Payload из очереди не парсится или не проходит схему.
    raw сохраняется, чтобы положить исходный текст в DLQ.
    """

    def __init__(self, message: str, raw: str, details: dict | None = None) -> None:
        super().__init__(ErrCode.INVALID_PAYLOAD, message, details)
        self.raw = raw


class RegistrationNotFoundError(AppError):
    def __init__(self, registration_id: int) -> None:
        super().__init__(
            ErrCode.REGISTRATION_NOT_FOUND,
            f"Registration {registration_id} not found in database",
            {"registration_id": registration_id},
        )


class JobTimeoutError(AppError):
    def __init__(self, job_id: str, timeout_sec: float) -> None:
        super().__init__(
            ErrCode.TIMEOUT,
            f"Job {job_id} exceeded deadline of {timeout_sec:g}s",
            {"job_id": job_id, "timeout_sec": timeout_sec},
        )


class ProviderError(AppError):
    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)


# =============================================================================
# КЛАССИФИКАЦИЯ
# =============================================================================
_CONNECTIVITY_ERRNOS = {
    errno.ECONNREFUSED,
    errno.ETIMEDOUT,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
}


def is_connectivity_error(exc: BaseException) -> bool:
    """
    Ошибка связи (connection refused / timeout / host not found).

    Такие ошибки вне цикла считаются фатальными: процесс завершается,
    перезапуск делает внешний supervisor.
    """
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        if isinstance(
            cur,
            (
                redis.ConnectionError,
                redis.TimeoutError,
                requests.ConnectionError,
                requests.Timeout,
                socket.gaierror,
                socket.timeout,
                ConnectionRefusedError,
                TimeoutError,
            ),
        ):
            return True
        if isinstance(cur, OSError) and cur.errno in _CONNECTIVITY_ERRNOS:
            return True
        cur = cur.__cause__ or cur.__context__
    return False


def error_code_of(exc: BaseException) -> str:
    if isinstance(exc, AppError):
        return exc.code
    if isinstance(exc, OSError) and exc.errno is not None:
        return errno.errorcode.get(exc.errno, str(exc.errno))
    return type(exc).__name__
