"""
Время: UTC ISO (failedAt в DLQ) и миллисекунды (таймстамп задачи, имена файлов).
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_now_iso() -> str:
    """ISO 8601 с миллисекундами и суффиксом Z: 2025-01-20T10:00:00.000Z"""
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_ms() -> int:
    return int(utc_now().timestamp() * 1000)
