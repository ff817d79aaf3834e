"""
Retry/backoff утилиты.

Назначение:
- ограниченное число попыток с экспоненциальной задержкой
- используется на шаге уведомлений (остальные шаги не ретраятся:
  упавшая задача целиком уходит в DLQ)

Важно:
- это синхронная реализация (подходит для нашего воркера)
- sleep инжектируется, чтобы тесты не ждали реальные секунды
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from registration_pipeline.common.logging import get_project_logger

log = get_project_logger()

T = TypeVar("T")


def backoff_delay(attempt: int, base_sec: float = 1.0) -> float:
    """
    Задержка после неудачной попытки attempt (1-based): base, 2*base, 4*base...
    """
    return base_sec * (2 ** max(0, attempt - 1))


@dataclass
class RetryOutcome:
    ok: bool
    attempts: int
    delays: list[float] = field(default_factory=list)
    last_error: str | None = None


def call_with_backoff(
    fn: Callable[[int], T],
    *,
    max_attempts: int = 3,
    base_delay_sec: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    op: str = "op",
) -> tuple[T | None, RetryOutcome]:
    """
    Вызывать fn(attempt) до первого успеха, не более max_attempts раз.

    Исключения fn считаются неудачей попытки. После последней неудачи
    ошибка не пробрасывается: решение принимает вызывающий код по RetryOutcome.
    """
    outcome = RetryOutcome(ok=False, attempts=0)
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        outcome.attempts = attempt
        try:
            result = fn(attempt)
        except Exception as e:
            outcome.last_error = str(e)[:200] or type(e).__name__
            if attempt >= attempts:
                log.error(
                    "retry_exhausted",
                    extra={
                        "payload": {
                            "op": op,
                            "attempts": attempt,
                            "err": outcome.last_error,
                        }
                    },
                )
                return None, outcome
            delay = backoff_delay(attempt, base_delay_sec)
            outcome.delays.append(delay)
            log.warning(
                "retry_scheduled",
                extra={
                    "payload": {
                        "op": op,
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "backoff_sec": delay,
                        "err": outcome.last_error,
                    }
                },
            )
            if delay > 0:
                sleep(delay)
            continue
        outcome.ok = True
        return result, outcome
    return None, outcome
