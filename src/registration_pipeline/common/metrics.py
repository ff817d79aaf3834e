"""
Метрики Prometheus для воркера регистраций.

Назначение:
- счётчики обработанных задач и DLQ
- задержки стадий пайплайна
- (опционально) HTTP /metrics на METRICS_PORT
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, start_http_server

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

# Обработка задач очереди
QUEUE_TASKS_TOTAL = Counter(
    "registration_queue_tasks_total",
    "Количество обработанных задач очереди",
    ["queue", "result"],  # result=success|error|invalid|timeout
)

DLQ_MOVES_TOTAL = Counter(
    "registration_dlq_moves_total",
    "Количество задач, перемещённых в DLQ",
    ["queue", "reason"],
)

# Задержки по стадиям пайплайна
PIPELINE_STAGE_LATENCY_MS = Histogram(
    "registration_pipeline_stage_latency_ms",
    "Задержка выполнения стадий пайплайна (мс)",
    ["stage"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000),
)

NOTIFY_ATTEMPTS_TOTAL = Counter(
    "registration_notify_attempts_total",
    "Попытки отправки уведомлений в Telegram",
    ["result"],  # ok|failed|exhausted
)

CLEANUP_FAILURES_TOTAL = Counter(
    "registration_cleanup_failures_total",
    "Ошибки удаления временных файлов",
)


@contextmanager
def track_stage_latency(stage: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        PIPELINE_STAGE_LATENCY_MS.labels(stage=stage).observe(elapsed_ms)


def maybe_start_metrics_server(port: int) -> bool:
    if port <= 0:
        return False
    start_http_server(port)
    return True
