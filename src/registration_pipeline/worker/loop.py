"""
Цикл воркера регистраций.

Алгоритм:
- BLPOP из очереди с коротким таймаутом (2s), чтобы быстро заметить остановку
- нет задачи -> следующая итерация
- задача -> процессор с дедлайном; успех -> лог длительности;
  ошибка -> DLQ + пауза (5s), чтобы не устраивать шторм при падении внешних API
- SIGTERM/SIGINT -> SHUTTING_DOWN (проверяется между итерациями, текущая
  задача доделывается), затем закрытие соединений с Redis ровно один раз

Важно:
- один потребитель, задачи обрабатываются последовательно
- ошибки связи с Redis подряд копятся; после порога пробрасываются наружу,
  процесс завершается и его поднимает supervisor
"""

from __future__ import annotations

import enum
import signal
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol

from registration_pipeline.common.errors import (
    InvalidJobPayloadError,
    JobTimeoutError,
    error_code_of,
    is_connectivity_error,
)
from registration_pipeline.common.logging import get_project_logger
from registration_pipeline.common.metrics import DLQ_MOVES_TOTAL, QUEUE_TASKS_TOTAL
from registration_pipeline.contracts.queue_events import RegistrationJob
from registration_pipeline.queue.store import QueueStore

log = get_project_logger()


class WorkerState(str, enum.Enum):
    running = "running"
    shutting_down = "shutting_down"


class JobProcessor(Protocol):
    def process(self, job: RegistrationJob) -> Any: ...


class IterationResult(str, enum.Enum):
    idle = "idle"
    success = "success"
    failed = "failed"
    invalid = "invalid"
    store_error = "store_error"


class RegistrationWorker:
    def __init__(
        self,
        *,
        store: QueueStore,
        processor: JobProcessor,
        dequeue_timeout_sec: int = 2,
        failure_cooldown_sec: float = 5.0,
        job_timeout_sec: float = 120.0,
        max_consecutive_store_errors: int = 5,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.store = store
        self.processor = processor
        self.dequeue_timeout_sec = dequeue_timeout_sec
        self.failure_cooldown_sec = failure_cooldown_sec
        self.job_timeout_sec = job_timeout_sec
        self.max_consecutive_store_errors = max_consecutive_store_errors
        self._stop = threading.Event()
        self._sleep = sleep or self._stop.wait
        self._state = WorkerState.running
        self._closed = False
        self._store_errors = 0

    @property
    def state(self) -> WorkerState:
        return self._state

    # -------------------------------------------------------------------------
    # Остановка
    # -------------------------------------------------------------------------
    def request_shutdown(self, reason: str = "signal") -> None:
        if self._state is WorkerState.shutting_down:
            return
        log.info("worker_shutdown_requested", extra={"payload": {"reason": reason}})
        self._state = WorkerState.shutting_down
        self._stop.set()

    def install_signal_handlers(self) -> None:
        def _handler(signum, _frame) -> None:
            self.request_shutdown(signal.Signals(signum).name)

        signal.signal(signal.SIGTERM, _handler)
        signal.signal(signal.SIGINT, _handler)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.store.close_connection()

    # -------------------------------------------------------------------------
    # Цикл
    # -------------------------------------------------------------------------
    def run(self) -> None:
        log.info(
            "worker_registration_started",
            extra={
                "payload": {
                    "queue": self.store.queue_name,
                    "dequeue_timeout_sec": self.dequeue_timeout_sec,
                    "job_timeout_sec": self.job_timeout_sec,
                }
            },
        )
        try:
            while self._state is WorkerState.running:
                try:
                    self.run_once()
                except Exception as e:
                    if is_connectivity_error(e):
                        raise
                    log.exception(
                        "worker_loop_error",
                        extra={"payload": {"code": error_code_of(e), "err": str(e)[:200]}},
                    )
                    self._cooldown()
        finally:
            log.info("worker_shutting_down")
            self.close()

    def run_once(self) -> IterationResult:
        """
        Одна итерация: dequeue -> process -> (DLQ + пауза).
        """
        try:
            result = self._iteration()
        except Exception as e:
            if not is_connectivity_error(e):
                raise
            return self._on_store_error(e)
        self._store_errors = 0
        return result

    def _iteration(self) -> IterationResult:
        try:
            job = self.store.dequeue_blocking(self.dequeue_timeout_sec)
        except InvalidJobPayloadError as e:
            log.error(
                "job_payload_invalid",
                extra={"payload": {"err": e.message, "raw_head": e.raw[:300]}},
            )
            QUEUE_TASKS_TOTAL.labels(queue=self.store.queue_name, result="invalid").inc()
            self._dead_letter(e.raw, e, reason="invalid_payload")
            self._cooldown()
            return IterationResult.invalid

        if job is None:
            return IterationResult.idle

        log.info(
            "job_started",
            extra={
                "payload": {
                    "job_id": job.id,
                    "registration_id": job.registration_id,
                    "event": f"{job.event_title} - {job.event_date}",
                    "files": len(job.files),
                    "timestamp": job.timestamp,
                }
            },
        )
        started = time.perf_counter()
        try:
            self._process_with_deadline(job)
        except Exception as e:
            duration = time.perf_counter() - started
            log.error(
                "job_failed",
                extra={
                    "payload": {
                        "job_id": job.id,
                        "registration_id": job.registration_id,
                        "code": error_code_of(e),
                        "err": str(e)[:300],
                        "duration_sec": round(duration, 2),
                    }
                },
            )
            result = "timeout" if isinstance(e, JobTimeoutError) else "error"
            QUEUE_TASKS_TOTAL.labels(queue=self.store.queue_name, result=result).inc()
            self._dead_letter(job, e, reason=error_code_of(e))
            self._cooldown()
            return IterationResult.failed

        duration = time.perf_counter() - started
        QUEUE_TASKS_TOTAL.labels(queue=self.store.queue_name, result="success").inc()
        log.info(
            "job_completed",
            extra={"payload": {"job_id": job.id, "duration_sec": round(duration, 2)}},
        )
        return IterationResult.success

    def _dead_letter(
        self, job: RegistrationJob | str, error: BaseException, *, reason: str
    ) -> None:
        try:
            self.store.move_to_failed(job, error)
        except Exception:
            # Задача уже снята с очереди: payload остаётся хотя бы в логе
            payload = job.to_json() if isinstance(job, RegistrationJob) else job
            log.error("dlq_write_failed", extra={"payload": {"job": payload[:2000]}})
            raise
        DLQ_MOVES_TOTAL.labels(queue=self.store.queue_name, reason=reason).inc()

    def _process_with_deadline(self, job: RegistrationJob) -> Any:
        """
        Процессор в отдельном daemon-потоке с дедлайном.

        Поток нельзя прервать: при таймауте задача уходит в DLQ, а зависший
        вызов дорабатывает в фоне и не блокирует следующие задачи.
        """
        if not self.job_timeout_sec or self.job_timeout_sec <= 0:
            return self.processor.process(job)

        box: dict[str, Any] = {}
        done = threading.Event()

        def _target() -> None:
            try:
                box["result"] = self.processor.process(job)
            except BaseException as e:
                box["error"] = e
            finally:
                done.set()

        t = threading.Thread(target=_target, name=f"job-{job.id}", daemon=True)
        t.start()
        if not done.wait(self.job_timeout_sec):
            raise JobTimeoutError(job.id, self.job_timeout_sec)
        if "error" in box:
            raise box["error"]
        return box.get("result")

    def _on_store_error(self, e: Exception) -> IterationResult:
        self._store_errors += 1
        log.error(
            "queue_store_error",
            extra={
                "payload": {
                    "code": error_code_of(e),
                    "err": str(e)[:200],
                    "consecutive": self._store_errors,
                    "threshold": self.max_consecutive_store_errors,
                }
            },
        )
        if 0 < self.max_consecutive_store_errors <= self._store_errors:
            raise e
        self._cooldown()
        return IterationResult.store_error

    def _cooldown(self) -> None:
        if self.failure_cooldown_sec > 0 and self._state is WorkerState.running:
            log.info("worker_cooldown", extra={"payload": {"sec": self.failure_cooldown_sec}})
            self._sleep(self.failure_cooldown_sec)
