"""
Хранилище очереди регистраций (Redis list + DLQ).

Назначение:
- enqueue: RPUSH в хвост основной очереди
- dequeue_blocking: BLPOP с таймаутом (None = задач нет, это не ошибка)
- move_to_failed: запись в DLQ <queue>:dlq (append-only)
- служебные операции для ручного разбора DLQ (replay/purge)

Важно:
- ошибки связи с Redis НЕ глотаются: вызывающий код должен отличать
  "таймаут, задач нет" от "Redis недоступен"
- BLPOP атомарно забирает элемент, поэтому задача принадлежит
  ровно одному потребителю
"""

from __future__ import annotations

import json
from typing import Any

import redis

from registration_pipeline.common.logging import get_project_logger
from registration_pipeline.contracts.queue_events import RegistrationJob, build_failed_record

from .redis import create_redis_client

log = get_project_logger()


def dlq_name(queue_name: str) -> str:
    return f"{queue_name}:dlq"


class QueueStore:
    def __init__(
        self,
        *,
        redis_url: str | None = None,
        queue_name: str = "q:registrations",
        client: redis.Redis | None = None,
        socket_timeout_sec: float | None = 30.0,
    ) -> None:
        if client is None and not redis_url:
            raise ValueError("redis_url or client is required")
        self.queue_name = queue_name
        self.failed_queue_name = dlq_name(queue_name)
        self._redis_url = redis_url
        self._socket_timeout_sec = socket_timeout_sec
        self._client = client
        self._closed = False

    @classmethod
    def from_settings(cls, settings) -> QueueStore:
        # запас поверх BLPOP таймаута, см. create_redis_client
        return cls(
            redis_url=settings.redis_url,
            queue_name=settings.queue_name,
            socket_timeout_sec=float(settings.dequeue_timeout_sec) + 10.0,
        )

    @property
    def client(self) -> redis.Redis:
        if self._closed:
            raise RuntimeError(f"queue store {self.queue_name} is closed")
        if self._client is None:
            self._client = create_redis_client(
                self._redis_url or "", socket_timeout_sec=self._socket_timeout_sec
            )
        return self._client

    # -------------------------------------------------------------------------
    # Основные операции
    # -------------------------------------------------------------------------
    def enqueue(self, job: RegistrationJob) -> None:
        self.client.rpush(self.queue_name, job.to_json())
        log.info(
            "job_enqueued",
            extra={
                "payload": {
                    "queue": self.queue_name,
                    "job_id": job.id,
                    "registration_id": job.registration_id,
                }
            },
        )

    def dequeue_blocking(self, timeout_sec: int) -> RegistrationJob | None:
        """
        Забрать задачу из головы очереди, ожидая до timeout_sec секунд.

        Возвращает None при таймауте. Невалидный payload поднимает
        InvalidJobPayloadError (элемент уже снят с очереди).
        """
        item = self.client.blpop([self.queue_name], timeout=timeout_sec)
        if not item:
            return None
        _, raw = item
        return RegistrationJob.from_json(raw)

    def move_to_failed(self, job: RegistrationJob | str, error: BaseException) -> None:
        """
        Положить запись в DLQ. Основную очередь не трогаем: задача уже снята.
        """
        record = build_failed_record(job, error)
        self.client.rpush(self.failed_queue_name, json.dumps(record, ensure_ascii=False))
        log.warning(
            "job_moved_to_dlq",
            extra={
                "payload": {
                    "queue": self.queue_name,
                    "dlq": self.failed_queue_name,
                    "job_id": record.get("id"),
                    "error": record["error"]["message"][:200],
                }
            },
        )

    def close_connection(self) -> None:
        """
        Идемпотентно: повторный вызов и вызов без открытого клиента безопасны.
        После закрытия любые операции поднимают RuntimeError.
        """
        if self._closed or self._client is None:
            self._closed = True
            return
        try:
            self._client.close()
        finally:
            self._client = None
            self._closed = True
            log.info("queue_connection_closed", extra={"payload": {"queue": self.queue_name}})

    # -------------------------------------------------------------------------
    # Обслуживание
    # -------------------------------------------------------------------------
    def queue_depth(self) -> int:
        return int(self.client.llen(self.queue_name))

    def failed_depth(self) -> int:
        return int(self.client.llen(self.failed_queue_name))

    def list_failed(self, limit: int = 20) -> list[dict[str, Any]]:
        raw_items = self.client.lrange(self.failed_queue_name, 0, max(1, limit) - 1)
        out: list[dict[str, Any]] = []
        for raw in raw_items:
            try:
                out.append(json.loads(raw))
            except ValueError:
                out.append({"raw": raw})
        return out

    def replay_failed(self, count: int = 1) -> tuple[int, int]:
        """
        Вернуть записи из головы DLQ в основную очередь (ручной повтор).

        Запись без валидной задачи (raw) остаётся в DLQ: она переносится
        в хвост (LMOVE), чтобы не блокировать остальные.
        Перенос валидной записи: LPOP + RPUSH в одной MULTI/EXEC.
        Возвращает (replayed, skipped).
        """
        replayed = 0
        skipped = 0
        # не больше текущей глубины: пропущенные записи уходят в хвост DLQ
        for _ in range(min(max(0, count), self.failed_depth())):
            raw = self.client.lindex(self.failed_queue_name, 0)
            if raw is None:
                break
            job = self._job_from_failed(raw)
            if job is None:
                self.client.lmove(self.failed_queue_name, self.failed_queue_name, "LEFT", "RIGHT")
                skipped += 1
                continue
            pipe = self.client.pipeline(transaction=True)
            pipe.lpop(self.failed_queue_name)
            pipe.rpush(self.queue_name, job.to_json())
            pipe.execute()
            replayed += 1
        log.info(
            "dlq_replayed",
            extra={
                "payload": {
                    "queue": self.queue_name,
                    "replayed": replayed,
                    "skipped": skipped,
                }
            },
        )
        return replayed, skipped

    def _job_from_failed(self, raw: str) -> RegistrationJob | None:
        try:
            record = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(record, dict) or "raw" in record:
            return None
        record.pop("error", None)
        try:
            return RegistrationJob.model_validate(record)
        except ValueError as e:
            log.warning(
                "dlq_replay_skipped",
                extra={"payload": {"job_id": record.get("id"), "err": str(e)[:200]}},
            )
            return None

    def purge_failed(self) -> int:
        n = self.failed_depth()
        self.client.delete(self.failed_queue_name)
        log.warning("dlq_purged", extra={"payload": {"dlq": self.failed_queue_name, "count": n}})
        return n
