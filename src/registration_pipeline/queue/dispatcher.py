"""
Диспетчер очереди регистраций.

Назначение:
- унифицированная упаковка задачи в JSON
- enqueue_registration() для intake-стороны (бот регистрации, скрипты)
"""

from __future__ import annotations

from registration_pipeline.common.ids import new_job_id
from registration_pipeline.common.time import utc_ms
from registration_pipeline.contracts.queue_events import ProofFile, RegistrationJob
from registration_pipeline.contracts.versions import QUEUE_SCHEMA_VERSION

from .store import QueueStore


def build_registration_job(
    *,
    registration_id: int,
    files: dict[str, dict[str, str]],
    event_title: str,
    event_date: str,
    job_id: str | None = None,
) -> RegistrationJob:
    """
    Собрать задачу: снимок названия и даты события фиксируется в момент
    постановки и дальше не синхронизируется с настройками.
    """
    return RegistrationJob(
        schema_version=QUEUE_SCHEMA_VERSION,
        id=job_id or new_job_id("reg"),
        registration_id=registration_id,
        files={kind: ProofFile(**f) for kind, f in files.items()},
        event_title=event_title,
        event_date=event_date,
        timestamp=utc_ms(),
    )


def enqueue_registration(
    store: QueueStore,
    *,
    registration_id: int,
    files: dict[str, dict[str, str]],
    event_title: str,
    event_date: str,
) -> str:
    """
    Поставить задачу обработки регистрации. Возвращает job_id.
    """
    job = build_registration_job(
        registration_id=registration_id,
        files=files,
        event_title=event_title,
        event_date=event_date,
    )
    store.enqueue(job)
    return job.id
