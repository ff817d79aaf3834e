"""
Обработка задачи регистрации.

Алгоритм (строго по шагам, параллельны только скачивание и загрузка):
1) регистрация из БД по registration_id (нет записи -> ошибка, задача в DLQ)
2) скачивание файлов подтверждений из временного хранилища (параллельно)
3) имя папки события из снимка названия/даты в задаче
4) папки: событие -> "Bukti Pembayaran" и "Screenshot Sosmed"
5) загрузка файлов в Drive (параллельно)
6) одна запись UPDATE с постоянными ссылками
7) строка в таблицу события (таблица создаётся при первой записи)
8) удаление временных файлов (best-effort)
9) уведомление в Telegram (ретраи внутри, задачу не роняет)

Любая ошибка шагов 1-7 пробрасывается в цикл воркера.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from registration_pipeline.common.errors import RegistrationNotFoundError
from registration_pipeline.common.logging import get_project_logger
from registration_pipeline.common.metrics import track_stage_latency
from registration_pipeline.common.time import utc_ms
from registration_pipeline.contracts.queue_events import ProofFile, RegistrationJob
from registration_pipeline.integrations.google.drive import DriveClient
from registration_pipeline.integrations.google.sheets import SheetsClient
from registration_pipeline.processing.naming import build_upload_filename, compose_folder_name
from registration_pipeline.processing.proof_slots import (
    DEFAULT_PROOF_SLOTS,
    ProofFolder,
    ProofSlot,
    guess_mime_type,
)
from registration_pipeline.services.notification_service import NotificationService
from registration_pipeline.storage.blob import TempStorage, object_name_from_url
from registration_pipeline.storage.db import db_session
from registration_pipeline.storage.models import Registration
from registration_pipeline.storage.repositories import (
    EventSettingRepository,
    RegistrationRepository,
)

log = get_project_logger()

MAX_QUOTA_SETTING_KEY = "max_quota"


@dataclass
class ProcessResult:
    registration_id: int
    folder_name: str
    urls: dict[str, str]
    notified: bool


@dataclass
class RegistrantSnapshot:
    """
    Поля регистрации, прочитанные в начале обработки (сессия БД закрыта).
    """

    id: int
    registration_number: int | None
    name: str
    first_name: str
    email: str | None
    phone: str | None
    age: int | None
    city: str | None
    instagram_username: str | None
    participation_label: str
    vest_size: str | None

    @classmethod
    def from_model(cls, r: Registration) -> RegistrantSnapshot:
        return cls(
            id=r.id,
            registration_number=r.registration_number,
            name=(r.name or "").strip(),
            first_name=r.first_name,
            email=r.email,
            phone=r.phone,
            age=r.age,
            city=r.city,
            instagram_username=r.instagram_username,
            participation_label=r.participation_label,
            vest_size=r.vest_size,
        )


class RegistrationProcessor:
    def __init__(
        self,
        *,
        session_factory: sessionmaker[Session],
        temp_storage: TempStorage,
        drive: DriveClient,
        sheets: SheetsClient,
        notifier: NotificationService,
        payment_folder_name: str = "Bukti Pembayaran",
        social_folder_name: str = "Screenshot Sosmed",
        month_names: dict[str, str] | None = None,
        proof_slots: Sequence[ProofSlot] = DEFAULT_PROOF_SLOTS,
        default_max_quota: int = 100,
        clock_ms: Callable[[], int] = utc_ms,
    ) -> None:
        self.session_factory = session_factory
        self.temp_storage = temp_storage
        self.drive = drive
        self.sheets = sheets
        self.notifier = notifier
        self.folder_names = {
            ProofFolder.payment: payment_folder_name,
            ProofFolder.social: social_folder_name,
        }
        self.month_names = month_names
        self.proof_slots = tuple(proof_slots)
        self.default_max_quota = default_max_quota
        self._clock_ms = clock_ms

    # -------------------------------------------------------------------------
    # Точка входа
    # -------------------------------------------------------------------------
    def process(self, job: RegistrationJob) -> ProcessResult:
        slots = self._resolve_slots(job)

        with track_stage_latency("load_registration"):
            registrant, max_quota = self._load_registration(job.registration_id)
        log.info(
            "registration_loaded",
            extra={"payload": {"job_id": job.id, "registration_id": registrant.id}},
        )

        with track_stage_latency("fetch_files"):
            buffers = self._parallel(
                lambda slot: self.temp_storage.fetch_remote(job.files[slot.kind].url), slots
            )

        folder_name = compose_folder_name(job.event_title, job.event_date, self.month_names)
        with track_stage_latency("provision_folders"):
            folder_ids = self._provision_folders(folder_name)

        with track_stage_latency("upload_files"):
            urls = self._parallel(
                lambda slot: self._upload(
                    slot, job.files[slot.kind], buffers[slot.kind], registrant, folder_ids
                ),
                slots,
            )
        log.info(
            "files_uploaded",
            extra={"payload": {"job_id": job.id, "folder": folder_name, "files": len(urls)}},
        )

        with track_stage_latency("update_registration"):
            self._save_urls(registrant.id, slots, urls)

        with track_stage_latency("append_sheet"):
            self.sheets.get_or_create_sheet(folder_name)
            self.sheets.append_row(folder_name, self._sheet_row(registrant, slots, urls))

        with track_stage_latency("cleanup_temp"):
            self._cleanup(job, slots)

        with track_stage_latency("notify"):
            notified = self._notify(registrant, max_quota, slots, urls)

        return ProcessResult(
            registration_id=registrant.id,
            folder_name=folder_name,
            urls={slot.db_column: urls[slot.kind] for slot in slots},
            notified=notified,
        )

    # -------------------------------------------------------------------------
    # Шаги
    # -------------------------------------------------------------------------
    def _resolve_slots(self, job: RegistrationJob) -> list[ProofSlot]:
        missing = [s.kind for s in self.proof_slots if s.kind not in job.files]
        if missing:
            raise ValueError(f"Job {job.id} is missing proof files: {', '.join(missing)}")
        return list(self.proof_slots)

    def _load_registration(self, registration_id: int) -> tuple[RegistrantSnapshot, int]:
        with db_session(self.session_factory) as session:
            reg = RegistrationRepository(session).get(registration_id)
            if reg is None:
                raise RegistrationNotFoundError(registration_id)
            max_quota = EventSettingRepository(session).get_int(
                MAX_QUOTA_SETTING_KEY, self.default_max_quota
            )
            return RegistrantSnapshot.from_model(reg), max_quota

    def _parallel(
        self, fn: Callable[[ProofSlot], Any], slots: list[ProofSlot]
    ) -> dict[str, Any]:
        with ThreadPoolExecutor(max_workers=max(1, len(slots))) as pool:
            futures = {slot.kind: pool.submit(fn, slot) for slot in slots}
            return {kind: fut.result() for kind, fut in futures.items()}

    def _provision_folders(self, folder_name: str) -> dict[ProofFolder, str]:
        event_folder_id = self.drive.get_or_create_folder(folder_name)
        return {
            folder: self.drive.get_or_create_folder(name, event_folder_id)
            for folder, name in self.folder_names.items()
        }

    def _upload(
        self,
        slot: ProofSlot,
        proof: ProofFile,
        data: bytes,
        registrant: RegistrantSnapshot,
        folder_ids: dict[ProofFolder, str],
    ) -> str:
        person = registrant.name if slot.use_full_name else registrant.first_name
        filename = build_upload_filename(
            slot.filename_prefix, person, self._clock_ms(), proof.extension
        )
        return self.drive.upload(
            data, filename, guess_mime_type(proof.filename), folder_ids[slot.folder]
        )

    def _save_urls(
        self, registration_id: int, slots: list[ProofSlot], urls: dict[str, str]
    ) -> None:
        with db_session(self.session_factory) as session:
            updated = RegistrationRepository(session).set_proof_urls(
                registration_id, {slot.db_column: urls[slot.kind] for slot in slots}
            )
        if updated == 0:
            # запись удалили между шагом 1 и 6
            raise RegistrationNotFoundError(registration_id)

    def _sheet_row(
        self, r: RegistrantSnapshot, slots: list[ProofSlot], urls: dict[str, str]
    ) -> list[Any]:
        return [
            r.name,
            r.email,
            r.phone,
            r.age,
            r.city,
            r.instagram_username,
            r.participation_label,
            r.vest_size,
            *(urls[slot.kind] for slot in slots),
        ]

    def _cleanup(self, job: RegistrationJob, slots: list[ProofSlot]) -> None:
        names = [
            object_name_from_url(job.files[slot.kind].url, self.temp_storage.bucket)
            for slot in slots
        ]
        self.temp_storage.delete_objects(names)

    def _notify(
        self,
        r: RegistrantSnapshot,
        max_quota: int,
        slots: list[ProofSlot],
        urls: dict[str, str],
    ) -> bool:
        payment_url = next(
            (urls[s.kind] for s in slots if s.folder is ProofFolder.payment),
            "",
        )
        data = {
            "registration_number": r.registration_number or 0,
            "max_quota": max_quota,
            "name": r.name,
            "email": r.email or "-",
            "phone": r.phone or "-",
            "age": r.age if r.age is not None else "-",
            "city": r.city or "-",
            "instagram_username": r.instagram_username or "-",
            "participation_history": r.participation_label,
            "vest_size": r.vest_size or "-",
            "payment_proof_url": payment_url,
        }
        try:
            report = self.notifier.notify_registration(data)
        except Exception as e:
            # шаблон/рендер: данные уже сохранены, задачу не роняем
            log.error(
                "notification_render_failed",
                extra={"payload": {"registration_id": r.id, "err": str(e)[:200]}},
            )
            return False
        return report.ok
