from __future__ import annotations

import threading
from types import SimpleNamespace

import pytest

from registration_pipeline.common.errors import RegistrationNotFoundError
from registration_pipeline.contracts.queue_events import RegistrationJob
from registration_pipeline.services.registration_processor import RegistrationProcessor
from registration_pipeline.storage.db import create_db_engine, create_session_factory, db_session
from registration_pipeline.storage.models import Base, EventSetting, Registration
from registration_pipeline.storage.repositories import RegistrationRepository


class FakeTempStorage:
    bucket = "registrations"

    def __init__(self, fail_delete: bool = False) -> None:
        self.fetched: list[str] = []
        self.deleted: list[list[str]] = []
        self.fail_delete = fail_delete
        self._lock = threading.Lock()

    def fetch_remote(self, url: str) -> bytes:
        with self._lock:
            self.fetched.append(url)
        return url.encode()

    def delete_objects(self, names: list[str]) -> bool:
        self.deleted.append(list(names))
        return not self.fail_delete


class FakeDriveClient:
    def __init__(self) -> None:
        self.folders: dict[tuple[str | None, str], str] = {}
        self.uploads: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def get_or_create_folder(self, name: str, parent_id: str | None = None) -> str:
        key = (parent_id, name)
        if key not in self.folders:
            self.folders[key] = f"folder{len(self.folders) + 1}"
        return self.folders[key]

    def upload(self, data: bytes, filename: str, mime_type: str, folder_id: str) -> str:
        with self._lock:
            self.uploads.append((filename, mime_type, folder_id))
        prefix = filename.split("_", 1)[0]
        return f"https://drive.google.com/file/d/{prefix}/view"


class FakeSheetsClient:
    def __init__(self) -> None:
        self.rows: list[tuple[str, list]] = []
        self.sheets: list[str] = []

    def get_or_create_sheet(self, name: str) -> str:
        self.sheets.append(name)
        return "sheet1"

    def append_row(self, name: str, row: list) -> None:
        self.rows.append((name, row))


class FakeNotifier:
    def __init__(self, ok: bool = True, error: Exception | None = None) -> None:
        self.ok = ok
        self.error = error
        self.sent: list[dict] = []

    def notify_registration(self, data: dict):
        if self.error is not None:
            raise self.error
        self.sent.append(data)
        return SimpleNamespace(ok=self.ok)


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = create_session_factory(engine)
    with db_session(factory) as s:
        s.add(
            Registration(
                id=42,
                registration_number=7,
                name="Budi Santoso",
                email="budi@example.com",
                phone="0812",
                age=30,
                city="Bandung",
                instagram_username="budi",
                participation_history="yes",
                vest_size="L",
            )
        )
        s.add(EventSetting(key="max_quota", value="150"))
    return factory


def _processor(session_factory, **overrides) -> RegistrationProcessor:
    deps = {
        "session_factory": session_factory,
        "temp_storage": FakeTempStorage(),
        "drive": FakeDriveClient(),
        "sheets": FakeSheetsClient(),
        "notifier": FakeNotifier(),
        "clock_ms": lambda: 1700,
    }
    deps.update(overrides)
    return RegistrationProcessor(**deps)


def test_process_uploads_and_persists_urls(session_factory, make_payload) -> None:
    proc = _processor(session_factory)
    job = RegistrationJob.model_validate(make_payload())

    result = proc.process(job)

    assert result.folder_name == "Aksi Bersih Pantai Nasion... - 20 Jan 2025"
    assert result.notified is True
    with db_session(session_factory) as s:
        reg = RegistrationRepository(s).get(42)
        assert reg.payment_proof_url == "https://drive.google.com/file/d/payment/view"
        assert reg.tiktok_proof_url == "https://drive.google.com/file/d/tiktok/view"
        assert reg.instagram_proof_url == "https://drive.google.com/file/d/instagram/view"


def test_process_uses_folders_names_and_cleanup(session_factory, make_payload) -> None:
    storage = FakeTempStorage()
    drive = FakeDriveClient()
    sheets = FakeSheetsClient()
    notifier = FakeNotifier()
    proc = _processor(
        session_factory, temp_storage=storage, drive=drive, sheets=sheets, notifier=notifier
    )

    proc.process(RegistrationJob.model_validate(make_payload()))

    event_folder = drive.folders[(None, "Aksi Bersih Pantai Nasion... - 20 Jan 2025")]
    payment = drive.folders[(event_folder, "Bukti Pembayaran")]
    social = drive.folders[(event_folder, "Screenshot Sosmed")]
    uploads = {name: (mime, folder) for name, mime, folder in drive.uploads}
    assert uploads["payment_Budi Santoso_1700.jpg"] == ("image/jpeg", payment)
    assert uploads["tiktok_Budi_1700.png"] == ("image/png", social)
    assert uploads["instagram_Budi_1700.jpeg"] == ("image/jpeg", social)

    ((sheet_name, row),) = sheets.rows
    assert sheet_name == "Aksi Bersih Pantai Nasion... - 20 Jan 2025"
    assert row[:8] == [
        "Budi Santoso",
        "budi@example.com",
        "0812",
        30,
        "Bandung",
        "budi",
        "Sudah Pernah",
        "L",
    ]
    assert len(row) == 11

    assert storage.deleted == [["42/pay.jpg", "42/tt.png", "42/ig.jpeg"]]
    (sent,) = notifier.sent
    assert sent["registration_number"] == 7
    assert sent["max_quota"] == 150
    assert sent["payment_proof_url"] == "https://drive.google.com/file/d/payment/view"


def test_missing_registration_raises_with_id(session_factory, make_payload) -> None:
    drive = FakeDriveClient()
    proc = _processor(session_factory, drive=drive)
    job = RegistrationJob.model_validate(make_payload(registrationId=999))

    with pytest.raises(RegistrationNotFoundError) as ei:
        proc.process(job)

    assert "Registration 999 not found in database" in str(ei.value)
    assert drive.uploads == []


def test_missing_proof_file_is_rejected(session_factory, make_payload) -> None:
    payload = make_payload()
    payload["files"].pop("tiktokProof")
    proc = _processor(session_factory)

    with pytest.raises(ValueError, match="tiktokProof"):
        proc.process(RegistrationJob.model_validate(payload))


def test_cleanup_and_notification_failures_do_not_fail_job(session_factory, make_payload) -> None:
    proc = _processor(
        session_factory,
        temp_storage=FakeTempStorage(fail_delete=True),
        notifier=FakeNotifier(error=RuntimeError("template broken")),
    )

    result = proc.process(RegistrationJob.model_validate(make_payload()))

    assert result.notified is False
    assert result.urls["payment_proof_url"].endswith("/payment/view")


def test_default_quota_when_setting_missing(make_payload) -> None:
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(engine)
    factory = create_session_factory(engine)
    with db_session(factory) as s:
        s.add(Registration(id=42, name="Siti", participation_history="no"))
    notifier = FakeNotifier()
    proc = _processor(factory, notifier=notifier, default_max_quota=80)

    proc.process(RegistrationJob.model_validate(make_payload()))

    (sent,) = notifier.sent
    assert sent["max_quota"] == 80
    assert sent["participation_history"] == "Belum Pernah"
    assert sent["email"] == "-"
