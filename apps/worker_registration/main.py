"""
Worker Registration.

Алгоритм:
- читаем задачи из Redis list q:registrations (BLPOP)
- на каждую задачу: Supabase -> Google Drive -> БД -> Google Sheets -> Telegram
- упавшие задачи уходят в q:registrations:dlq (повтор только вручную, tools/dlq_admin.py)
"""

from __future__ import annotations

import sys

from registration_pipeline.common.config import Settings, get_settings
from registration_pipeline.common.logging import get_project_logger, setup_logging
from registration_pipeline.common.metrics import maybe_start_metrics_server
from registration_pipeline.delivery.telegram.sender import TelegramBotSender
from registration_pipeline.integrations.google.auth import GoogleServiceFactory
from registration_pipeline.integrations.google.drive import DriveClient
from registration_pipeline.integrations.google.sheets import SheetsClient
from registration_pipeline.queue.store import QueueStore
from registration_pipeline.services.notification_service import NotificationService
from registration_pipeline.services.registration_processor import RegistrationProcessor
from registration_pipeline.storage.blob import TempStorage
from registration_pipeline.storage.db import create_db_engine, create_session_factory
from registration_pipeline.worker.alerts import (
    AdminAlerter,
    handle_uncaught,
    install_process_hooks,
)
from registration_pipeline.worker.loop import RegistrationWorker

log = get_project_logger()


def build_notifier(settings: Settings) -> NotificationService:
    transport = None
    if settings.notification_bot_token:
        transport = TelegramBotSender(
            bot_token=settings.notification_bot_token,
            api_base=settings.telegram_api_base,
            timeout_sec=settings.http_timeout_sec,
        )
    return NotificationService(
        transport,
        settings.notification_chat_id_list(),
        max_attempts=settings.notify_max_attempts,
        backoff_base_sec=settings.notify_backoff_base_sec,
        track_per_chat=settings.notify_track_per_chat,
    )


def build_processor(settings: Settings) -> RegistrationProcessor:
    google = GoogleServiceFactory.from_settings(settings)
    return RegistrationProcessor(
        session_factory=create_session_factory(create_db_engine(settings.database_url)),
        temp_storage=TempStorage.from_settings(settings),
        drive=DriveClient(google.drive, root_folder_id=settings.google_drive_root_folder_id),
        sheets=SheetsClient(
            google.sheets, google.drive, folder_id=settings.google_drive_root_folder_id
        ),
        notifier=build_notifier(settings),
        payment_folder_name=settings.payment_folder_name,
        social_folder_name=settings.social_folder_name,
        month_names=settings.month_names(),
        default_max_quota=settings.default_max_quota,
    )


def build_worker(settings: Settings) -> RegistrationWorker:
    return RegistrationWorker(
        store=QueueStore.from_settings(settings),
        processor=build_processor(settings),
        dequeue_timeout_sec=settings.dequeue_timeout_sec,
        failure_cooldown_sec=settings.failure_cooldown_sec,
        job_timeout_sec=settings.job_timeout_sec,
        max_consecutive_store_errors=settings.store_error_exit_threshold,
    )


def main() -> None:
    settings = get_settings()
    setup_logging(settings)
    alerter = AdminAlerter.from_settings(settings)
    install_process_hooks(alerter)
    if maybe_start_metrics_server(settings.metrics_port):
        log.info("metrics_server_started", extra={"payload": {"port": settings.metrics_port}})

    worker = build_worker(settings)
    worker.install_signal_handlers()
    try:
        worker.run()
    except Exception as e:
        handle_uncaught(e, "Fatal worker error", alerter, exit_fn=sys.exit)
        sys.exit(1)
    log.info("worker_registration_stopped")


if __name__ == "__main__":
    main()
