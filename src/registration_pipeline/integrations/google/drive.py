"""
Google Drive адаптер.

Назначение:
- get_or_create_folder: поиск папки по точному имени внутри родителя,
  создание при отсутствии, кэш имён на время жизни процесса
- upload: загрузка буфера, публичный доступ на чтение, постоянная ссылка

Важно:
- в Drive нет атомарного "create if absent": list -> create не защищён
  от гонки. Дубли папок при параллельных воркерах допустимы.
"""

from __future__ import annotations

import io
import threading
from collections.abc import Callable
from typing import Any

from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from registration_pipeline.common.errors import ErrCode, ProviderError
from registration_pipeline.common.logging import get_project_logger

log = get_project_logger()

FOLDER_MIME = "application/vnd.google-apps.folder"


def quote_query_value(value: str) -> str:
    """Экранирование строкового литерала для q= в Drive API."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def drive_view_url(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/view"


class DriveClient:
    def __init__(
        self,
        service_factory: Callable[[], Any],
        *,
        root_folder_id: str | None = None,
    ) -> None:
        self._service_factory = service_factory
        self._local = threading.local()
        self.root_folder_id = root_folder_id
        self._folder_cache: dict[tuple[str, str], str] = {}
        self._cache_lock = threading.Lock()

    def _service(self) -> Any:
        svc = getattr(self._local, "service", None)
        if svc is None:
            svc = self._service_factory()
            self._local.service = svc
        return svc

    # -------------------------------------------------------------------------
    # Папки
    # -------------------------------------------------------------------------
    def get_or_create_folder(self, name: str, parent_id: str | None = None) -> str:
        parent = parent_id or self.root_folder_id
        cache_key = (parent or "root", name)
        with self._cache_lock:
            cached = self._folder_cache.get(cache_key)
        if cached:
            return cached

        folder_id = self._find_folder(name, parent)
        created = False
        if folder_id is None:
            folder_id = self._create_folder(name, parent)
            created = True

        with self._cache_lock:
            self._folder_cache.setdefault(cache_key, folder_id)
            folder_id = self._folder_cache[cache_key]

        log.info(
            "drive_folder_resolved",
            extra={
                "payload": {
                    "name": name,
                    "parent_id": parent,
                    "folder_id": folder_id,
                    "created": created,
                }
            },
        )
        return folder_id

    def _find_folder(self, name: str, parent_id: str | None) -> str | None:
        q = (
            f"name = '{quote_query_value(name)}' and mimeType = '{FOLDER_MIME}' "
            f"and trashed = false and '{quote_query_value(parent_id or 'root')}' in parents"
        )
        try:
            resp = (
                self._service()
                .files()
                .list(q=q, spaces="drive", fields="files(id, name)", pageSize=10)
                .execute()
            )
        except HttpError as e:
            raise ProviderError(
                ErrCode.DRIVE_PROVIDER_ERROR,
                "Drive folder lookup failed",
                {"name": name, "status": getattr(e.resp, "status", None)},
            ) from e
        # Drive сравнивает name без учёта регистра, нам нужен точный матч
        for f in resp.get("files", []):
            if f.get("name") == name:
                return f["id"]
        return None

    def _create_folder(self, name: str, parent_id: str | None) -> str:
        body: dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            body["parents"] = [parent_id]
        try:
            created = self._service().files().create(body=body, fields="id").execute()
        except HttpError as e:
            raise ProviderError(
                ErrCode.DRIVE_PROVIDER_ERROR,
                "Drive folder create failed",
                {"name": name, "status": getattr(e.resp, "status", None)},
            ) from e
        return created["id"]

    # -------------------------------------------------------------------------
    # Файлы
    # -------------------------------------------------------------------------
    def upload(self, data: bytes, filename: str, mime_type: str, folder_id: str) -> str:
        """
        Загрузить файл и вернуть постоянную ссылку (anyone with link = reader).
        """
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        svc = self._service()
        try:
            created = (
                svc.files()
                .create(
                    body={"name": filename, "parents": [folder_id]},
                    media_body=media,
                    fields="id, webViewLink",
                )
                .execute()
            )
            svc.permissions().create(
                fileId=created["id"],
                body={"role": "reader", "type": "anyone"},
            ).execute()
        except HttpError as e:
            raise ProviderError(
                ErrCode.DRIVE_PROVIDER_ERROR,
                "Drive upload failed",
                {"filename": filename, "status": getattr(e.resp, "status", None)},
            ) from e

        url = created.get("webViewLink") or drive_view_url(created["id"])
        log.info(
            "drive_file_uploaded",
            extra={"payload": {"file_id": created["id"], "folder_id": folder_id, "bytes": len(data)}},
        )
        return url
