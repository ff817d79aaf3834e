"""
Google Sheets адаптер.

Назначение:
- get_or_create_sheet: таблица на событие (имя = имя папки события)
- append_row: одна строка на регистрацию, порядок колонок фиксирован
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from googleapiclient.errors import HttpError

from registration_pipeline.common.errors import ErrCode, ProviderError
from registration_pipeline.common.logging import get_project_logger

from .drive import quote_query_value

log = get_project_logger()

SPREADSHEET_MIME = "application/vnd.google-apps.spreadsheet"

# Контракт колонок строки (11 штук)
SHEET_HEADER = [
    "Nama",
    "Email",
    "No. WA",
    "Usia",
    "Kota",
    "Instagram",
    "Riwayat Partisipasi",
    "Ukuran Vest",
    "Bukti Pembayaran",
    "Screenshot TikTok",
    "Screenshot Instagram",
]


class SheetsClient:
    def __init__(
        self,
        sheets_factory: Callable[[], Any],
        drive_factory: Callable[[], Any],
        *,
        folder_id: str | None = None,
    ) -> None:
        self._sheets_factory = sheets_factory
        self._drive_factory = drive_factory
        # service-объекты googleapiclient не потокобезопасны: свои на поток
        self._local = threading.local()
        self.folder_id = folder_id
        self._sheet_cache: dict[str, str] = {}
        self._lock = threading.Lock()

    def _sheets_service(self) -> Any:
        svc = getattr(self._local, "sheets", None)
        if svc is None:
            svc = self._sheets_factory()
            self._local.sheets = svc
        return svc

    def _drive_service(self) -> Any:
        svc = getattr(self._local, "drive", None)
        if svc is None:
            svc = self._drive_factory()
            self._local.drive = svc
        return svc

    def get_or_create_sheet(self, name: str) -> str:
        """
        spreadsheet_id таблицы с именем name. Создаётся с заголовком при отсутствии.
        """
        with self._lock:
            cached = self._sheet_cache.get(name)
        if cached:
            return cached

        spreadsheet_id = self._find_sheet(name)
        created = False
        if spreadsheet_id is None:
            spreadsheet_id = self._create_sheet(name)
            created = True

        with self._lock:
            self._sheet_cache.setdefault(name, spreadsheet_id)
            spreadsheet_id = self._sheet_cache[name]

        log.info(
            "sheet_resolved",
            extra={"payload": {"name": name, "spreadsheet_id": spreadsheet_id, "created": created}},
        )
        return spreadsheet_id

    def _find_sheet(self, name: str) -> str | None:
        q = (
            f"name = '{quote_query_value(name)}' and mimeType = '{SPREADSHEET_MIME}' "
            "and trashed = false"
        )
        try:
            resp = (
                self._drive_service()
                .files()
                .list(q=q, spaces="drive", fields="files(id, name)", pageSize=10)
                .execute()
            )
        except HttpError as e:
            raise ProviderError(
                ErrCode.SHEETS_PROVIDER_ERROR,
                "Spreadsheet lookup failed",
                {"name": name, "status": getattr(e.resp, "status", None)},
            ) from e
        for f in resp.get("files", []):
            if f.get("name") == name:
                return f["id"]
        return None

    def _create_sheet(self, name: str) -> str:
        try:
            created = (
                self._sheets_service()
                .spreadsheets()
                .create(body={"properties": {"title": name}}, fields="spreadsheetId")
                .execute()
            )
            spreadsheet_id = created["spreadsheetId"]
            self._sheets_service().spreadsheets().values().update(
                spreadsheetId=spreadsheet_id,
                range="A1",
                valueInputOption="RAW",
                body={"values": [SHEET_HEADER]},
            ).execute()
            if self.folder_id:
                self._drive_service().files().update(
                    fileId=spreadsheet_id,
                    addParents=self.folder_id,
                    fields="id, parents",
                ).execute()
        except HttpError as e:
            raise ProviderError(
                ErrCode.SHEETS_PROVIDER_ERROR,
                "Spreadsheet create failed",
                {"name": name, "status": getattr(e.resp, "status", None)},
            ) from e
        return spreadsheet_id

    def append_row(self, name: str, row: list[Any]) -> None:
        if len(row) != len(SHEET_HEADER):
            raise ValueError(f"row must have {len(SHEET_HEADER)} columns, got {len(row)}")
        spreadsheet_id = self.get_or_create_sheet(name)
        values = [["" if v is None else v for v in row]]
        try:
            self._sheets_service().spreadsheets().values().append(
                spreadsheetId=spreadsheet_id,
                range="A1",
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body={"values": values},
            ).execute()
        except HttpError as e:
            raise ProviderError(
                ErrCode.SHEETS_PROVIDER_ERROR,
                "Spreadsheet append failed",
                {"name": name, "status": getattr(e.resp, "status", None)},
            ) from e
        log.info("sheet_row_appended", extra={"payload": {"spreadsheet_id": spreadsheet_id}})
