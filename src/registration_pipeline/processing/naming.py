"""
Имена папок и файлов в Drive.

Назначение:
- имя папки события: "<название (до 25 символов)> - <дата DD Mon YYYY>"
- имя загружаемого файла: "<prefix>_<имя>_<ms>.<ext>"

Имя папки детерминировано: одинаковые название/дата дают одинаковое имя,
на этом держится переиспользование папок и таблиц.
"""

from __future__ import annotations

import re

from registration_pipeline.common.config import DEFAULT_MONTH_NAME_MAP

TITLE_MAX_LEN = 25
TITLE_ELLIPSIS = "..."

_ILLEGAL_CHARS_RE = re.compile(r'[/\\:*?"<>|]')
_DATE_RE = re.compile(r"(\d{1,2})\s+([^\W\d_]+)\s+(\d{4})")


def truncate_title(title: str, max_len: int = TITLE_MAX_LEN) -> str:
    title = (title or "").strip()
    if len(title) > max_len:
        return title[:max_len] + TITLE_ELLIPSIS
    return title


def normalize_event_date(event_date: str, month_names: dict[str, str] | None = None) -> str:
    """
    "Sabtu, 20 Januari 2025" -> "20 Jan 2025".

    Месяц переводится по таблице month_names; неизвестный месяц остаётся как есть.
    Строка без "DD Месяц YYYY" возвращается без изменений.
    """
    months = DEFAULT_MONTH_NAME_MAP if month_names is None else month_names
    value = (event_date or "").strip()
    m = _DATE_RE.search(value)
    if not m:
        return value
    day, month, year = m.groups()
    return f"{day} {months.get(month, month)} {year}"


def sanitize_name(name: str) -> str:
    return _ILLEGAL_CHARS_RE.sub("", name).strip()


def compose_folder_name(
    event_title: str, event_date: str, month_names: dict[str, str] | None = None
) -> str:
    title = truncate_title(event_title)
    date = normalize_event_date(event_date, month_names)
    return sanitize_name(f"{title} - {date}")


def build_upload_filename(prefix: str, person: str, ts_ms: int, extension: str) -> str:
    person = sanitize_name(person) or "unknown"
    ext = (extension or "jpg").lstrip(".")
    return f"{prefix}_{person}_{ts_ms}.{ext}"
