"""
Логирование воркера.

- логирование в stdout (Docker-friendly)
- JSON по умолчанию, LOG_FORMAT=text для локальной отладки
- структурные поля передаются через extra={"payload": {...}}
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

from registration_pipeline.common.config import Settings, get_settings
from registration_pipeline.common.time import utc_now_iso

PROJECT_LOGGER = "registration-pipeline"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": utc_now_iso(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        extra_payload = getattr(record, "payload", None)
        if isinstance(extra_payload, dict):
            payload["payload"] = extra_payload
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _build_formatter(s: Settings) -> logging.Formatter:
    if (s.log_format or "").lower() == "text":
        return logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    return JsonFormatter()


def setup_logging(settings: Settings | None = None) -> None:
    s = settings or get_settings()
    root = logging.getLogger()
    level = getattr(logging, (s.log_level or "INFO").upper(), logging.INFO)
    root.setLevel(level)

    # Не плодим хэндлеры при повторном вызове
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter(s))
    root.addHandler(handler)

    # googleapiclient очень шумный на INFO
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)


def get_project_logger(name: str = PROJECT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)
