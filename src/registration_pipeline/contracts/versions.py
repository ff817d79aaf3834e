"""
Версия схемы задач очереди регистраций.

payload без schemaVersion считается v1 (так пишет текущий intake-бот).
"""

from __future__ import annotations

QUEUE_SCHEMA_VERSION = "v1"
