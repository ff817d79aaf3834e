"""
Отправка сообщений в Telegram (Bot API sendMessage).

Назначение:
- уведомления о новых регистрациях в группы/чаты
- алерты воркера администраторам

Важно:
- не логировать текст сообщений (там ПДн участника)
- логировать только метаданные (чат, статус, message_id)
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import requests
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from registration_pipeline.common.logging import get_project_logger
from registration_pipeline.delivery.base import DeliveryResult, MessageTransport
from registration_pipeline.delivery.results import fail_result, ok_result

log = get_project_logger()

_TEMPLATES_DIR = Path(__file__).parent / "templates"
_MD_SPECIAL = ("_", "*", "`", "[")


def escape_markdown(value: Any) -> str:
    """Экранирование для legacy Markdown Telegram."""
    text = "" if value is None else str(value)
    for ch in _MD_SPECIAL:
        text = text.replace(ch, "\\" + ch)
    return text


def format_sent_at(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%d/%m/%Y, %H.%M.%S")


def _jinja() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=False,
    )
    env.filters["md"] = escape_markdown
    return env


_ENV = _jinja()


def render_message(template_name: str, **context: Any) -> str:
    return _ENV.get_template(template_name).render(**context).strip()


class TelegramBotSender(MessageTransport):
    def __init__(
        self,
        *,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout_sec: int = 20,
        session: requests.Session | None = None,
    ) -> None:
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout_sec = timeout_sec
        self.http = session or requests.Session()

    def send_message(
        self,
        *,
        chat_id: str,
        text: str,
        parse_mode: str = "Markdown",
        disable_web_page_preview: bool = False,
    ) -> DeliveryResult:
        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        try:
            resp = self.http.post(
                url,
                json={
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": parse_mode,
                    "disable_web_page_preview": disable_web_page_preview,
                },
                timeout=self.timeout_sec,
            )
        except requests.RequestException as e:
            log.warning(
                "telegram_http_error",
                extra={"payload": {"chat_id": chat_id, "err": str(e)[:200]}},
            )
            return fail_result("telegram", chat_id, str(e)[:200])

        if resp.status_code >= 400:
            log.warning(
                "telegram_send_failed",
                extra={
                    "payload": {
                        "chat_id": chat_id,
                        "status": resp.status_code,
                        "text_head": resp.text[:200],
                    }
                },
            )
            return fail_result("telegram", chat_id, f"HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError:
            data = {}
        result = data.get("result") if isinstance(data, dict) else None
        message_id = None
        if isinstance(result, dict) and result.get("message_id") is not None:
            message_id = str(result["message_id"])
        return ok_result("telegram", chat_id, message_id=message_id)
