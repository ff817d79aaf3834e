"""
Временное хранилище файлов подтверждений (Supabase Storage).

Назначение:
- скачать файл по временному URL (без ретраев: повтор = повтор задачи из DLQ)
- пакетно удалить временные объекты после переноса в Drive

Важно:
- удаление best-effort: ошибка логируется и не роняет задачу,
  постоянные ссылки к этому моменту уже записаны
"""

from __future__ import annotations

from urllib.parse import unquote, urlparse

import requests

from registration_pipeline.common.errors import ErrCode, ProviderError
from registration_pipeline.common.logging import get_project_logger
from registration_pipeline.common.metrics import CLEANUP_FAILURES_TOTAL

log = get_project_logger()

_OBJECT_PATH_MARKERS = ("/object/public/", "/object/sign/", "/object/authenticated/", "/object/")


def object_name_from_url(url: str, bucket: str) -> str:
    """
    Путь объекта внутри bucket по его URL.

    https://x.supabase.co/storage/v1/object/public/registrations/a/b.jpg -> a/b.jpg
    Для URL не из Storage берётся последний сегмент пути.
    """
    path = unquote(urlparse(url).path)
    for marker in _OBJECT_PATH_MARKERS:
        idx = path.find(marker)
        if idx < 0:
            continue
        rest = path[idx + len(marker) :]
        prefix = bucket.strip("/") + "/"
        if rest.startswith(prefix):
            return rest[len(prefix) :]
    return path.rstrip("/").rsplit("/", 1)[-1]


class TempStorage:
    def __init__(
        self,
        *,
        supabase_url: str | None,
        service_role_key: str | None,
        bucket: str = "registrations",
        timeout_sec: int = 30,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = (supabase_url or "").rstrip("/")
        self.service_role_key = service_role_key or ""
        self.bucket = bucket
        self.timeout_sec = timeout_sec
        self.http = session or requests.Session()

    @classmethod
    def from_settings(cls, settings) -> TempStorage:
        return cls(
            supabase_url=settings.supabase_url,
            service_role_key=settings.supabase_service_role_key,
            bucket=settings.supabase_bucket,
            timeout_sec=settings.http_timeout_sec,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.service_role_key}",
            "apikey": self.service_role_key,
        }

    def fetch_remote(self, url: str) -> bytes:
        try:
            resp = self.http.get(url, timeout=self.timeout_sec)
        except requests.RequestException as e:
            log.error(
                "temp_fetch_http_error",
                extra={
                    "payload": {
                        "object": object_name_from_url(url, self.bucket),
                        "err": str(e)[:200],
                    }
                },
            )
            raise
        if resp.status_code >= 400:
            raise ProviderError(
                ErrCode.STORAGE_PROVIDER_ERROR,
                f"Failed to download proof file: HTTP {resp.status_code}",
                {"status": resp.status_code, "object": object_name_from_url(url, self.bucket)},
            )
        return resp.content

    def delete_objects(self, names: list[str]) -> bool:
        """
        Пакетное удаление. Никогда не бросает исключение.
        """
        names = [n for n in names if n]
        if not names:
            return True
        if not self.base_url or not self.service_role_key:
            log.warning(
                "temp_delete_skipped", extra={"payload": {"reason": "supabase_not_configured"}}
            )
            return False

        url = f"{self.base_url}/storage/v1/object/{self.bucket}"
        try:
            resp = self.http.delete(
                url,
                headers=self._headers(),
                json={"prefixes": names},
                timeout=self.timeout_sec,
            )
            if resp.status_code >= 400:
                raise ProviderError(
                    ErrCode.STORAGE_PROVIDER_ERROR,
                    f"Storage delete returned HTTP {resp.status_code}",
                    {"status": resp.status_code, "text_head": resp.text[:200]},
                )
        except (requests.RequestException, ProviderError) as e:
            CLEANUP_FAILURES_TOTAL.inc()
            log.warning(
                "temp_delete_failed",
                extra={"payload": {"bucket": self.bucket, "objects": names, "err": str(e)[:200]}},
            )
            return False

        log.info(
            "temp_objects_deleted",
            extra={"payload": {"bucket": self.bucket, "count": len(names)}},
        )
        return True
