"""
Google OAuth для Drive/Sheets.

Назначение:
- credentials из client_id/client_secret/refresh_token (без интерактива)
- построение сервисов googleapiclient (drive v3, sheets v4)

Refresh token выпускается один раз скриптом scripts/generate_refresh_token.py.
"""

from __future__ import annotations

from typing import Any

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from registration_pipeline.common.errors import ErrCode, ProviderError

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

SCOPES = [
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/spreadsheets",
]


def build_credentials(
    *, client_id: str | None, client_secret: str | None, refresh_token: str | None
) -> Credentials:
    missing = [
        name
        for name, value in (
            ("GOOGLE_OAUTH_CLIENT_ID", client_id),
            ("GOOGLE_OAUTH_CLIENT_SECRET", client_secret),
            ("GOOGLE_OAUTH_REFRESH_TOKEN", refresh_token),
        )
        if not value
    ]
    if missing:
        raise ProviderError(
            ErrCode.DRIVE_PROVIDER_ERROR,
            "Google OAuth credentials are not configured",
            {"missing": missing},
        )
    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        client_id=client_id,
        client_secret=client_secret,
        token_uri=GOOGLE_TOKEN_URI,
        scopes=SCOPES,
    )
    # Проверяем refresh token сразу на старте, а не на первой задаче
    creds.refresh(Request())
    return creds


class GoogleServiceFactory:
    """
    Фабрика сервисов googleapiclient.

    Объекты сервиса (httplib2) не потокобезопасны, поэтому каждый поток
    загрузки получает свой экземпляр через drive()/sheets().
    """

    def __init__(self, credentials: Credentials) -> None:
        self.credentials = credentials

    @classmethod
    def from_settings(cls, settings) -> GoogleServiceFactory:
        return cls(
            build_credentials(
                client_id=settings.google_oauth_client_id,
                client_secret=settings.google_oauth_client_secret,
                refresh_token=settings.google_oauth_refresh_token,
            )
        )

    def drive(self) -> Any:
        return build("drive", "v3", credentials=self.credentials, cache_discovery=False)

    def sheets(self) -> Any:
        return build("sheets", "v4", credentials=self.credentials, cache_discovery=False)
