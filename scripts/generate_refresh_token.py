#!/usr/bin/env python3
"""
Выпуск Google OAuth refresh token для Drive/Sheets (один раз, интерактивно).

Запуск:
  GOOGLE_OAUTH_CLIENT_ID=... GOOGLE_OAUTH_CLIENT_SECRET=... \
    python scripts/generate_refresh_token.py

Полученный токен кладётся в GOOGLE_OAUTH_REFRESH_TOKEN воркера.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def _args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Generate Google OAuth refresh token")
    p.add_argument("--port", type=int, default=3000, help="Local callback port")
    p.add_argument("--no-browser", action="store_true", help="Print the URL instead of opening")
    return p.parse_args()


def main() -> int:
    from google_auth_oauthlib.flow import InstalledAppFlow

    from registration_pipeline.common.config import get_settings
    from registration_pipeline.integrations.google.auth import GOOGLE_TOKEN_URI, SCOPES

    args = _args()
    settings = get_settings()
    if not settings.google_oauth_client_id or not settings.google_oauth_client_secret:
        print("missing_oauth_client: set GOOGLE_OAUTH_CLIENT_ID and GOOGLE_OAUTH_CLIENT_SECRET")
        return 1

    print("scopes:")
    for scope in SCOPES:
        print(f"  - {scope}")

    flow = InstalledAppFlow.from_client_config(
        {
            "installed": {
                "client_id": settings.google_oauth_client_id,
                "client_secret": settings.google_oauth_client_secret,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": GOOGLE_TOKEN_URI,
                "redirect_uris": [f"http://localhost:{args.port}/"],
            }
        },
        scopes=SCOPES,
    )
    creds = flow.run_local_server(
        port=args.port,
        open_browser=not args.no_browser,
        access_type="offline",
        prompt="consent",
    )
    if not creds.refresh_token:
        print("no_refresh_token: revoke app access in the Google account and retry")
        return 1

    print("")
    print(f"GOOGLE_OAUTH_REFRESH_TOKEN={creds.refresh_token}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
