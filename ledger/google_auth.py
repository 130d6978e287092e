# ledger/google_auth.py
from __future__ import annotations

import asyncio
from typing import Any, Iterable, Mapping

from google.auth.transport.requests import Request
from google.oauth2 import service_account

from fulfillment.errors import ConfigError

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"


class ServiceAccountTokenProvider:
    """
    Async bearer-token source for HttpClient(token_provider=...).
    The blocking google-auth refresh runs in a worker thread; the token is
    reused until it expires.
    """

    def __init__(self, info: Mapping[str, Any], scopes: Iterable[str] = (SHEETS_SCOPE,)) -> None:
        try:
            self._creds = service_account.Credentials.from_service_account_info(dict(info), scopes=list(scopes))
        except (ValueError, KeyError) as e:
            raise ConfigError(f"Invalid service account credentials: {e}") from e
        self._lock = asyncio.Lock()

    @property
    def account_email(self) -> str:
        return self._creds.service_account_email

    async def __call__(self) -> str:
        async with self._lock:
            if not self._creds.valid:
                await asyncio.to_thread(self._creds.refresh, Request())
            return self._creds.token
