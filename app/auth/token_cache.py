"""Client-side cache for backend bearer credentials.

Fetches a guest token from ``POST {base_url}/auth/guest`` and keeps it until a
fixed local expiry (50 minutes) that sits under the server-side validity
(60 minutes). There is no lock: concurrent callers that find the cache stale
each refresh, and the last write wins. The auth endpoint is idempotent.
"""
from __future__ import annotations

import json
import logging
import time
from collections.abc import MutableMapping
from pathlib import Path
from typing import Callable, Dict, Optional

import httpx

from app.errors import AuthError

logger = logging.getLogger("support_chat.auth")

TOKEN_STORAGE_KEY = "support_chat_backend_token"
TOKEN_EXPIRY_KEY = "support_chat_backend_token_expiry"
TOKEN_CACHE_SECONDS = 50 * 60


class FileTokenStorage(MutableMapping):
    """Tiny persistent string mapping backed by a JSON file."""

    def __init__(self, path: Path):
        self._path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data), encoding="utf-8")

    def __getitem__(self, key: str) -> str:
        return self._read()[key]

    def __setitem__(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def __delitem__(self, key: str) -> None:
        data = self._read()
        del data[key]
        self._write(data)

    def __iter__(self):
        return iter(self._read())

    def __len__(self) -> int:
        return len(self._read())


class BackendTokenCache:
    def __init__(
        self,
        base_url: str,
        storage: Optional[MutableMapping] = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.storage: MutableMapping = storage if storage is not None else {}
        self._clock = clock
        self._timeout = timeout

    def _cached(self) -> Optional[str]:
        token = self.storage.get(TOKEN_STORAGE_KEY)
        expiry = self.storage.get(TOKEN_EXPIRY_KEY)
        if not token or not expiry:
            return None
        try:
            expires_at = float(expiry)
        except (TypeError, ValueError):
            return None
        if self._clock() < expires_at:
            return token
        return None

    async def get_token(self) -> str:
        """Return a valid backend token, fetching a new one when the cache is stale."""
        cached = self._cached()
        if cached:
            return cached

        url = f"{self.base_url}/auth/guest"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, headers={"Content-Type": "application/json"})
        except httpx.HTTPError as e:
            logger.error(json.dumps({"event": "token_fetch_error", "url": url, "error": str(e)}))
            raise AuthError(f"Failed to get backend token: {e}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            logger.error(json.dumps({"event": "token_fetch_error", "url": url, "status": resp.status_code}))
            raise AuthError(f"Failed to get backend token: {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise AuthError("Backend token response was not JSON") from e
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            logger.error(json.dumps({"event": "token_missing", "url": url}))
            raise AuthError("No token in backend response")

        self.storage[TOKEN_STORAGE_KEY] = token
        self.storage[TOKEN_EXPIRY_KEY] = str(self._clock() + TOKEN_CACHE_SECONDS)
        return token

    def clear(self) -> None:
        """Drop the cached token (logout)."""
        self.storage.pop(TOKEN_STORAGE_KEY, None)
        self.storage.pop(TOKEN_EXPIRY_KEY, None)
