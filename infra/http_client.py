# infra/http_client.py
from __future__ import annotations

import aiohttp
import asyncio
import json
import random
from typing import Any, Awaitable, Callable, Mapping, Optional
from urllib.parse import urlencode
import logging

from fulfillment.errors import HttpError

JSON_SEPARATORS = (",", ":")

TokenProvider = Callable[[], Awaitable[str]]


def _json_dumps_compact(obj: Any) -> str:
    return json.dumps(obj, separators=JSON_SEPARATORS, ensure_ascii=False)


def _build_query(params: Optional[Mapping[str, Any]]) -> str:
    if not params:
        return ""
    return "?" + urlencode(params, doseq=True, safe=":/!'")


def _mask(s: Optional[str]) -> str:
    if not s:
        return ""
    if len(s) <= 8:
        return "*" * len(s)
    return s[:4] + "*" * (len(s) - 8) + s[-4:]


class HttpClient:
    """
    aiohttp JSON client with exponential backoff on 429/5xx and network errors.
    Paths are joined to `base_url`; absolute URLs are used as given.
    """
    def __init__(self,
                 base_url: str = "",
                 cfg: Optional[Mapping[str, Any]] = None,
                 logger: Optional[logging.Logger] = None,
                 *,
                 token_provider: Optional[TokenProvider] = None,
                 cookies: Optional[Mapping[str, str]] = None,
                 headers: Optional[Mapping[str, str]] = None,
                 timeout_ms: Optional[int] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 ) -> None:
        cfg = cfg or {}
        self.base_url = base_url.rstrip("/")
        self.log = logger or logging.getLogger("HttpClient")
        self.session = session
        self._owned_session = session is None
        self._token_provider = token_provider
        self._cookies = dict(cookies or {})
        self._headers = dict(headers or {})

        timeouts_cfg = cfg.get("timeouts", {})
        retries_cfg = cfg.get("retries", {})
        self.timeout_ms = int(timeout_ms or timeouts_cfg.get("rest_ms", 10000))
        self.max_attempts = int(retries_cfg.get("rest_max_attempts", 3))
        self.backoff_ms = int(retries_cfg.get("backoff_ms", 200))

        self.log.debug(f"HttpClient init base_url={self.base_url or '<absolute>'} cookies={sorted(self._cookies)}")

    def _new_session(self) -> aiohttp.ClientSession:
        timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)
        return aiohttp.ClientSession(timeout=timeout, raise_for_status=False, trust_env=True, cookies=self._cookies)

    # ---- async context manager ----------------------------------------------------
    async def __aenter__(self) -> "HttpClient":
        if self._owned_session and (self.session is None or self.session.closed):
            self.session = self._new_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owned_session and self.session is not None and not self.session.closed:
            await self.session.close()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return self.base_url + path

    async def request(
            self,
            method: str,
            path: str,
            *,
            params: Optional[Mapping[str, Any]] = None,
            json_body: Optional[Any] = None,
            form: Optional[Mapping[str, Any]] = None,
            headers: Optional[Mapping[str, str]] = None,
            expect_json: bool = True,
            retry: bool = True,
        ) -> Any:
        """
        Single request entry.
        - json_body and form are mutually exclusive
        - auth: bearer token from token_provider when configured
        - retry: exponential backoff on 429/5xx and network errors
        """
        if json_body is not None and form is not None:
            raise ValueError("json_body and form are mutually exclusive")
        method = method.upper()
        url = self._url(path) + _build_query(params)

        req_headers = {"Accept": "application/json"}
        req_headers.update(self._headers)
        if headers:
            req_headers.update(headers)
        data: Any = None
        if json_body is not None:
            data = _json_dumps_compact(json_body)
            req_headers["Content-Type"] = "application/json"
        elif form is not None:
            data = dict(form)

        if self.session is None or self.session.closed:
            self.session = self._new_session()

        attempt = 0
        while True:
            attempt += 1
            if self._token_provider is not None:
                req_headers["Authorization"] = f"Bearer {await self._token_provider()}"
            try:
                async with self.session.request(method, url, data=data, headers=req_headers) as resp:
                    text = await resp.text()
                    status = resp.status
                    if status >= 400:
                        if retry and (status >= 500 or status == 429) and attempt < self.max_attempts:
                            await self._sleep_backoff(attempt)
                            continue
                        raise HttpError(status, text[:512])

                    if not expect_json:
                        return text
                    try:
                        return json.loads(text) if text else {}
                    except json.JSONDecodeError:
                        raise HttpError(status, f"invalid json: {text[:256]}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if retry and attempt < self.max_attempts:
                    self.log.warning(f"Network error: {e} when requesting {method} {url}, retrying...")
                    await self._sleep_backoff(attempt)
                    continue
                raise HttpError(599, f"Network error: {e}") from e

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_ms * (2 ** (attempt - 1))
        jitter = random.randint(0, self.backoff_ms)
        await asyncio.sleep((base + jitter) / 1000.0)

    # ---- convenience wrappers -----------------------------------------------------
    async def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None, **kw) -> Any:
        return await self.request("GET", path, params=params, **kw)

    async def put_json(self, path: str, json_body: Any, params: Optional[Mapping[str, Any]] = None, **kw) -> Any:
        return await self.request("PUT", path, params=params, json_body=json_body, **kw)

    async def post_form(self, path: str, form: Mapping[str, Any], **kw) -> Any:
        return await self.request("POST", path, form=form, **kw)

    def cookie(self, name: str) -> Optional[str]:
        return self._cookies.get(name)
