# infra/__init__.py
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol

from infra.http_client import HttpClient


# Abstract port: adapters depend on this, not on the concrete HttpClient
class HttpPort(Protocol):
    async def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None, **kw) -> Any: ...
    async def put_json(self, path: str, json_body: Any, params: Optional[Mapping[str, Any]] = None, **kw) -> Any: ...
    async def post_form(self, path: str, form: Mapping[str, Any], **kw) -> Any: ...
    async def close(self) -> None: ...


__all__ = ["HttpClient", "HttpPort"]
