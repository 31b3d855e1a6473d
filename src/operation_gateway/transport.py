"""Transport adapters: the seam between the executor and the network."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Tuple, Union

import httpx

from .connection_pool import ConnectionPool
from .errors import RemoteRejection, TransportFailure
from .models import TransportResponse

logger = logging.getLogger(__name__)

QueryValue = Union[str, Sequence[str]]


class TransportAdapter(Protocol):
    """Anything that can perform the four core verbs.

    ``modify`` (PATCH) is optional; the executor checks for it at dispatch.
    """

    async def retrieve(
        self,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, QueryValue]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransportResponse: ...

    async def create(
        self,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, QueryValue]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransportResponse: ...

    async def replace(
        self,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, QueryValue]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransportResponse: ...

    async def remove(
        self,
        path: str,
        body: Any = None,
        query: Optional[Mapping[str, QueryValue]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransportResponse: ...


class CredentialInjector:
    def __init__(
        self,
        auth_type: Optional[str] = None,
        name: str = "Authorization",
        location: str = "header",
        value: Optional[str] = None,
    ) -> None:
        self.auth_type = auth_type
        self.name = name
        self.location = location
        self.value = value

    def build_auth(self) -> Tuple[Dict[str, str], Dict[str, str]]:
        headers: Dict[str, str] = {}
        query: Dict[str, str] = {}

        if not self.auth_type or not self.value:
            return headers, query

        if self.auth_type == "api_key":
            if self.location == "query":
                query[self.name] = self.value
            else:
                headers[self.name] = self.value
        elif self.auth_type == "bearer":
            headers["Authorization"] = f"Bearer {self.value}"
        else:
            logger.warning("Unknown auth type %s; no credentials injected", self.auth_type)

        return headers, query


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text


class HttpxTransport:
    """Default adapter backed by pooled ``httpx.AsyncClient`` instances."""

    def __init__(
        self,
        base_url: str,
        pool: ConnectionPool,
        credentials: Optional[CredentialInjector] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.pool = pool
        self.credentials = credentials or CredentialInjector()

    async def retrieve(self, path, body=None, query=None, headers=None) -> TransportResponse:
        return await self._send("GET", path, body, query, headers)

    async def create(self, path, body=None, query=None, headers=None) -> TransportResponse:
        return await self._send("POST", path, body, query, headers)

    async def replace(self, path, body=None, query=None, headers=None) -> TransportResponse:
        return await self._send("PUT", path, body, query, headers)

    async def remove(self, path, body=None, query=None, headers=None) -> TransportResponse:
        return await self._send("DELETE", path, body, query, headers)

    async def modify(self, path, body=None, query=None, headers=None) -> TransportResponse:
        return await self._send("PATCH", path, body, query, headers)

    async def _send(
        self,
        method: str,
        path: str,
        body: Any,
        query: Optional[Mapping[str, QueryValue]],
        headers: Optional[Mapping[str, str]],
    ) -> TransportResponse:
        url = self.base_url + path
        auth_headers, auth_query = self.credentials.build_auth()
        request_headers = {**dict(headers or {}), **auth_headers}
        params = {**dict(query or {}), **auth_query}

        kwargs: Dict[str, Any] = {"headers": request_headers, "params": params}
        if body is not None:
            kwargs["json"] = body

        try:
            async with self.pool.lease(url) as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise TransportFailure(f"{method} {path} failed: {exc}") from exc

        payload = _parse_body(response)
        response_headers = dict(response.headers)
        if response.status_code >= 400:
            raise RemoteRejection(
                response.status_code,
                body=payload,
                headers=response_headers,
                message=f"{method} {path} returned HTTP {response.status_code}",
            )
        return TransportResponse(status=response.status_code, headers=response_headers, body=payload)
