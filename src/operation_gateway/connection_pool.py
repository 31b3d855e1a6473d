"""Shared keep-alive HTTP clients, one per URL scheme."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import urlparse

import httpx


logger = logging.getLogger(__name__)


class ConnectionPool:
    def __init__(
        self,
        max_connections: int = 50,
        max_keepalive_connections: int = 10,
        keepalive_expiry: float = 60.0,
        timeout: float = 30.0,
        verify: bool = True,
        warn_utilization: float = 80.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
            keepalive_expiry=keepalive_expiry,
        )
        self.max_connections = max_connections
        self.timeout = timeout
        self.verify = verify
        self.warn_utilization = warn_utilization
        self._transport = transport
        self._clients: Dict[str, httpx.AsyncClient] = {}
        self._in_flight = 0
        self._total_requests = 0
        self._peak_in_flight = 0
        self._closed = False

    def _scheme(self, url: str) -> str:
        return (urlparse(url).scheme or "http").lower()

    def _build_client(self) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {
            "limits": self.limits,
            "timeout": self.timeout,
            "verify": self.verify,
        }
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    def client_for(self, url: str) -> httpx.AsyncClient:
        if self._closed:
            raise RuntimeError("Connection pool is closed")
        scheme = self._scheme(url)
        client = self._clients.get(scheme)
        if client is None or client.is_closed:
            client = self._build_client()
            self._clients[scheme] = client
            logger.debug("Created %s client (max_connections=%s)", scheme, self.max_connections)
        return client

    @asynccontextmanager
    async def lease(self, url: str) -> AsyncIterator[httpx.AsyncClient]:
        client = self.client_for(url)
        self._in_flight += 1
        self._total_requests += 1
        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        utilization = self.utilization()
        if utilization >= self.warn_utilization:
            logger.warning(
                "Connection pool utilization high: %.1f%% (%s/%s in flight)",
                utilization,
                self._in_flight,
                self.max_connections,
            )
        try:
            yield client
        finally:
            self._in_flight -= 1

    def utilization(self) -> float:
        return self._in_flight / self.max_connections * 100 if self.max_connections else 0.0

    def _observed_connections(self) -> Dict[str, int]:
        open_connections = 0
        idle_connections = 0
        for client in self._clients.values():
            # httpx does not expose pool internals publicly; read what is there.
            pool = getattr(getattr(client, "_transport", None), "_pool", None)
            for connection in getattr(pool, "connections", None) or []:
                open_connections += 1
                is_idle = getattr(connection, "is_idle", None)
                if callable(is_idle) and is_idle():
                    idle_connections += 1
        return {"open": open_connections, "idle": idle_connections}

    def stats(self) -> Dict[str, Any]:
        observed = self._observed_connections()
        return {
            "clients": sorted(self._clients),
            "in_flight": self._in_flight,
            "peak_in_flight": self._peak_in_flight,
            "total_requests": self._total_requests,
            "open_connections": observed["open"],
            "idle_connections": observed["idle"],
            "max_connections": self.max_connections,
            "utilization": round(self.utilization(), 2),
        }

    def health(self) -> Dict[str, Any]:
        utilization = self.utilization()
        return {
            "healthy": not self._closed and utilization < self.warn_utilization,
            "closed": self._closed,
            "utilization": round(utilization, 2),
        }

    async def prune(self) -> int:
        """Recycle idle clients; clients with requests in flight are kept."""
        if self._in_flight:
            logger.debug("Skipping prune with %s requests in flight", self._in_flight)
            return 0
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.aclose()
        if clients:
            logger.info("Pruned %s pooled clients", len(clients))
        return len(clients)

    async def aclose(self) -> None:
        self._closed = True
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.aclose()
