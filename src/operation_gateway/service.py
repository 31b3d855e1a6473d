"""Gateway service: registry lookups and executions formatted as tool results."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional

from .cache import ResponseCache
from .circuit_breaker import CircuitBreakerManager
from .connection_pool import ConnectionPool
from .errors import ExecutionFailure
from .executors import UniversalExecutor
from .logging import redact_payload
from .metrics import GatewayMetrics
from .models import OperationEntry, SearchFilters
from .openapi import sanitize_name
from .registry import OperationRegistry

logger = logging.getLogger(__name__)


class OperationService:
    """Front door used by the MCP tools.

    Executions are bounded by a semaphore; failures come back as error
    results rather than exceptions so the MCP client sees the upstream status
    and body. ``aclose`` stops admitting executions and waits for the running
    ones before the connection pool is closed.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        executor: UniversalExecutor,
        max_concurrency: int = 20,
        pool: Optional[ConnectionPool] = None,
        shutdown_timeout: float = 30.0,
    ) -> None:
        self.registry = registry
        self.executor = executor
        self.pool = pool
        self.shutdown_timeout = shutdown_timeout
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._closing = False

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self.executor.cache

    @property
    def breakers(self) -> CircuitBreakerManager:
        return self.executor.breakers

    @property
    def metrics(self) -> GatewayMetrics:
        return self.executor.metrics

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def closing(self) -> bool:
        return self._closing

    async def execute(
        self, name: str, request: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, Any]:
        operation = self.registry.get(name)
        if operation is None:
            return self._format_error(f"Unknown operation: {name}")
        return await self._run(operation, request or {})

    async def execute_operation(self, name: str, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        """Run an operation from flat tool arguments (one field per parameter)."""
        operation = self.registry.get(name)
        if operation is None:
            return self._format_error(f"Unknown operation: {name}")
        return await self._run(operation, split_arguments(operation, arguments))

    async def _run(self, operation: OperationEntry, request: Mapping[str, Any]) -> Dict[str, Any]:
        if self._closing:
            logger.warning("Rejected %s: gateway is shutting down", operation.name)
            return self._format_error("Gateway is shutting down")

        self._track(1)
        started = time.perf_counter()
        outcome = "error"
        try:
            async with self.semaphore:
                logger.info("Executing operation=%s request=%s", operation.name, redact_payload(request))
                try:
                    result = await self.executor.execute(operation, request)
                except ExecutionFailure as exc:
                    logger.error("Operation %s failed: %s", operation.name, exc)
                    return self._format_error(str(exc), exc.to_dict())
                outcome = "success"
                return self._format_result(result.to_dict())
        finally:
            self._track(-1)
            self.metrics.record_tool_call(operation.name, outcome, time.perf_counter() - started)

    def _track(self, delta: int) -> None:
        self._in_flight += delta
        if self._in_flight:
            self._idle.clear()
        else:
            self._idle.set()
        self.metrics.set_in_flight(self._in_flight)

    def list_operations(
        self,
        namespace: Optional[str] = None,
        method: Optional[str] = None,
        query: Optional[str] = None,
        paginatable: Optional[bool] = None,
        tags: Optional[List[str]] = None,
        limit: Optional[int] = 50,
    ) -> List[Dict[str, Any]]:
        filters = SearchFilters(
            namespace=namespace,
            method=method,
            query=query,
            paginatable=paginatable,
            tags=tags,
            limit=limit,
        )
        return [
            {
                "name": entry.name,
                "method": entry.method,
                "path": entry.full_path,
                "namespace": entry.namespace,
                "summary": entry.summary,
                "supports_pagination": entry.supports_pagination,
            }
            for entry in self.registry.search(filters)
        ]

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"registry": self.registry.stats()}
        if self.cache is not None:
            stats["cache"] = self.cache.stats()
        stats["circuit_breakers"] = self.breakers.all_stats()
        stats["in_flight"] = self._in_flight
        if self.pool is not None:
            stats["connection_pool"] = self.pool.stats()
        return stats

    def health(self) -> Dict[str, Any]:
        components: Dict[str, Any] = {"circuit_breakers": self.breakers.health_summary()}
        if self.cache is not None:
            components["cache"] = self.cache.health()
        if self.pool is not None:
            components["connection_pool"] = self.pool.health()
        healthy = (
            self.registry.loaded
            and not self._closing
            and all(component.get("healthy", True) for component in components.values())
        )
        return {
            "status": "ok" if healthy else "degraded",
            "in_flight": self._in_flight,
            "shutting_down": self._closing,
            **components,
        }

    async def aclose(self, timeout: Optional[float] = None) -> None:
        """Drain running executions, then release the cache sweeper and the pool."""
        self._closing = True
        timeout = self.shutdown_timeout if timeout is None else timeout
        if self._in_flight:
            logger.info("Waiting up to %.0fs for %s in-flight executions", timeout, self._in_flight)
            try:
                await asyncio.wait_for(self._idle.wait(), timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Shutdown timeout reached with %s executions still running", self._in_flight
                )
        if self.cache is not None:
            await self.cache.stop_sweeper()
        if self.pool is not None:
            await self.pool.aclose()
        logger.info("Gateway service closed")

    def _format_result(self, result: Any) -> Dict[str, Any]:
        return {"content": [{"type": "json", "json": result}]}

    def _format_error(self, message: str, detail: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        content: List[Dict[str, Any]] = [{"type": "text", "text": message}]
        if detail:
            content.append({"type": "json", "json": detail})
        return {"content": content, "is_error": True}


def split_arguments(operation: OperationEntry, arguments: Mapping[str, Any]) -> Dict[str, Any]:
    """Route flat tool arguments to path/query/header slots by descriptor."""
    by_key: Dict[str, Any] = {}
    for parameter in operation.parameters:
        by_key.setdefault(parameter.name, parameter)
        by_key.setdefault(sanitize_name(parameter.name), parameter)
        by_key.setdefault(f"p_{sanitize_name(parameter.name)}", parameter)

    slots: Dict[str, Dict[str, Any]] = {"path": {}, "query": {}, "header": {}}
    request: Dict[str, Any] = {}
    for key, value in arguments.items():
        if key in ("body", "paginate", "max_pages"):
            if value is not None:
                request[key] = value
            continue
        parameter = by_key.get(key)
        if parameter is None:
            logger.debug("Ignoring unknown argument %s for %s", key, operation.name)
            continue
        if value is not None:
            slots[parameter.location][parameter.name] = value

    request["path_params"] = slots["path"]
    request["query_params"] = slots["query"]
    request["headers"] = {name: str(value) for name, value in slots["header"].items()}
    return request

