"""Prometheus metrics for the Operation Gateway.

Every :class:`GatewayMetrics` owns its own ``CollectorRegistry`` unless one is
passed in, so several gateways (or test cases) can live in one process.
When disabled, the ``record_*`` methods do nothing.
"""

from __future__ import annotations

import logging
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


logger = logging.getLogger(__name__)

PAGE_BUCKETS = (1, 2, 3, 5, 10, 20, 50, 100)
ITEM_BUCKETS = (0, 10, 50, 100, 500, 1000, 5000, 10000)


class GatewayMetrics:
    def __init__(
        self,
        prefix: str = "gateway",
        enabled: bool = True,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self.prefix = prefix
        self.enabled = enabled
        self.registry = registry or CollectorRegistry()
        self.content_type = CONTENT_TYPE_LATEST
        if not enabled:
            logger.info("Metrics collection disabled")
            return

        self._tool_calls = Counter(
            f"{prefix}_tool_calls_total",
            "Operation executions requested through the gateway",
            ["operation", "outcome"],
            registry=self.registry,
        )
        self._tool_duration = Histogram(
            f"{prefix}_tool_duration_seconds",
            "End-to-end execution time per operation",
            ["operation"],
            registry=self.registry,
        )
        self._api_requests = Counter(
            f"{prefix}_api_requests_total",
            "Outbound REST calls by namespace, method and status",
            ["namespace", "method", "status"],
            registry=self.registry,
        )
        self._api_duration = Histogram(
            f"{prefix}_api_request_duration_seconds",
            "Outbound REST call latency",
            ["namespace", "method"],
            registry=self.registry,
        )
        self._retries = Counter(
            f"{prefix}_retries_total",
            "Retried attempts by failure type",
            ["reason"],
            registry=self.registry,
        )
        self._cache_access = Counter(
            f"{prefix}_cache_access_total",
            "Response cache lookups",
            ["result"],
            registry=self.registry,
        )
        self._circuit_rejections = Counter(
            f"{prefix}_circuit_rejections_total",
            "Calls rejected by an open circuit",
            ["key"],
            registry=self.registry,
        )
        self._pagination_pages = Histogram(
            f"{prefix}_pagination_pages",
            "Pages fetched per paginated execution",
            ["operation"],
            buckets=PAGE_BUCKETS,
            registry=self.registry,
        )
        self._pagination_items = Histogram(
            f"{prefix}_pagination_items",
            "Items accumulated per paginated execution",
            ["operation"],
            buckets=ITEM_BUCKETS,
            registry=self.registry,
        )
        self._in_flight = Gauge(
            f"{prefix}_in_flight_executions",
            "Executions currently running",
            registry=self.registry,
        )
        self._registry_operations = Gauge(
            f"{prefix}_registry_operations",
            "Operations in the registry",
            registry=self.registry,
        )
        self._registry_documents = Gauge(
            f"{prefix}_registry_documents",
            "API description documents by load result",
            ["result"],
            registry=self.registry,
        )
        self._registry_load_duration = Gauge(
            f"{prefix}_registry_load_duration_seconds",
            "Duration of the last registry load",
            registry=self.registry,
        )

    def record_tool_call(self, operation: str, outcome: str, duration: float) -> None:
        if not self.enabled:
            return
        self._tool_calls.labels(operation=operation, outcome=outcome).inc()
        self._tool_duration.labels(operation=operation).observe(duration)

    def record_api_request(self, namespace: str, method: str, status: str, duration: float) -> None:
        if not self.enabled:
            return
        self._api_requests.labels(namespace=namespace, method=method, status=status).inc()
        self._api_duration.labels(namespace=namespace, method=method).observe(duration)

    def record_retry(self, reason: str) -> None:
        if not self.enabled:
            return
        self._retries.labels(reason=reason).inc()

    def record_cache_access(self, hit: bool) -> None:
        if not self.enabled:
            return
        self._cache_access.labels(result="hit" if hit else "miss").inc()

    def record_circuit_rejection(self, key: str) -> None:
        if not self.enabled:
            return
        self._circuit_rejections.labels(key=key).inc()

    def record_pagination(self, operation: str, pages: int, items: int) -> None:
        if not self.enabled:
            return
        self._pagination_pages.labels(operation=operation).observe(pages)
        self._pagination_items.labels(operation=operation).observe(items)

    def set_in_flight(self, count: int) -> None:
        if not self.enabled:
            return
        self._in_flight.set(count)

    def set_registry(self, operations: int, loaded: int, failed: int, duration: float) -> None:
        if not self.enabled:
            return
        self._registry_operations.set(operations)
        self._registry_documents.labels(result="loaded").set(loaded)
        self._registry_documents.labels(result="failed").set(failed)
        self._registry_load_duration.set(duration)

    def value(self, name: str, **labels: str) -> Optional[float]:
        """Current sample value, or None when the series does not exist."""
        return self.registry.get_sample_value(name, labels)

    def render(self) -> bytes:
        return generate_latest(self.registry)
