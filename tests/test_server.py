"""Tests for wiring the gateway from settings."""

from __future__ import annotations

import httpx
import pytest

from operation_gateway.config import Settings
from operation_gateway.server import build_server, build_service
from operation_gateway.transport import HttpxTransport


def _settings(specs_dir, **overrides) -> Settings:
    return Settings(
        gateway_spec_dir=str(specs_dir),
        gateway_base_url="https://api.example.com",
        gateway_transport="stdio",
        gateway_retry_base_delay_seconds=0,
        **overrides,
    )


@pytest.mark.asyncio
async def test_build_service_wires_components(specs_dir) -> None:
    service = build_service(
        _settings(specs_dir, gateway_breaker_failure_threshold=2, gateway_header_allowlist="X-Tenant")
    )

    assert service.registry.stats()["total_operations"] == 6
    assert isinstance(service.executor.transport, HttpxTransport)
    assert service.breakers.config.failure_threshold == 2
    assert "x-tenant" in service.executor.header_allowlist
    assert service.health()["status"] == "ok"
    await service.aclose()


@pytest.mark.asyncio
async def test_service_executes_through_httpx(specs_dir) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "5"}, headers={"X-RateLimit-Remaining": "4"})

    service = build_service(
        _settings(specs_dir, gateway_auth_type="bearer", gateway_auth_value="tok")
    )
    service.executor.transport.pool._transport = httpx.MockTransport(handler)

    result = await service.execute_operation("api_things_getThing", {"id": "5"})

    payload = result["content"][0]["json"]
    assert payload["body"] == {"id": "5"}
    assert payload["rate_limit"]["remaining"] == 4
    request = seen[0]
    assert request.url.host == "api.example.com"
    assert request.url.path == "/v1/things/5"
    assert request.headers["authorization"] == "Bearer tok"
    assert request.headers["x-api-version"] == "2024-01-01"

    metrics = service.metrics
    assert metrics.value(
        "gateway_api_requests_total", namespace="things", method="GET", status="200"
    ) == 1.0
    assert metrics.value(
        "gateway_tool_calls_total", operation="api_things_getThing", outcome="success"
    ) == 1.0
    assert metrics.value("gateway_registry_operations") == 6.0
    assert b"gateway_in_flight_executions 0.0" in metrics.render()
    await service.aclose()


@pytest.mark.asyncio
async def test_build_server_for_stdio(specs_dir) -> None:
    mcp, app, service = build_server(
        _settings(
            specs_dir,
            gateway_register_operation_tools=True,
            gateway_tool_allowlist="api_things_getThing",
        )
    )

    assert app is None
    assert mcp.name == "operation-gateway"
    assert service.registry.loaded
    await service.aclose()
