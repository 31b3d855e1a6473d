"""Tests for the gateway service front door."""

from __future__ import annotations

import asyncio

import pytest

from conftest import RecordingTransport
from operation_gateway.cache import ResponseCache
from operation_gateway.errors import RemoteRejection
from operation_gateway.executors import UniversalExecutor
from operation_gateway.models import TransportResponse
from operation_gateway.registry import OperationRegistry
from operation_gateway.retry import RetryPolicy
from operation_gateway.service import OperationService, split_arguments


async def _no_sleep(_seconds: float) -> None:
    return None


def _service(specs_dir, transport: RecordingTransport) -> OperationService:
    registry = OperationRegistry()
    registry.load(specs_dir)
    executor = UniversalExecutor(
        transport, retry_policy=RetryPolicy(sleep=_no_sleep), cache=ResponseCache()
    )
    return OperationService(registry, executor, max_concurrency=2)


@pytest.mark.asyncio
async def test_execute_operation_from_flat_arguments(specs_dir) -> None:
    transport = RecordingTransport([TransportResponse(200, {}, {"id": "7"})])
    service = _service(specs_dir, transport)

    result = await service.execute_operation("api_things_getThing", {"id": "7"})

    assert "is_error" not in result
    payload = result["content"][0]["json"]
    assert payload["status"] == 200
    assert payload["body"] == {"id": "7"}
    assert transport.calls[0]["path"] == "/v1/things/7"


@pytest.mark.asyncio
async def test_execute_with_structured_request(specs_dir) -> None:
    transport = RecordingTransport([TransportResponse(200, {}, {"items": [1], "hasMore": False})])
    service = _service(specs_dir, transport)

    result = await service.execute(
        "api_things_listThings", {"query_params": {"limit": 5}, "paginate": True}
    )

    payload = result["content"][0]["json"]
    assert payload["paginated"] is True
    assert payload["body"] == [1]
    assert transport.calls[0]["query"] == {"limit": "5"}


@pytest.mark.asyncio
async def test_unknown_operation_is_an_error_result(specs_dir) -> None:
    result = await _service(specs_dir, RecordingTransport()).execute("api_nope", {})

    assert result["is_error"] is True
    assert "Unknown operation" in result["content"][0]["text"]


@pytest.mark.asyncio
async def test_failures_are_formatted_with_detail(specs_dir) -> None:
    transport = RecordingTransport([RemoteRejection(404, body={"error": "missing"})])
    service = _service(specs_dir, transport)

    result = await service.execute_operation("api_things_getThing", {"id": "1"})

    assert result["is_error"] is True
    detail = result["content"][1]["json"]
    assert detail["error"] == "RemoteRejection"
    assert detail["status"] == 404
    assert detail["body"] == {"error": "missing"}


@pytest.mark.asyncio
async def test_validation_failures_never_reach_transport(specs_dir) -> None:
    transport = RecordingTransport()
    service = _service(specs_dir, transport)

    result = await service.execute_operation("api_things_createThing", {})

    assert result["is_error"] is True
    assert result["content"][1]["json"]["error"] == "ValidationFailure"
    assert transport.calls == []


def test_split_arguments_routes_by_location(specs_dir) -> None:
    registry = OperationRegistry()
    registry.load(specs_dir)
    operation = registry.get("api_things_getThing")

    request = split_arguments(
        operation, {"id": "1", "X_Api_Version": "2025", "unknown": 1, "paginate": True}
    )

    assert request == {
        "path_params": {"id": "1"},
        "query_params": {},
        "headers": {"X-Api-Version": "2025"},
        "paginate": True,
    }


def test_list_operations_and_stats(specs_dir) -> None:
    service = _service(specs_dir, RecordingTransport())

    listed = service.list_operations(namespace="things", method="GET")
    stats = service.stats()

    assert {item["name"] for item in listed} == {"api_things_getThing", "api_things_listThings"}
    assert next(item for item in listed if item["name"] == "api_things_getThing")["path"] == "/v1/things/{id}"
    assert stats["registry"]["total_operations"] == 6
    assert stats["cache"]["entries"] == 0
    assert stats["circuit_breakers"] == []


@pytest.mark.asyncio
async def test_health_reflects_components(specs_dir) -> None:
    service = _service(specs_dir, RecordingTransport())

    health = service.health()

    assert health["status"] == "ok"
    assert health["circuit_breakers"]["healthy"] is True
    assert health["cache"]["healthy"] is True
    await service.aclose()


def test_health_is_degraded_before_load() -> None:
    service = OperationService(OperationRegistry(), UniversalExecutor(RecordingTransport()))

    assert service.health()["status"] == "degraded"


class GatedTransport(RecordingTransport):
    """Holds every GET until ``gate`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def retrieve(self, path, body=None, query=None, headers=None):
        self.entered.set()
        await self.gate.wait()
        return self._next("GET", path, body, query, headers)


@pytest.mark.asyncio
async def test_aclose_waits_for_in_flight_executions(specs_dir) -> None:
    transport = GatedTransport()
    service = _service(specs_dir, transport)

    running = asyncio.create_task(service.execute_operation("api_things_getThing", {"id": "1"}))
    await transport.entered.wait()
    assert service.in_flight == 1

    closing = asyncio.create_task(service.aclose(timeout=5))
    await asyncio.sleep(0)
    assert not closing.done()
    assert service.health()["shutting_down"] is True

    transport.gate.set()
    result = await running
    await closing

    assert "is_error" not in result
    assert service.in_flight == 0


@pytest.mark.asyncio
async def test_aclose_gives_up_after_timeout(specs_dir, caplog) -> None:
    transport = GatedTransport()
    service = _service(specs_dir, transport)

    running = asyncio.create_task(service.execute_operation("api_things_getThing", {"id": "1"}))
    await transport.entered.wait()

    await service.aclose(timeout=0.01)

    assert "Shutdown timeout reached with 1 executions still running" in caplog.text
    running.cancel()
    with pytest.raises(asyncio.CancelledError):
        await running
    assert service.in_flight == 0


@pytest.mark.asyncio
async def test_new_executions_are_refused_while_closing(specs_dir) -> None:
    transport = RecordingTransport()
    service = _service(specs_dir, transport)

    await service.aclose()
    result = await service.execute_operation("api_things_getThing", {"id": "1"})

    assert result["is_error"] is True
    assert result["content"][0]["text"] == "Gateway is shutting down"
    assert transport.calls == []
    assert service.health()["status"] == "degraded"
