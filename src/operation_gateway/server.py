"""MCP server setup for the Operation Gateway."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastmcp import FastMCP
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, Response

from .cache import ResponseCache
from .circuit_breaker import BreakerConfig, CircuitBreakerManager
from .config import Settings
from .connection_pool import ConnectionPool
from .executors import UniversalExecutor, counts_against_dependency
from .metrics import GatewayMetrics
from .models import OperationEntry
from .openapi import build_input_model
from .rate_limiter import TokenBucket
from .registry import OperationRegistry
from .retry import RetryPolicy
from .service import OperationService
from .transport import CredentialInjector, HttpxTransport

logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> OperationService:
    registry = OperationRegistry(name_prefix=settings.gateway_name_prefix)
    registry.load(settings.gateway_spec_dir)
    metrics = GatewayMetrics(
        prefix=settings.gateway_metrics_prefix, enabled=settings.gateway_metrics_enabled
    )
    stats = registry.stats()
    metrics.set_registry(
        stats["total_operations"],
        stats["documents_loaded"],
        stats["documents_failed"],
        registry.load_duration,
    )

    pool = ConnectionPool(
        max_connections=settings.gateway_pool_max_connections,
        max_keepalive_connections=settings.gateway_pool_max_keepalive,
        keepalive_expiry=settings.gateway_pool_keepalive_expiry_seconds,
        timeout=settings.gateway_request_timeout_seconds,
        verify=settings.gateway_verify_ssl,
        warn_utilization=settings.gateway_pool_warn_utilization,
    )
    transport = HttpxTransport(
        settings.gateway_base_url,
        pool,
        CredentialInjector(
            auth_type=settings.gateway_auth_type,
            name=settings.gateway_auth_name,
            location=settings.gateway_auth_in,
            value=settings.gateway_auth_value,
        ),
    )
    executor = UniversalExecutor(
        transport,
        retry_policy=RetryPolicy(
            max_attempts=settings.gateway_retry_max_attempts,
            base_delay=settings.gateway_retry_base_delay_seconds,
            max_delay=settings.gateway_retry_max_delay_seconds,
            metrics=metrics,
        ),
        rate_limiter=TokenBucket(
            capacity=settings.gateway_rate_limit_capacity,
            refill_rate=settings.gateway_rate_limit_refill_per_second,
        ),
        breakers=CircuitBreakerManager(
            BreakerConfig(
                failure_threshold=settings.gateway_breaker_failure_threshold,
                success_threshold=settings.gateway_breaker_success_threshold,
                open_timeout=settings.gateway_breaker_open_timeout_seconds,
                window=settings.gateway_breaker_window_seconds,
                half_open_max_calls=settings.gateway_breaker_half_open_max_calls,
            ),
            is_failure=counts_against_dependency,
        ),
        cache=ResponseCache(
            max_entries=settings.gateway_cache_max_entries,
            default_ttl=settings.gateway_cache_ttl_seconds,
            enabled=settings.gateway_cache_enabled,
        ),
        header_allowlist=settings.header_allowlist(),
        metrics=metrics,
    )
    return OperationService(
        registry,
        executor,
        max_concurrency=settings.gateway_max_concurrency,
        pool=pool,
        shutdown_timeout=settings.gateway_shutdown_timeout_seconds,
    )


def build_server(settings: Settings) -> tuple[FastMCP, object | None, OperationService]:
    service = build_service(settings)
    prefix = settings.gateway_name_prefix

    mcp = FastMCP(settings.service_name, instructions=_instructions())
    app = _get_http_app(mcp, settings)
    _attach_auth(app, settings)
    _attach_healthcheck(app, service)
    _attach_metrics(app, service)

    _register_builtin_tools(mcp, service, prefix, settings.gateway_default_max_pages)

    if settings.gateway_register_operation_tools:
        allowlist = settings.tool_allowlist()
        for operation in service.registry.all():
            if allowlist and operation.name not in allowlist:
                continue
            mcp.tool(name=operation.name, description=_describe(operation))(
                _operation_handler(service, operation)
            )
            logger.info("Registered tool: %s", operation.name)

    return mcp, app, service


def _register_builtin_tools(
    mcp: FastMCP, service: OperationService, prefix: str, default_max_pages: int
) -> None:
    async def list_operations(
        namespace: Optional[str] = None,
        method: Optional[str] = None,
        query: Optional[str] = None,
        paginatable: Optional[bool] = None,
        tags: Optional[List[str]] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        return service.list_operations(namespace, method, query, paginatable, tags, limit)

    async def registry_stats() -> Dict[str, Any]:
        return service.stats()

    async def execute_operation(
        operation: str,
        path_params: Optional[Dict[str, Any]] = None,
        query_params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        paginate: bool = False,
        max_pages: int = default_max_pages,
    ) -> Dict[str, Any]:
        return await service.execute(
            operation,
            {
                "path_params": path_params or {},
                "query_params": query_params or {},
                "headers": headers or {},
                "body": body,
                "paginate": paginate,
                "max_pages": max_pages,
            },
        )

    mcp.tool(name=f"{prefix}_list_operations", description="Search registered API operations")(
        list_operations
    )
    mcp.tool(name=f"{prefix}_registry_stats", description="Registry, cache and breaker statistics")(
        registry_stats
    )
    mcp.tool(name=f"{prefix}_execute_operation", description="Execute a registered API operation")(
        execute_operation
    )


def _operation_handler(
    service: OperationService, operation: OperationEntry
) -> Callable[[Any], Awaitable[Dict[str, Any]]]:
    input_model = build_input_model(operation)

    async def handler(payload: input_model) -> Dict[str, Any]:  # type: ignore[valid-type]
        return await service.execute_operation(
            operation.name, payload.model_dump(by_alias=True, exclude_none=True)
        )

    handler.__name__ = operation.name
    return handler


def _describe(operation: OperationEntry) -> str:
    summary = operation.summary or operation.operation_id
    return f"{operation.method} {operation.full_path}: {summary}"


def _attach_auth(app, settings: Settings) -> None:  # type: ignore[no-untyped-def]
    if not app:
        logger.warning("FastMCP app not available; auth middleware disabled")
        return

    @app.middleware("http")
    async def auth_middleware(request, call_next):  # type: ignore[no-untyped-def]
        if request.method == "OPTIONS":
            return await call_next(request)
        if request.url.path.endswith(("/health", "/metrics")):
            return await call_next(request)

        if not settings.gateway_auth_token:
            request.state.auth = {"type": "anonymous"}
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        token = auth_header.replace("Bearer", "").strip()
        if token == settings.gateway_auth_token:
            request.state.auth = {"type": "service"}
            return await call_next(request)

        logger.warning("Rejected request to %s with invalid token", request.url.path)
        return JSONResponse({"error": "Unauthorized"}, status_code=401)


def _attach_healthcheck(app, service: OperationService) -> None:  # type: ignore[no-untyped-def]
    if not app:
        return

    async def healthcheck(_request):  # type: ignore[no-untyped-def]
        health = service.health()
        status_code = 200 if health["status"] == "ok" else 503
        return JSONResponse(health, status_code=status_code)

    app.add_route("/health", healthcheck, methods=["GET"])


def _attach_metrics(app, service: OperationService) -> None:  # type: ignore[no-untyped-def]
    if not app or not service.metrics.enabled:
        return

    async def metrics(_request):  # type: ignore[no-untyped-def]
        return Response(service.metrics.render(), media_type=service.metrics.content_type)

    app.add_route("/metrics", metrics, methods=["GET"])


def _instructions() -> str:
    return (
        "Operation Gateway. "
        "Exposes every operation from the loaded API descriptions as a searchable, executable tool."
    )


def _get_http_app(mcp: FastMCP, settings: Settings):  # type: ignore[no-untyped-def]
    transport = settings.gateway_transport.lower()
    if transport in {"http"}:
        app = mcp.http_app(transport="http", stateless_http=True, json_response=True)
        _attach_cors(app)
        return app
    if transport in {"streamable-http", "streamablehttp"}:
        app = mcp.http_app(
            transport="streamable-http", stateless_http=True, json_response=True
        )
        _attach_cors(app)
        return app
    if transport in {"sse"}:
        app = mcp.http_app(transport="sse")
        _attach_cors(app)
        return app
    return None


def _attach_cors(app) -> None:  # type: ignore[no-untyped-def]
    if not app:
        return
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
