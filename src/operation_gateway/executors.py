"""Execution layer: turns an operation plus caller values into a REST call."""

from __future__ import annotations

import copy
import dataclasses
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, Union
from urllib.parse import quote

from pydantic import ValidationError

from .cache import ResponseCache, make_key
from .circuit_breaker import CircuitBreakerManager
from .errors import (
    CircuitOpenFailure,
    ExecutionFailure,
    MissingPathParameter,
    RemoteRejection,
    TransportFailure,
    UnsupportedMethod,
    ValidationFailure,
    find_request_id,
)
from .logging import redact_payload
from .metrics import GatewayMetrics
from .models import ExecutionRequest, ExecutionResult, OperationEntry, RateLimitInfo, TransportResponse
from .pagination import advance_cursor, detect_pagination_param, extract_items, extract_page_meta
from .rate_limiter import TokenBucket
from .retry import RetryPolicy
from .transport import TransportAdapter

logger = logging.getLogger(__name__)

DEFAULT_HEADER_ALLOWLIST = frozenset(
    {"accept", "content-type", "if-match", "if-none-match", "prefer", "x-request-id"}
)
METHOD_DISPATCH = {
    "GET": "retrieve",
    "POST": "create",
    "PUT": "replace",
    "DELETE": "remove",
    "PATCH": "modify",
}
PLACEHOLDER = re.compile(r"\{([^}]+)\}")
RATE_LIMIT_FIELDS = {
    "limit": "limit",
    "remaining": "remaining",
    "reset": "reset",
    "next": "reset",
}


def counts_against_dependency(exc: BaseException) -> bool:
    """Only transport trouble, throttling and server errors open a breaker."""
    if isinstance(exc, RemoteRejection):
        return exc.retryable
    return isinstance(exc, TransportFailure)


def parse_rate_limit(headers: Mapping[str, str]) -> Optional[RateLimitInfo]:
    found: Dict[str, str] = {}
    for key, value in headers.items():
        lowered = str(key).lower()
        if "ratelimit" not in lowered and "rate-limit" not in lowered:
            continue
        suffix = lowered.rsplit("-", 1)[-1]
        field = RATE_LIMIT_FIELDS.get(suffix)
        if field and field not in found:
            found[field] = str(value).strip()
    if not found:
        return None

    def _as_int(raw: Optional[str]) -> Optional[int]:
        try:
            return int(raw) if raw is not None else None
        except ValueError:
            return None

    info = RateLimitInfo(
        limit=_as_int(found.get("limit")),
        remaining=_as_int(found.get("remaining")),
        reset=found.get("reset") or None,
    )
    if info.limit is None and info.remaining is None and info.reset is None:
        return None
    return info


def _missing(value: Any) -> bool:
    return value is None or value == ""


def _query_value(value: Any) -> Union[str, List[str], None]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set)):
        return [_query_value(item) for item in value if item is not None]
    return str(value)


class UniversalExecutor:
    def __init__(
        self,
        transport: TransportAdapter,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[TokenBucket] = None,
        breakers: Optional[CircuitBreakerManager] = None,
        cache: Optional[ResponseCache] = None,
        header_allowlist: Optional[Iterable[str]] = None,
        injected_headers: Optional[Mapping[str, Mapping[str, str]]] = None,
        pagination_overrides: Optional[Mapping[str, Optional[str]]] = None,
        metrics: Optional[GatewayMetrics] = None,
    ) -> None:
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.rate_limiter = rate_limiter
        self.breakers = breakers or CircuitBreakerManager(is_failure=counts_against_dependency)
        self.cache = cache
        self.header_allowlist: Set[str] = set(DEFAULT_HEADER_ALLOWLIST) | {
            header.lower() for header in header_allowlist or ()
        }
        self.injected_headers = {
            namespace: dict(headers) for namespace, headers in (injected_headers or {}).items()
        }
        self.pagination_overrides = dict(pagination_overrides or {})
        self.metrics = metrics or GatewayMetrics(enabled=False)

    async def execute(
        self,
        operation: OperationEntry,
        request: Union[ExecutionRequest, Mapping[str, Any], None] = None,
    ) -> ExecutionResult:
        request = self._coerce_request(request)
        headers = self._build_headers(operation, request.headers)
        self._validate(operation, request, headers)
        path = self._build_path(operation, request.path_params)
        query = self._build_query(request.query_params)
        call = self._dispatcher(operation)

        cache_key = None
        if self.cache is not None and operation.method == "GET":
            cache_key = make_key(
                operation.name,
                {
                    "path": request.path_params,
                    "query": request.query_params,
                    "headers": headers,
                    "body": request.body,
                    "paginate": request.paginate,
                    "max_pages": request.max_pages,
                },
            )
            cached = self.cache.get(cache_key)
            self.metrics.record_cache_access(cached is not None)
            if cached is not None:
                logger.debug("Cache hit for %s", operation.name)
                return dataclasses.replace(copy.deepcopy(cached), from_cache=True)

        logger.info(
            "Executing %s: %s %s query=%s headers=%s",
            operation.name,
            operation.method,
            path,
            redact_payload(query),
            redact_payload(headers),
        )

        pagination_param = None
        if request.paginate:
            pagination_param = detect_pagination_param(operation, self.pagination_overrides)
            if pagination_param is None:
                logger.warning(
                    "Pagination requested for %s but no pagination parameter found; making a single call",
                    operation.name,
                )

        if pagination_param is None:
            response = await self._call(operation, call, path, request.body, query, headers)
            result = self._to_result(response)
        else:
            result = await self._paginate(
                operation, call, path, request, query, headers, pagination_param
            )

        if cache_key is not None and ResponseCache.should_cache(operation.method, result.status):
            self.cache.set(cache_key, copy.deepcopy(result))
        return result

    def _coerce_request(
        self, request: Union[ExecutionRequest, Mapping[str, Any], None]
    ) -> ExecutionRequest:
        if isinstance(request, ExecutionRequest):
            return request
        try:
            return ExecutionRequest.model_validate(dict(request or {}))
        except ValidationError as exc:
            raise ValidationFailure(f"Invalid execution request: {exc}") from exc

    def _build_headers(
        self, operation: OperationEntry, caller_headers: Mapping[str, str]
    ) -> Dict[str, str]:
        merged: Dict[str, str] = {}
        names: Dict[str, str] = {}

        def put(name: str, value: Any) -> None:
            lowered = name.lower()
            if lowered in names:
                del merged[names[lowered]]
            names[lowered] = name
            merged[name] = str(value)

        for parameter in operation.header_parameters:
            if not parameter.required:
                continue
            if parameter.default is not None:
                put(parameter.name, parameter.default)
            elif parameter.schema.enum and len(parameter.schema.enum) == 1:
                put(parameter.name, parameter.schema.enum[0])
        for name, value in self.injected_headers.get(operation.namespace, {}).items():
            put(name, value)

        for name, value in caller_headers.items():
            if name.lower() not in self.header_allowlist:
                logger.warning(
                    "Rejected non-allowlisted header %s for %s", name, operation.name
                )
                continue
            put(name, value)
        return merged

    def _validate(
        self,
        operation: OperationEntry,
        request: ExecutionRequest,
        headers: Mapping[str, str],
    ) -> None:
        missing: List[str] = []
        for parameter in operation.path_parameters:
            if _missing(request.path_params.get(parameter.name)):
                missing.append(f"path parameter {parameter.name}")
        for parameter in operation.query_parameters:
            if parameter.required and _missing(request.query_params.get(parameter.name)):
                missing.append(f"query parameter {parameter.name}")
        lowered = {name.lower(): value for name, value in headers.items()}
        for parameter in operation.header_parameters:
            if parameter.required and _missing(lowered.get(parameter.name.lower())):
                missing.append(f"header {parameter.name}")
        if operation.body_required and request.body is None:
            missing.append("request body")
        if missing:
            raise ValidationFailure(
                f"Missing required values for {operation.name}: {', '.join(missing)}"
            )

    def _build_path(self, operation: OperationEntry, path_params: Mapping[str, Any]) -> str:
        def substitute(match: re.Match) -> str:
            value = path_params.get(match.group(1))
            if _missing(value):
                return match.group(0)
            return quote(str(value), safe="")

        path = PLACEHOLDER.sub(substitute, operation.full_path)
        leftover = PLACEHOLDER.search(path)
        if leftover:
            raise MissingPathParameter(leftover.group(1))
        return path

    def _build_query(self, query_params: Mapping[str, Any]) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        for name, value in query_params.items():
            converted = _query_value(value)
            if converted is not None:
                query[name] = converted
        return query

    def _dispatcher(self, operation: OperationEntry) -> Callable[..., Awaitable[TransportResponse]]:
        attribute = METHOD_DISPATCH.get(operation.method)
        call = getattr(self.transport, attribute, None) if attribute else None
        if call is None:
            raise UnsupportedMethod(operation.method)
        return call

    async def _call(
        self,
        operation: OperationEntry,
        call: Callable[..., Awaitable[TransportResponse]],
        path: str,
        body: Any,
        query: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> TransportResponse:
        breaker = self.breakers.get(operation.namespace)
        description = f"{operation.name} ({operation.method} {path})"

        async def attempt() -> TransportResponse:
            started = time.perf_counter()
            status = "error"
            try:
                response = await call(path, body=body, query=dict(query), headers=dict(headers))
                status = str(response.status)
                return response
            except ExecutionFailure as exc:
                if exc.status is not None:
                    status = str(exc.status)
                raise
            except (TimeoutError, ConnectionError) as exc:
                raise TransportFailure(f"{operation.method} {path} failed: {exc}") from exc
            finally:
                self.metrics.record_api_request(
                    operation.namespace, operation.method, status, time.perf_counter() - started
                )

        try:
            # An open circuit rejects before an admission token is spent.
            breaker.check()
            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()
            return await breaker.call(lambda: self.retry_policy.run(attempt, description))
        except CircuitOpenFailure:
            self.metrics.record_circuit_rejection(operation.namespace)
            raise

    def _to_result(self, response: TransportResponse) -> ExecutionResult:
        return ExecutionResult(
            status=response.status,
            headers=dict(response.headers),
            body=response.body,
            request_id=find_request_id(response.headers),
            rate_limit=parse_rate_limit(response.headers),
        )

    async def _paginate(
        self,
        operation: OperationEntry,
        call: Callable[..., Awaitable[TransportResponse]],
        path: str,
        request: ExecutionRequest,
        query: Dict[str, Any],
        headers: Mapping[str, str],
        param: str,
    ) -> ExecutionResult:
        items: List[Any] = []
        cursor = query.get(param)
        total_items = None
        pages = 0
        stalled = False
        response: Optional[TransportResponse] = None

        while pages < request.max_pages:
            page_query = dict(query)
            if cursor is not None:
                page_query[param] = _query_value(cursor)
            response = await self._call(operation, call, path, request.body, page_query, headers)
            pages += 1

            page_items = extract_items(response.body)
            items.extend(page_items)
            meta = extract_page_meta(response.body)
            if meta.total_items is not None:
                total_items = meta.total_items
            if not meta.has_more:
                break
            if meta.next_cursor is not None:
                cursor = meta.next_cursor
            else:
                advanced = advance_cursor(param, cursor, len(page_items))
                if advanced == cursor and not stalled:
                    stalled = True
                    logger.warning(
                        "%s signalled more pages without a usable cursor; repeating %s=%s",
                        operation.name,
                        param,
                        cursor,
                    )
                cursor = advanced
        else:
            logger.info("Stopped paginating %s at the %s page cap", operation.name, request.max_pages)

        logger.debug("Fetched %s pages (%s items) for %s", pages, len(items), operation.name)
        self.metrics.record_pagination(operation.name, pages, len(items))
        return ExecutionResult(
            status=response.status,
            headers=dict(response.headers),
            body=items,
            request_id=find_request_id(response.headers),
            paginated=True,
            page_count=pages,
            total_items=total_items,
            rate_limit=parse_rate_limit(response.headers),
        )
