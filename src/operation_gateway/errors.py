"""Failure types raised by the registry, executor and reliability layer."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Mapping, Optional


_REQUEST_ID_HEADERS = ("x-request-id", "x-correlation-id", "x-trace-id")


def find_request_id(headers: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Return the first correlation id header present, case-insensitively."""
    if not headers:
        return None
    lowered = {str(key).lower(): value for key, value in headers.items()}
    for name in _REQUEST_ID_HEADERS:
        value = lowered.get(name)
        if value:
            return str(value)
    return None


class ExecutionFailure(Exception):
    """Base class for every failure surfaced by ``UniversalExecutor.execute``."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        request_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body
        self.headers: Dict[str, str] = dict(headers or {})
        self.request_id = request_id or find_request_id(self.headers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status": self.status,
            "body": self.body,
            "request_id": self.request_id,
        }


class ValidationFailure(ExecutionFailure):
    """A required value is missing or the request cannot be built."""


class MissingPathParameter(ValidationFailure):
    def __init__(self, name: str) -> None:
        super().__init__(f"Path parameter not provided: {name}")
        self.name = name


class UnsupportedMethod(ValidationFailure):
    def __init__(self, method: str) -> None:
        super().__init__(f"Unsupported HTTP method: {method}")
        self.method = method


class CircuitOpenFailure(ExecutionFailure):
    def __init__(self, key: str, retry_at: Optional[float]) -> None:
        when = (
            datetime.fromtimestamp(retry_at, tz=timezone.utc).isoformat()
            if retry_at is not None
            else "unknown"
        )
        super().__init__(f"Circuit breaker is OPEN for {key}. Next attempt at {when}")
        self.key = key
        self.retry_at = retry_at


class TransportFailure(ExecutionFailure):
    """Connectivity problem or timeout before a response was received."""


class RemoteRejection(ExecutionFailure):
    """The remote dependency answered with an error status."""

    def __init__(
        self,
        status: int,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        message: Optional[str] = None,
    ) -> None:
        super().__init__(
            message or f"HTTP {status}",
            status=status,
            body=body,
            headers=headers,
        )

    @property
    def retryable(self) -> bool:
        return self.status == 429 or (self.status or 0) >= 500

    @property
    def retry_after(self) -> Optional[float]:
        """Seconds requested by a ``Retry-After`` header, if any."""
        raw = None
        for key, value in self.headers.items():
            if key.lower() == "retry-after":
                raw = value
                break
        if raw is None:
            return None
        try:
            return max(float(raw), 0.0)
        except (TypeError, ValueError):
            pass
        try:
            when = parsedate_to_datetime(str(raw))
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class LoadFailure(Exception):
    """An API description document or source directory could not be loaded."""

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.source = source
