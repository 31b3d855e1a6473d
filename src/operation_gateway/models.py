"""Internal models for operations, requests and results."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .schema_model import SchemaNode


PAGE_CAP_DEFAULT = 10
PAGE_CAP_CEILING = 100

PATH = "path"
QUERY = "query"
HEADER = "header"


@dataclass(frozen=True)
class ParameterDescriptor:
    name: str
    location: str
    required: bool
    schema: SchemaNode
    description: Optional[str] = None
    default: Any = None


@dataclass(frozen=True)
class OperationEntry:
    name: str
    operation_id: str
    method: str
    path: str
    namespace: str
    version: str = "v1"
    source: str = ""
    summary: str = ""
    description: str = ""
    path_parameters: Tuple[ParameterDescriptor, ...] = ()
    query_parameters: Tuple[ParameterDescriptor, ...] = ()
    header_parameters: Tuple[ParameterDescriptor, ...] = ()
    body_schema: Optional[SchemaNode] = None
    body_required: bool = False
    body_content_type: Optional[str] = None
    responses: Tuple[Tuple[str, str], ...] = ()
    supports_pagination: bool = False
    base_path: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()

    @property
    def parameters(self) -> Tuple[ParameterDescriptor, ...]:
        return self.path_parameters + self.query_parameters + self.header_parameters

    @property
    def has_body(self) -> bool:
        return self.body_schema is not None

    @property
    def full_path(self) -> str:
        prefix = "/".join(self.base_path)
        return f"/{prefix}{self.path}" if prefix else self.path


@dataclass(frozen=True)
class RateLimitInfo:
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[str] = None


@dataclass(frozen=True)
class TransportResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True)
class ExecutionResult:
    status: int
    headers: Dict[str, str]
    body: Any
    request_id: Optional[str] = None
    paginated: bool = False
    page_count: Optional[int] = None
    total_items: Optional[int] = None
    rate_limit: Optional[RateLimitInfo] = None
    from_cache: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


class ExecutionRequest(BaseModel):
    """Caller-supplied values for one execution; accepts camelCase keys too."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    path_params: Dict[str, Any] = Field(default_factory=dict, alias="pathParams")
    query_params: Dict[str, Any] = Field(default_factory=dict, alias="queryParams")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    paginate: bool = False
    max_pages: int = Field(default=PAGE_CAP_DEFAULT, alias="maxPages")

    @field_validator("max_pages")
    @classmethod
    def _clamp_max_pages(cls, value: int) -> int:
        return max(1, min(int(value), PAGE_CAP_CEILING))

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {str(key): str(item) for key, item in value.items() if item is not None}
        return value


@dataclass(frozen=True)
class SearchFilters:
    namespace: Optional[str] = None
    method: Optional[str] = None
    query: Optional[str] = None
    paginatable: Optional[bool] = None
    tags: Optional[List[str]] = None
    limit: Optional[int] = None
