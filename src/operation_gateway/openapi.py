"""OpenAPI operation parser and input model builder."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, create_model

from .models import (
    HEADER,
    PAGE_CAP_CEILING,
    PAGE_CAP_DEFAULT,
    PATH,
    QUERY,
    OperationEntry,
    ParameterDescriptor,
)
from .pagination import is_paginatable
from .schema_model import STRING, build_schema_node, python_type, to_json_schema


logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")
MAX_NAME_LENGTH = 64
PLACEHOLDER = re.compile(r"\{([^}]+)\}")


def sanitize_name(name: str) -> str:
    return "".join(ch if ch.isalnum() else "_" for ch in name)


def fallback_operation_id(method: str, path: str) -> str:
    sanitized = path.strip("/").replace("/", "_").replace("{", "").replace("}", "")
    return f"{method.lower()}_{sanitize_name(sanitized) or 'root'}"


def operation_name(prefix: str, namespace: str, operation_id: str) -> str:
    base = f"{sanitize_name(prefix)}_{namespace}_{sanitize_name(operation_id)}"
    return base[:MAX_NAME_LENGTH]


def normalize_namespace(raw: str) -> str:
    return sanitize_name(raw.lower()).strip("_") or "default"


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else ""


class OperationExtractor:
    def __init__(self, name_prefix: str = "api") -> None:
        self.name_prefix = name_prefix

    def extract_operations(
        self,
        document: Mapping[str, Any],
        namespace: str,
        version: str,
        source: str,
    ) -> List[OperationEntry]:
        operations: List[OperationEntry] = []
        base_path = self._base_path(document)
        paths = document.get("paths") or {}
        if not isinstance(paths, Mapping):
            raise ValueError(f"paths must be a mapping, got {type(paths).__name__}")

        for path, path_item in paths.items():
            if not isinstance(path_item, Mapping):
                continue
            shared_parameters = _as_list(path_item.get("parameters"))
            for method in HTTP_METHODS:
                operation = path_item.get(method)
                if not isinstance(operation, Mapping):
                    continue
                operations.append(
                    self._build_entry(
                        str(path),
                        method,
                        operation,
                        shared_parameters,
                        namespace,
                        version,
                        source,
                        base_path,
                    )
                )

        return operations

    def _build_entry(
        self,
        path: str,
        method: str,
        operation: Mapping[str, Any],
        shared_parameters: List[Any],
        namespace: str,
        version: str,
        source: str,
        base_path: Tuple[str, ...],
    ) -> OperationEntry:
        raw_id = operation.get("operationId")
        operation_id = str(raw_id) if raw_id not in (None, "") else fallback_operation_id(method, path)
        parameters = self._merge_parameters(shared_parameters, _as_list(operation.get("parameters")))

        grouped: Dict[str, List[ParameterDescriptor]] = {PATH: [], QUERY: [], HEADER: []}
        body_raw: Optional[Mapping[str, Any]] = None
        body_required = False
        body_content_type: Optional[str] = None

        for parameter in parameters:
            location = parameter.get("in")
            if location == "body":
                body_raw = parameter.get("schema") or {}
                body_required = bool(parameter.get("required", False))
                body_content_type = "application/json"
                continue
            if location not in grouped:
                continue
            grouped[location].append(self._descriptor(parameter, location))

        declared = {param.name for param in grouped[PATH]}
        for placeholder in PLACEHOLDER.findall(path):
            if placeholder not in declared:
                logger.debug(
                    "Synthesizing path parameter %s for %s %s", placeholder, method.upper(), path
                )
                grouped[PATH].append(ParameterDescriptor(placeholder, PATH, True, STRING))
                declared.add(placeholder)

        request_body = operation.get("requestBody")
        if isinstance(request_body, Mapping):
            body_content_type, body_raw = self._extract_body_schema(request_body)
            body_required = bool(request_body.get("required", False))

        description = _as_text(operation.get("description"))
        return OperationEntry(
            name=operation_name(self.name_prefix, namespace, operation_id),
            operation_id=operation_id,
            method=method.upper(),
            path=path,
            namespace=namespace,
            version=version,
            source=source,
            summary=_as_text(operation.get("summary")) or description.split("\n", 1)[0],
            description=description,
            path_parameters=tuple(grouped[PATH]),
            query_parameters=tuple(grouped[QUERY]),
            header_parameters=tuple(grouped[HEADER]),
            body_schema=build_schema_node(body_raw) if body_raw is not None else None,
            body_required=body_required,
            body_content_type=body_content_type,
            responses=self._responses(operation.get("responses")),
            supports_pagination=is_paginatable(grouped[QUERY]),
            base_path=base_path,
            tags=tuple(str(tag) for tag in _as_list(operation.get("tags"))),
        )

    def _merge_parameters(
        self, shared: Iterable[Any], own: Iterable[Any]
    ) -> List[Mapping[str, Any]]:
        merged: Dict[Tuple[str, str], Mapping[str, Any]] = {}
        for parameter in [*shared, *own]:
            if not isinstance(parameter, Mapping) or not parameter.get("name"):
                continue
            merged[(str(parameter["name"]), str(parameter.get("in")))] = parameter
        return list(merged.values())

    def _descriptor(self, parameter: Mapping[str, Any], location: str) -> ParameterDescriptor:
        raw_schema = parameter.get("schema")
        if raw_schema is None:
            # Swagger 2 keeps type information on the parameter itself.
            raw_schema = {key: parameter[key] for key in ("type", "items", "enum", "default") if key in parameter}
        schema = build_schema_node(raw_schema)
        return ParameterDescriptor(
            name=str(parameter["name"]),
            location=location,
            required=location == PATH or bool(parameter.get("required", False)),
            schema=schema,
            description=parameter.get("description"),
            default=schema.default,
        )

    def _extract_body_schema(
        self, request_body: Mapping[str, Any]
    ) -> Tuple[Optional[str], Optional[Mapping[str, Any]]]:
        content = request_body.get("content") or {}
        if not isinstance(content, Mapping) or not content:
            return None, None
        content_type = "application/json" if "application/json" in content else next(iter(content))
        media = content.get(content_type) or {}
        schema = media.get("schema") if isinstance(media, Mapping) else None
        return str(content_type), schema if isinstance(schema, Mapping) else {}

    def _responses(self, responses: Any) -> Tuple[Tuple[str, str], ...]:
        if not isinstance(responses, Mapping):
            return ()
        return tuple(
            (str(status), str((response or {}).get("description", "")))
            for status, response in responses.items()
            if isinstance(response, Mapping) or response is None
        )

    def _base_path(self, document: Mapping[str, Any]) -> Tuple[str, ...]:
        servers = _as_list(document.get("servers"))
        raw_path = ""
        if servers and isinstance(servers[0], Mapping):
            server = servers[0]
            url = str(server.get("url") or "")
            variables = server.get("variables")
            for name, variable in (variables if isinstance(variables, Mapping) else {}).items():
                if isinstance(variable, Mapping) and "default" in variable:
                    url = url.replace(f"{{{name}}}", str(variable["default"]))
            raw_path = urlparse(url).path if "://" in url else url
        elif isinstance(document.get("basePath"), str):
            raw_path = document["basePath"]
        return tuple(segment for segment in raw_path.split("/") if segment)


def build_input_model(operation: OperationEntry) -> type[BaseModel]:
    """Flat tool-argument model for one operation, aliased to wire names."""
    fields: Dict[str, Tuple[Any, Any]] = {}

    for parameter in operation.parameters:
        field_name = sanitize_name(parameter.name)
        if not field_name or field_name in fields:
            continue
        if field_name[0].isdigit() or field_name.startswith("_"):
            field_name = f"p_{field_name}"
        annotation = python_type(parameter.schema)
        default = Field(
            ... if parameter.required and parameter.default is None else parameter.default,
            alias=parameter.name,
            description=parameter.description,
        )
        fields[field_name] = (annotation if parameter.required else Optional[annotation], default)

    if operation.has_body:
        fields["body"] = (
            Optional[python_type(operation.body_schema)],
            Field(... if operation.body_required else None, description="Request body"),
        )
    if operation.supports_pagination:
        fields["paginate"] = (bool, Field(False, description="Fetch every page"))
        fields["max_pages"] = (
            int,
            Field(
                PAGE_CAP_DEFAULT,
                ge=1,
                le=PAGE_CAP_CEILING,
                description=f"Maximum pages to fetch (default {PAGE_CAP_DEFAULT}, max {PAGE_CAP_CEILING})",
            ),
        )

    model_config = ConfigDict(extra="allow", populate_by_name=True)
    model_name = f"{sanitize_name(operation.name)}Input"
    return create_model(model_name, __config__=model_config, **fields)


def describe_parameters(operation: OperationEntry) -> List[Dict[str, Any]]:
    return [
        {
            "name": parameter.name,
            "in": parameter.location,
            "required": parameter.required,
            "schema": to_json_schema(parameter.schema),
        }
        for parameter in operation.parameters
    ]

