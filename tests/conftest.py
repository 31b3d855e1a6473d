"""Shared fixtures for the Operation Gateway test suite."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import yaml

from operation_gateway.models import TransportResponse


THINGS_DOCUMENT: Dict[str, Any] = {
    "openapi": "3.0.3",
    "info": {"title": "Things", "version": "1.0"},
    "servers": [{"url": "https://api.example.com/{version}", "variables": {"version": {"default": "v1"}}}],
    "paths": {
        "/things": {
            "get": {
                "operationId": "listThings",
                "summary": "List things",
                "tags": ["things"],
                "parameters": [
                    {"name": "cursor", "in": "query", "schema": {"type": "string"}},
                    {"name": "limit", "in": "query", "schema": {"type": "integer"}},
                ],
                "responses": {"200": {"description": "A page of things"}},
            },
            "post": {
                "operationId": "createThing",
                "summary": "Create a thing",
                "requestBody": {
                    "required": True,
                    "content": {"application/json": {"schema": {"$ref": "common.yaml#/Thing"}}},
                },
                "responses": {"201": {"description": "Created"}},
            },
        },
        "/things/{id}": {
            "parameters": [
                {"name": "id", "in": "path", "required": True, "schema": {"type": "string"}}
            ],
            "get": {
                "operationId": "getThing",
                "summary": "Fetch one thing",
                "tags": ["things", "detail"],
                "parameters": [
                    {
                        "name": "X-Api-Version",
                        "in": "header",
                        "required": True,
                        "schema": {"type": "string", "default": "2024-01-01"},
                    },
                    {"name": "session", "in": "cookie", "schema": {"type": "string"}},
                ],
                "responses": {"200": {"description": "The thing"}, "404": {"description": "Missing"}},
            },
            "patch": {
                "summary": "Rename a thing",
                "requestBody": {
                    "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Node"}}}
                },
                "responses": {"200": {"description": "Renamed"}},
            },
        },
    },
    "components": {
        "schemas": {
            "Node": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "children": {"type": "array", "items": {"$ref": "#/components/schemas/Node"}},
                },
            }
        }
    },
}

COMMON_FRAGMENT: Dict[str, Any] = {
    "Thing": {
        "type": "object",
        "description": "A thing",
        "properties": {"name": {"type": "string"}, "size": {"type": "integer"}},
    }
}

WIDGETS_SWAGGER: Dict[str, Any] = {
    "swagger": "2.0",
    "info": {"title": "Widgets", "version": "2.1"},
    "basePath": "/api",
    "paths": {
        "/widgets": {
            "get": {
                "parameters": [
                    {"name": "page", "in": "query", "type": "integer"},
                    {"name": "pageSize", "in": "query", "type": "integer"},
                ],
                "responses": {"200": {"description": "ok"}},
            },
            "put": {
                "operationId": "replaceWidgets",
                "parameters": [
                    {"name": "payload", "in": "body", "required": True, "schema": {"type": "array", "items": {"type": "string"}}}
                ],
                "responses": {"200": {"description": "ok"}},
            },
        }
    },
}


def standalone_things() -> Dict[str, Any]:
    """The things document with its cross-file reference inlined."""
    document = copy.deepcopy(THINGS_DOCUMENT)
    document["servers"] = []
    content = document["paths"]["/things"]["post"]["requestBody"]["content"]
    content["application/json"]["schema"] = copy.deepcopy(COMMON_FRAGMENT["Thing"])
    return document


def write_document(root: Path, relative: str, document: Any) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix in {".yaml", ".yml"}:
        path.write_text(yaml.safe_dump(document, sort_keys=False), encoding="utf-8")
    elif isinstance(document, str):
        path.write_text(document, encoding="utf-8")
    else:
        path.write_text(json.dumps(document), encoding="utf-8")
    return path


@pytest.fixture
def specs_dir(tmp_path: Path) -> Path:
    root = tmp_path / "specs"
    write_document(root, "things/openapi.yaml", THINGS_DOCUMENT)
    write_document(root, "things/common.yaml", COMMON_FRAGMENT)
    write_document(root, "widgets.json", WIDGETS_SWAGGER)
    return root


class RecordingTransport:
    """Transport stub returning queued responses (or raising queued errors).

    Has no ``modify`` so PATCH operations cannot be dispatched through it.
    """

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    async def retrieve(self, path, body=None, query=None, headers=None):
        return self._next("GET", path, body, query, headers)

    async def create(self, path, body=None, query=None, headers=None):
        return self._next("POST", path, body, query, headers)

    async def replace(self, path, body=None, query=None, headers=None):
        return self._next("PUT", path, body, query, headers)

    async def remove(self, path, body=None, query=None, headers=None):
        return self._next("DELETE", path, body, query, headers)

    def _next(self, method, path, body, query, headers):
        self.calls.append(
            {"method": method, "path": path, "body": body, "query": query, "headers": headers}
        )
        if not self.responses:
            return TransportResponse(status=200, headers={}, body={})
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport_factory() -> Callable[..., RecordingTransport]:
    return RecordingTransport
