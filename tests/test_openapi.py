"""Tests for operation naming and generated input models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from operation_gateway.openapi import (
    OperationExtractor,
    build_input_model,
    describe_parameters,
    fallback_operation_id,
    normalize_namespace,
    operation_name,
)


DOCUMENT = {
    "openapi": "3.0.0",
    "info": {"title": "Demo", "version": "1"},
    "servers": [{"url": "/base"}],
    "paths": {
        "/orgs/{org}/members": {
            "get": {
                "operationId": "list-members",
                "parameters": [
                    {"name": "page[size]", "in": "query", "schema": {"type": "integer"}},
                    {"name": "page", "in": "query", "schema": {"type": "integer"}},
                    {"name": "role", "in": "query", "required": True, "schema": {"type": "string", "enum": ["admin", "member"]}},
                ],
            },
            "post": {
                "operationId": "addMember",
                "parameters": [
                    {"name": "org", "in": "path", "required": True, "schema": {"type": "string"}, "description": "Organisation"}
                ],
                "requestBody": {
                    "content": {
                        "text/plain": {"schema": {"type": "string"}},
                        "application/json": {"schema": {"type": "object"}},
                    }
                },
            },
        }
    },
}


def _operations():
    return {
        entry.operation_id: entry
        for entry in OperationExtractor("api").extract_operations(DOCUMENT, "demo", "1", "demo.json")
    }


def test_fallback_operation_id() -> None:
    assert fallback_operation_id("GET", "/things/{id}") == "get_things_id"
    assert fallback_operation_id("post", "/") == "post_root"
    assert fallback_operation_id("get", "/a-b/c.d") == "get_a_b_c_d"


def test_operation_name_and_namespace() -> None:
    assert operation_name("api", "demo", "list-members") == "api_demo_list_members"
    assert len(operation_name("api", "demo", "x" * 200)) == 64
    assert normalize_namespace("My API!") == "my_api"
    assert normalize_namespace("---") == "default"


def test_missing_path_descriptor_is_synthesized() -> None:
    listing = _operations()["list-members"]

    (org,) = listing.path_parameters
    assert org.name == "org"
    assert org.required is True
    assert listing.full_path == "/base/orgs/{org}/members"


def test_json_content_is_preferred() -> None:
    add = _operations()["addMember"]

    assert add.body_content_type == "application/json"
    assert add.body_required is False
    assert add.path_parameters[0].description == "Organisation"


def test_input_model_uses_wire_aliases() -> None:
    model = build_input_model(_operations()["list-members"])

    payload = model(org="acme", role="admin", **{"page[size]": 50}, paginate=True)

    dumped = payload.model_dump(by_alias=True, exclude_none=True)
    assert dumped["page[size]"] == 50
    assert dumped["org"] == "acme"
    assert dumped["paginate"] is True
    assert dumped["max_pages"] == 10
    assert "page" not in dumped


def test_input_model_enforces_required_fields_and_page_cap() -> None:
    model = build_input_model(_operations()["list-members"])

    with pytest.raises(ValidationError):
        model(org="acme")
    with pytest.raises(ValidationError):
        model(org="acme", role="admin", max_pages=101)


def test_describe_parameters() -> None:
    described = describe_parameters(_operations()["list-members"])

    role = next(item for item in described if item["name"] == "role")
    assert role == {
        "name": "role",
        "in": "query",
        "required": True,
        "schema": {"type": "string", "enum": ["admin", "member"]},
    }
