"""Tests for document discovery and reference resolution."""

from __future__ import annotations

import logging

import pytest

from conftest import write_document
from operation_gateway.errors import LoadFailure
from operation_gateway.schema import SchemaResolver, find_document_files, is_api_document


def test_is_api_document() -> None:
    assert is_api_document({"openapi": "3.1.0", "paths": {}})
    assert is_api_document({"swagger": "2.0", "paths": {}})
    assert not is_api_document({"openapi": "3.1.0"})
    assert not is_api_document({"Thing": {"type": "object"}})
    assert not is_api_document(["openapi"])


def test_find_document_files_is_sorted_and_filtered(tmp_path) -> None:
    for name in ("b/api.yaml", "a/api.json", "a/notes.txt", "c.yml"):
        write_document(tmp_path, name, {})

    found = [path.relative_to(tmp_path).as_posix() for path in find_document_files(tmp_path)]

    assert found == ["a/api.json", "b/api.yaml", "c.yml"]


def test_local_and_escaped_pointers(tmp_path) -> None:
    document = {
        "openapi": "3.0.0",
        "paths": {
            "/a": {"$ref": "#/x-shared/a~1b"},
            "/b": {"$ref": "#/x-shared/tilde~0key"},
            "/c": {"$ref": "#/x-list/1"},
        },
        "x-shared": {"a/b": {"value": 1}, "tilde~key": {"value": 2}},
        "x-list": [{"value": 3}, {"value": 4}],
    }
    path = write_document(tmp_path, "api.json", document)

    resolved = SchemaResolver().resolve_document(path)

    assert resolved["paths"]["/a"] == {"value": 1}
    assert resolved["paths"]["/b"] == {"value": 2}
    assert resolved["paths"]["/c"] == {"value": 4}


def test_sibling_keys_override_target(tmp_path) -> None:
    document = {
        "openapi": "3.0.0",
        "paths": {},
        "components": {
            "schemas": {
                "Base": {"type": "string", "description": "base"},
                "Derived": {"$ref": "#/components/schemas/Base", "description": "derived"},
            }
        },
    }
    path = write_document(tmp_path, "api.json", document)

    resolved = SchemaResolver().resolve_document(path)

    assert resolved["components"]["schemas"]["Derived"] == {"type": "string", "description": "derived"}


def test_external_file_references(tmp_path) -> None:
    write_document(tmp_path, "shared/models.yaml", {"Pet": {"type": "object", "properties": {"owner": {"$ref": "people.json"}}}})
    write_document(tmp_path, "shared/people.json", {"type": "string"})
    path = write_document(
        tmp_path,
        "api.yaml",
        {"openapi": "3.0.0", "paths": {}, "x-pet": {"$ref": "shared/models.yaml#/Pet"}},
    )

    resolved = SchemaResolver().resolve_document(path)

    assert resolved["x-pet"]["properties"]["owner"] == {"type": "string"}


def test_cycles_are_replaced_with_placeholder(tmp_path, caplog) -> None:
    caplog.set_level(logging.WARNING)
    document = {
        "openapi": "3.0.0",
        "paths": {},
        "components": {
            "schemas": {
                "A": {"properties": {"b": {"$ref": "#/components/schemas/B"}}},
                "B": {"properties": {"a": {"$ref": "#/components/schemas/A"}}},
            }
        },
    }
    path = write_document(tmp_path, "api.json", document)

    resolved = SchemaResolver().resolve_document(path)

    a = resolved["components"]["schemas"]["A"]
    nested_a = a["properties"]["b"]["properties"]["a"]
    assert nested_a["properties"]["b"] == {"x-circular-ref": "#/components/schemas/B"}
    assert "Circular reference" in caplog.text


def test_remote_references_are_not_fetched(tmp_path, caplog) -> None:
    path = write_document(
        tmp_path,
        "api.json",
        {"openapi": "3.0.0", "paths": {}, "x-remote": {"$ref": "https://example.com/schema.json"}},
    )

    resolved = SchemaResolver().resolve_document(path)

    assert resolved["x-remote"] == {"x-unresolved-ref": "https://example.com/schema.json"}
    assert "Remote reference not fetched" in caplog.text


def test_unresolvable_pointer_raises_load_failure(tmp_path) -> None:
    path = write_document(
        tmp_path, "api.json", {"openapi": "3.0.0", "paths": {}, "x": {"$ref": "#/nope"}}
    )

    with pytest.raises(LoadFailure, match="Unresolvable reference"):
        SchemaResolver().resolve_document(path)


def test_parse_errors_raise_load_failure(tmp_path) -> None:
    bad_yaml = tmp_path / "api.yaml"
    bad_yaml.write_text("paths: [unclosed", encoding="utf-8")
    scalar = write_document(tmp_path, "scalar.json", "42")

    with pytest.raises(LoadFailure):
        SchemaResolver().load_file(bad_yaml)
    with pytest.raises(LoadFailure, match="not a mapping"):
        SchemaResolver().resolve_document(scalar)
