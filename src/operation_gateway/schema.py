"""API description loading and ``$ref`` resolution."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple
from urllib.parse import unquote

import yaml

from .errors import LoadFailure


logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = {".json", ".yaml", ".yml"}
CIRCULAR_REF_KEY = "x-circular-ref"
UNRESOLVED_REF_KEY = "x-unresolved-ref"


def is_api_document(document: Any) -> bool:
    """True for OpenAPI/Swagger roots; reference fragments are not documents."""
    return (
        isinstance(document, Mapping)
        and ("openapi" in document or "swagger" in document)
        and isinstance(document.get("paths"), Mapping)
    )


def find_document_files(root: Path) -> List[Path]:
    return sorted(
        path
        for path in root.rglob("*")
        if path.is_file() and path.suffix.lower() in DOCUMENT_SUFFIXES
    )


class SchemaResolver:
    """Loads documents and inlines internal and cross-file references.

    One instance is meant to live for a single load pass: parsed files and
    fully resolved (cycle-free) references are memoized on the instance.
    """

    def __init__(self) -> None:
        self._files: Dict[Path, Any] = {}
        self._memo: Dict[str, Any] = {}
        self._cycles = 0

    def load_file(self, path: Path) -> Any:
        path = path.resolve()
        if path in self._files:
            return self._files[path]
        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix.lower() in {".yaml", ".yml"}:
                document = yaml.safe_load(text)
            else:
                document = json.loads(text)
        except (OSError, UnicodeDecodeError, ValueError, yaml.YAMLError) as exc:
            raise LoadFailure(f"Failed to parse {path}: {exc}", source=str(path)) from exc
        self._files[path] = document
        return document

    def resolve_document(self, path: Path) -> Dict[str, Any]:
        path = path.resolve()
        document = self.load_file(path)
        if not isinstance(document, Mapping):
            raise LoadFailure(f"Document root is not a mapping: {path}", source=str(path))
        return self._resolve(document, path, ())

    def _resolve(self, node: Any, base: Path, stack: Tuple[str, ...]) -> Any:
        if isinstance(node, list):
            return [self._resolve(item, base, stack) for item in node]
        if not isinstance(node, Mapping):
            return node
        ref = node.get("$ref")
        if isinstance(ref, str):
            siblings = {key: value for key, value in node.items() if key != "$ref"}
            return self._resolve_ref(ref, siblings, base, stack)
        return {key: self._resolve(value, base, stack) for key, value in node.items()}

    def _resolve_ref(
        self,
        ref: str,
        siblings: Dict[str, Any],
        base: Path,
        stack: Tuple[str, ...],
    ) -> Any:
        if ref.startswith(("http://", "https://")):
            logger.warning("Remote reference not fetched: %s (in %s)", ref, base.name)
            return {UNRESOLVED_REF_KEY: ref}

        file_part, _, pointer = ref.partition("#")
        target_path = (base.parent / unquote(file_part)).resolve() if file_part else base
        key = f"{target_path}#{pointer}"

        if key in stack:
            logger.warning("Circular reference %s in %s; substituting placeholder", ref, base.name)
            self._cycles += 1
            return {CIRCULAR_REF_KEY: ref}

        if key in self._memo:
            resolved = self._memo[key]
        else:
            document = self.load_file(target_path)
            target = self._follow_pointer(document, pointer, ref, base)
            cycles_before = self._cycles
            resolved = self._resolve(target, target_path, stack + (key,))
            if self._cycles == cycles_before:
                self._memo[key] = resolved

        if siblings and isinstance(resolved, Mapping):
            extra = self._resolve(siblings, base, stack)
            return {**resolved, **extra}
        return resolved

    def _follow_pointer(self, document: Any, pointer: str, ref: str, base: Path) -> Any:
        current = document
        if not pointer.strip("/"):
            return current
        for raw_part in pointer.lstrip("/").split("/"):
            part = unquote(raw_part).replace("~1", "/").replace("~0", "~")
            if isinstance(current, Mapping) and part in current:
                current = current[part]
            elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                raise LoadFailure(f"Unresolvable reference {ref}", source=str(base))
        return current
