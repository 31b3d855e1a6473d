"""Operation registry: loads API descriptions and indexes their operations."""

from __future__ import annotations

import dataclasses
import hashlib
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import LoadFailure
from .models import OperationEntry, SearchFilters
from .openapi import MAX_NAME_LENGTH, OperationExtractor, normalize_namespace
from .schema import SchemaResolver, find_document_files, is_api_document


logger = logging.getLogger(__name__)


class OperationRegistry:
    def __init__(self, name_prefix: str = "api") -> None:
        self.name_prefix = name_prefix
        self._extractor = OperationExtractor(name_prefix)
        self._operations: Dict[str, OperationEntry] = {}
        self._by_namespace: Dict[str, List[str]] = {}
        self._by_method: Dict[str, List[str]] = {}
        self._search_text: Dict[str, str] = {}
        self._documents_loaded = 0
        self._failed_documents: List[str] = []
        self._source: Optional[Path] = None
        self._loaded = False
        self._load_duration = 0.0

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def load_duration(self) -> float:
        """Seconds spent in the last load."""
        return self._load_duration

    @property
    def failed_documents(self) -> List[str]:
        return list(self._failed_documents)

    def load(self, source_directory: Union[str, Path]) -> None:
        if self._loaded:
            logger.debug("Registry already loaded from %s", self._source)
            return

        root = Path(source_directory)
        if not root.is_dir():
            raise LoadFailure(f"Specs directory not found: {root}", source=str(root))

        started = time.monotonic()
        try:
            files = find_document_files(root)
        except OSError as exc:
            raise LoadFailure(f"Specs directory unreadable: {root}: {exc}", source=str(root)) from exc

        logger.info("Loading API descriptions from %s (%s candidate files)", root, len(files))
        resolver = SchemaResolver()
        for path in files:
            relative = path.relative_to(root)
            try:
                self._load_document(resolver, path, relative)
            except LoadFailure as exc:
                self._failed_documents.append(relative.as_posix())
                logger.error("Failed to load %s: %s", relative.as_posix(), exc)

        self._source = root
        self._loaded = True
        self._load_duration = time.monotonic() - started
        if not self._operations:
            logger.warning("No operations found under %s", root)
        logger.info(
            "Registry loaded: %s operations from %s documents in %.0fms (%s failed)",
            len(self._operations),
            self._documents_loaded,
            self._load_duration * 1000,
            len(self._failed_documents),
        )

    def reload(self, source_directory: Union[str, Path, None] = None) -> None:
        source = source_directory or self._source
        if source is None:
            raise LoadFailure("Registry has never been loaded; a source directory is required")
        self.clear()
        self.load(source)

    def clear(self) -> None:
        self._operations.clear()
        self._by_namespace.clear()
        self._by_method.clear()
        self._search_text.clear()
        self._documents_loaded = 0
        self._failed_documents.clear()
        self._loaded = False

    def _load_document(self, resolver: SchemaResolver, path: Path, relative: Path) -> None:
        raw = resolver.load_file(path)
        if not is_api_document(raw):
            logger.debug("Skipping non-document file %s", relative.as_posix())
            return

        document = resolver.resolve_document(path)
        parts = relative.parts
        namespace = normalize_namespace(parts[0] if len(parts) > 1 else path.stem)
        info = document.get("info") if isinstance(document.get("info"), Mapping) else {}
        version = parts[1] if len(parts) > 2 else str(info.get("version") or "v1")

        try:
            entries = self._extractor.extract_operations(
                document, namespace, version, relative.as_posix()
            )
        except (TypeError, KeyError, AttributeError, ValueError) as exc:
            raise LoadFailure(
                f"Malformed API description {relative.as_posix()}: {exc!r}",
                source=relative.as_posix(),
            ) from exc
        for entry in entries:
            self._add(entry)
        self._documents_loaded += 1
        logger.debug(
            "Loaded %s operations from %s (%s/%s)",
            len(entries),
            relative.as_posix(),
            namespace,
            version,
        )

    def _add(self, entry: OperationEntry) -> None:
        if entry.name in self._operations:
            digest = hashlib.sha1(
                f"{entry.source}:{entry.method}:{entry.path}".encode("utf-8")
            ).hexdigest()[:8]
            renamed = f"{entry.name[: MAX_NAME_LENGTH - 9]}_{digest}"
            logger.warning(
                "Operation name collision on %s (%s %s in %s); using %s",
                entry.name,
                entry.method,
                entry.path,
                entry.source,
                renamed,
            )
            entry = dataclasses.replace(entry, name=renamed)

        self._operations[entry.name] = entry
        self._by_namespace.setdefault(entry.namespace, []).append(entry.name)
        self._by_method.setdefault(entry.method, []).append(entry.name)
        self._search_text[entry.name] = " ".join(
            [
                entry.name,
                entry.operation_id,
                entry.summary,
                entry.description,
                entry.path,
                *entry.tags,
            ]
        ).lower()

    def get(self, name: str) -> Optional[OperationEntry]:
        return self._operations.get(name)

    def all(self) -> List[OperationEntry]:
        return list(self._operations.values())

    def namespaces(self) -> List[str]:
        return sorted(self._by_namespace)

    def search(
        self,
        filters: Union[SearchFilters, Mapping[str, Any], None] = None,
        **kwargs: Any,
    ) -> List[OperationEntry]:
        if filters is None:
            filters = SearchFilters(**kwargs)
        elif isinstance(filters, Mapping):
            filters = SearchFilters(**{**filters, **kwargs})
        elif kwargs:
            filters = dataclasses.replace(filters, **kwargs)

        if filters.namespace is not None:
            names = self._by_namespace.get(normalize_namespace(filters.namespace), [])
        elif filters.method is not None:
            names = self._by_method.get(filters.method.upper(), [])
        else:
            names = list(self._operations)

        method = filters.method.upper() if filters.method else None
        needle = filters.query.lower() if filters.query else None
        wanted_tags = set(filters.tags or ())
        limit = filters.limit

        results: List[OperationEntry] = []
        for name in names:
            entry = self._operations[name]
            if method and entry.method != method:
                continue
            if filters.paginatable is not None and entry.supports_pagination != filters.paginatable:
                continue
            if wanted_tags and not wanted_tags.intersection(entry.tags):
                continue
            if needle and needle not in self._search_text[name]:
                continue
            results.append(entry)
            if limit is not None and len(results) >= limit:
                break
        return results

    def stats(self) -> Dict[str, Any]:
        entries = self._operations.values()
        return {
            "total_operations": len(self._operations),
            "documents_loaded": self._documents_loaded,
            "documents_failed": len(self._failed_documents),
            "namespaces": len(self._by_namespace),
            "operations_by_namespace": {
                namespace: len(names) for namespace, names in sorted(self._by_namespace.items())
            },
            "operations_by_method": {
                method: len(names) for method, names in sorted(self._by_method.items())
            },
            "paginatable_operations": sum(1 for entry in entries if entry.supports_pagination),
            "operations_with_body": sum(1 for entry in entries if entry.has_body),
        }
