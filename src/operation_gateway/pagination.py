"""Heuristic pagination detection and page parsing.

Detection only looks at query parameter names. An operation whose pages are
driven by something else is simply treated as single-page; a wrong guess in
the other direction would send bogus parameters, so false negatives are
preferred. The recognised continuation fields form a fixed vocabulary: an API
that signals "more data" under any other name behaves as single-page.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from .models import OperationEntry, ParameterDescriptor


# Highest priority first; a cursor beats a page number beats an offset.
PAGINATION_HINTS = ("cursor", "page", "offset", "limit")
ITEM_FIELDS = ("items", "results", "data", "records", "list")
MORE_FIELDS = ("hasMore", "has_more", "hasNextPage", "has_next_page", "more")
NEXT_FIELDS = ("nextCursor", "next_cursor", "nextPage", "next_page", "nextToken", "next_token", "next")
TOTAL_FIELDS = ("totalCount", "totalItems", "total_count", "total_items", "total")


def is_paginatable(query_parameters: Iterable[ParameterDescriptor]) -> bool:
    return any(_hint_for(param.name) is not None for param in query_parameters)


def detect_pagination_param(
    operation: OperationEntry,
    overrides: Optional[Mapping[str, Optional[str]]] = None,
) -> Optional[str]:
    """Return the query parameter that carries the page cursor, if any.

    ``overrides`` maps operation names to a parameter name (or ``None`` to
    disable pagination for that operation) and wins over the heuristic.
    """
    if overrides and operation.name in overrides:
        return overrides[operation.name]
    names = [param.name for param in operation.query_parameters]
    for hint in PAGINATION_HINTS:
        for name in names:
            if name.lower() == hint:
                return name
        for name in names:
            if hint in name.lower() and not _is_size_param(name):
                return name
    return None


def _hint_for(name: str) -> Optional[str]:
    lowered = name.lower()
    for hint in PAGINATION_HINTS:
        if hint in lowered:
            return hint
    return None


def _is_size_param(name: str) -> bool:
    lowered = name.lower()
    return lowered.endswith(("size", "limit", "count")) and lowered != "limit"


def extract_items(body: Any) -> List[Any]:
    if isinstance(body, list):
        return body
    if isinstance(body, Mapping):
        for key in ITEM_FIELDS:
            value = body.get(key)
            if isinstance(value, list):
                return value
        for value in body.values():
            if isinstance(value, list):
                return value
    return []


@dataclass(frozen=True)
class PageMeta:
    has_more: bool
    next_cursor: Any = None
    total_items: Optional[int] = None


def extract_page_meta(body: Any) -> PageMeta:
    if not isinstance(body, Mapping):
        return PageMeta(has_more=False)

    next_cursor = None
    for key in NEXT_FIELDS:
        value = body.get(key)
        if value is not None and value is not False and value != "":
            next_cursor = value
            break

    more = any(body.get(key) is True for key in MORE_FIELDS)
    total = None
    for key in TOTAL_FIELDS:
        value = body.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            total = value
            break

    # A bare ``next: true`` is a flag, not a cursor.
    if next_cursor is True:
        next_cursor = None
        more = True

    return PageMeta(
        has_more=more or next_cursor is not None,
        next_cursor=next_cursor,
        total_items=total,
    )


def advance_cursor(param: str, current: Any, items_on_page: int) -> Any:
    """Derive the next cursor when a page signals "more" without naming one."""
    lowered = param.lower()
    try:
        number = int(current) if current is not None else None
    except (TypeError, ValueError):
        return current
    if "offset" in lowered:
        return (number or 0) + items_on_page
    if "page" in lowered:
        return (number if number is not None else 1) + 1
    return current
