"""Standardized API response helpers.

List endpoints return one envelope:
    {"items": [...], "total": <int>}

Single-item endpoints return the object directly (no wrapper).
"""

from typing import Any, Iterable, Optional, Type

from pydantic import BaseModel


def list_response(
    rows: Iterable[Any],
    schema: Optional[Type[BaseModel]] = None,
) -> dict:
    """Wrap rows in the list envelope.

    ORM rows are serialized through ``schema`` (a ``from_attributes`` model);
    plain dicts are validated against it when given, or passed through.
    """
    if schema is None:
        items = list(rows)
    else:
        items = [schema.model_validate(row).model_dump(mode="json") for row in rows]
    return {"items": items, "total": len(items)}
