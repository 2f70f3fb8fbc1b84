"""Shared pagination schema for list endpoints."""

from typing import Any

from pydantic import BaseModel


class PaginatedResponse(BaseModel):
    """Standard paginated response: items + total + cursor info."""

    items: list[dict[str, Any]]
    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def build(cls, items: list[dict[str, Any]], total: int, limit: int, offset: int) -> "PaginatedResponse":
        return cls(items=items, total=total, limit=limit, offset=offset, has_more=offset + len(items) < total)
