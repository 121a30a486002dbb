"""Pagination helpers for store queries."""

from __future__ import annotations

import base64
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TypeVar

from sandpool.models import PaginatedQueryResult

T = TypeVar("T")

PageQuery = Callable[[str | None], Awaitable[PaginatedQueryResult[T]]]


def encode_page_identifier(offset: int) -> str:
    return base64.urlsafe_b64encode(json.dumps({"offset": offset}).encode()).decode()


def decode_page_identifier(page_identifier: str | None) -> int:
    """Return the row offset for an opaque page identifier.

    Raises:
        ValueError: If the identifier was not produced by this module.
    """
    if not page_identifier:
        return 0
    try:
        payload = json.loads(base64.urlsafe_b64decode(page_identifier.encode()))
        offset = int(payload["offset"])
    except (ValueError, KeyError, TypeError) as e:
        raise ValueError(f"Invalid page identifier: {page_identifier!r}") from e
    if offset < 0:
        raise ValueError(f"Invalid page identifier: {page_identifier!r}")
    return offset


async def stream(query: PageQuery[T]) -> AsyncIterator[T]:
    """Yield every item of a paginated query, fetching pages lazily.

    Usage:
        async for lease in stream(lambda page: store.find_by_user_email(email, page_identifier=page)):
            ...
    """
    page_identifier: str | None = None
    while True:
        page = await query(page_identifier)
        for item in page.result:
            yield item
        if not page.next_page_identifier:
            return
        page_identifier = page.next_page_identifier


async def collect(query: PageQuery[T]) -> list[T]:
    """Drain a paginated query into a list."""
    return [item async for item in stream(query)]
