"""Event publishers.

``InMemoryEventBus`` records events for development and tests.
``HttpEventPublisher`` posts batches to an event ingestion endpoint:

    {"Entries": [{"Source": ..., "DetailType": ..., "Detail": "<json>"}]}
"""

from __future__ import annotations

import json
from typing import TypeVar

import httpx

from sandpool.events import IsbEvent
from sandpool.logging import get_logger

logger = get_logger(__name__)

E = TypeVar("E", bound=IsbEvent)


class EventPublishError(Exception):
    """The event endpoint rejected or failed a batch."""


class InMemoryEventBus:
    def __init__(self) -> None:
        self.events: list[IsbEvent] = []

    async def publish(self, *events: IsbEvent) -> None:
        for event in events:
            self.events.append(event)
            logger.info("event_published", detail_type=event.detail_type)

    def of_type(self, event_type: type[E]) -> list[E]:
        return [event for event in self.events if isinstance(event, event_type)]

    def detail_types(self) -> list[str]:
        return [event.detail_type for event in self.events]

    def clear(self) -> None:
        self.events.clear()


class HttpEventPublisher:
    """Publishes events over HTTP.

    Args:
        url: Endpoint accepting event batches.
        source: Value of the ``Source`` field on every entry.
        client: Optional preconfigured ``httpx.AsyncClient``.
        timeout: Request timeout in seconds when no client is given.
    """

    def __init__(
        self,
        url: str,
        source: str = "sandpool",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.source = source
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    def build_entries(self, events: tuple[IsbEvent, ...]) -> list[dict[str, str]]:
        return [
            {
                "Source": self.source,
                "DetailType": event.detail_type,
                "Detail": json.dumps(event.to_detail()),
            }
            for event in events
        ]

    async def publish(self, *events: IsbEvent) -> None:
        if not events:
            return
        try:
            response = await self._client.post(self.url, json={"Entries": self.build_entries(events)})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                "event_publish_failed",
                url=self.url,
                detail_types=[event.detail_type for event in events],
                error=str(e),
            )
            raise EventPublishError(f"Failed to publish events: {e}") from e
        logger.info("events_published", count=len(events), detail_types=[event.detail_type for event in events])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
