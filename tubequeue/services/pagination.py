"""Walk continuation-paged InnerTube streams."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Mapping

from ..models import Cursor, Entity, Page, StreamKind
from .innertube import AuthenticatedRequestClient
from .normalizer import traverse

logger = logging.getLogger(__name__)


class PaginatedFetcher:
    """Fetch single pages or whole streams of normalized entities."""

    def __init__(self, client: AuthenticatedRequestClient, *, endpoint: str = "browse"):
        self._client = client
        self._endpoint = endpoint

    async def fetch_page(
        self,
        stream: StreamKind,
        *,
        seed: Mapping[str, Any] | None = None,
        cursor: Cursor | None = None,
        playlist_id: str | None = None,
    ) -> Page:
        """Fetch one page from ``seed`` (first page) or ``cursor`` (later pages)."""

        if (seed is None) == (cursor is None):
            raise ValueError("Exactly one of seed or cursor is required")
        if cursor is not None:
            if cursor.stream is not stream:
                raise ValueError(
                    f"Cursor for {cursor.stream.value} cannot page {stream.value}"
                )
            body: dict[str, Any] = {"continuation": cursor.token}
            playlist_id = cursor.playlist_id
        else:
            body = dict(seed or {})

        data = await self._client.call(self._endpoint, body)
        traversal = traverse(data, kinds=(stream.entity_kind,))
        next_cursor = (
            Cursor(token=traversal.cursor, stream=stream, playlist_id=playlist_id)
            if traversal.cursor
            else None
        )
        return Page(entities=traversal.entities, cursor=next_cursor)

    async def fetch_all(
        self,
        stream: StreamKind,
        seed: Mapping[str, Any],
        *,
        playlist_id: str | None = None,
    ) -> AsyncIterator[Entity]:
        """Yield every entity of a stream, following continuations in order.

        Entities already yielded on an earlier page are skipped. The walk
        ends on a missing cursor, or on an empty page that brings no new
        cursor.
        """

        page = await self.fetch_page(stream, seed=seed, playlist_id=playlist_id)
        seen: set[str] = set()
        tokens: set[str] = set()
        pages = 1
        while True:
            for entity in page.entities:
                if entity.id in seen:
                    continue
                seen.add(entity.id)
                yield entity

            cursor = page.cursor
            if cursor is None or cursor.token in tokens:
                break
            tokens.add(cursor.token)

            page = await self.fetch_page(stream, cursor=cursor)
            pages += 1
            if not page.entities and (page.cursor is None or page.cursor.token == cursor.token):
                break

        logger.debug(
            "Fetched %s %s entities across %s pages", len(seen), stream.value, pages
        )

    async def collect(
        self,
        stream: StreamKind,
        seed: Mapping[str, Any],
        *,
        playlist_id: str | None = None,
    ) -> list[Entity]:
        return [entity async for entity in self.fetch_all(stream, seed, playlist_id=playlist_id)]
