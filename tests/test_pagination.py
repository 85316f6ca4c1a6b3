"""Tests for continuation paging."""

from __future__ import annotations

from typing import Any

import pytest
from fakes import channel_renderer, continuation_page, playlist_page, playlist_video

from tubequeue.models import Cursor, StreamKind
from tubequeue.services.pagination import PaginatedFetcher


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


class ScriptedClient:
    """Answer ``call`` with canned responses keyed by seed browse id or token."""

    def __init__(self, responses: dict[str, dict[str, Any]]):
        self.responses = responses
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def call(self, endpoint: str, body: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((endpoint, dict(body)))
        key = body.get("continuation") or body.get("browseId")
        return self.responses[key]


@pytest.mark.anyio("asyncio")
async def test_fetch_all_follows_every_continuation_in_order() -> None:
    client = ScriptedClient(
        {
            "VLPL1": playlist_page(
                [playlist_video("a", "sa"), playlist_video("b", "sb")], token="t1"
            ),
            "t1": continuation_page([playlist_video("c", "sc"), playlist_video("d", "sd")], "t2"),
            "t2": continuation_page([playlist_video("e", "se")]),
        }
    )
    fetcher = PaginatedFetcher(client)  # type: ignore[arg-type]

    entities = await fetcher.collect(StreamKind.PLAYLIST, {"browseId": "VLPL1"}, playlist_id="PL1")

    assert [entity.id for entity in entities] == ["a", "b", "c", "d", "e"]
    assert client.calls == [
        ("browse", {"browseId": "VLPL1"}),
        ("browse", {"continuation": "t1"}),
        ("browse", {"continuation": "t2"}),
    ]


@pytest.mark.anyio("asyncio")
async def test_entities_repeated_on_later_pages_are_skipped() -> None:
    client = ScriptedClient(
        {
            "VLPL1": playlist_page([playlist_video("a", "sa"), playlist_video("b", "sb")], token="t1"),
            "t1": continuation_page([playlist_video("b", "sb"), playlist_video("c", "sc")]),
        }
    )
    fetcher = PaginatedFetcher(client)  # type: ignore[arg-type]

    entities = await fetcher.collect(StreamKind.PLAYLIST, {"browseId": "VLPL1"})

    assert [entity.id for entity in entities] == ["a", "b", "c"]


@pytest.mark.anyio("asyncio")
async def test_empty_page_repeating_the_token_ends_the_walk() -> None:
    client = ScriptedClient(
        {
            "VLPL1": playlist_page([playlist_video("a", "sa")], token="t1"),
            "t1": continuation_page([], "t1"),
        }
    )
    fetcher = PaginatedFetcher(client)  # type: ignore[arg-type]

    entities = await fetcher.collect(StreamKind.PLAYLIST, {"browseId": "VLPL1"})

    assert [entity.id for entity in entities] == ["a"]
    assert len(client.calls) == 2


@pytest.mark.anyio("asyncio")
async def test_token_cycle_is_not_followed_twice() -> None:
    client = ScriptedClient(
        {
            "VLPL1": playlist_page([playlist_video("a", "sa")], token="t1"),
            "t1": continuation_page([playlist_video("b", "sb")], "t2"),
            "t2": continuation_page([playlist_video("c", "sc")], "t1"),
        }
    )
    fetcher = PaginatedFetcher(client)  # type: ignore[arg-type]

    entities = await fetcher.collect(StreamKind.PLAYLIST, {"browseId": "VLPL1"})

    assert [entity.id for entity in entities] == ["a", "b", "c"]
    assert len(client.calls) == 3


@pytest.mark.anyio("asyncio")
async def test_fetch_page_binds_cursor_to_stream() -> None:
    client = ScriptedClient(
        {
            "FEsubscriptions": continuation_page(
                [playlist_video("v1"), channel_renderer("UCx", "Not a video")], "feed-2"
            )
        }
    )
    fetcher = PaginatedFetcher(client)  # type: ignore[arg-type]

    page = await fetcher.fetch_page(StreamKind.SUBSCRIPTIONS, seed={"browseId": "FEsubscriptions"})

    assert [entity.id for entity in page.entities] == ["v1"]
    assert page.cursor == Cursor(token="feed-2", stream=StreamKind.SUBSCRIPTIONS)
    assert not page.exhausted


@pytest.mark.anyio("asyncio")
async def test_fetch_page_rejects_bad_arguments() -> None:
    fetcher = PaginatedFetcher(ScriptedClient({}))  # type: ignore[arg-type]
    channels_cursor = Cursor(token="x", stream=StreamKind.CHANNELS)

    with pytest.raises(ValueError):
        await fetcher.fetch_page(StreamKind.SUBSCRIPTIONS)
    with pytest.raises(ValueError):
        await fetcher.fetch_page(
            StreamKind.CHANNELS, seed={"browseId": "FEchannels"}, cursor=channels_cursor
        )
    with pytest.raises(ValueError):
        await fetcher.fetch_page(StreamKind.SUBSCRIPTIONS, cursor=channels_cursor)
