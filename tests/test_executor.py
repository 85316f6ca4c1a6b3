"""Tests for the executor and the library operations behind it."""

from __future__ import annotations

from typing import Any, Callable

import pytest
from fakes import channel_renderer, continuation_page, playlist_video, text

from tubequeue.errors import AmbiguousConflict, ServerError, Unauthenticated
from tubequeue.messages import RelayResponse
from tubequeue.models import StreamKind
from tubequeue.services.executor import PlatformExecutor
from tubequeue.services.library import (
    CHANNELS_TAB_PARAMS,
    VIDEOS_TAB_PARAMS,
    YouTubeLibrary,
)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


Route = Callable[[str, dict[str, Any]], Any]


class RoutedClient:
    """Record calls and answer them through a routing function."""

    def __init__(self, route: Route):
        self.route = route
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def call(self, endpoint: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = dict(body or {})
        self.calls.append((endpoint, payload))
        result = self.route(endpoint, payload)
        if isinstance(result, Exception):
            raise result
        return result


def build_executor(route: Route) -> tuple[PlatformExecutor, RoutedClient]:
    client = RoutedClient(route)
    return PlatformExecutor(YouTubeLibrary(client)), client  # type: ignore[arg-type]


def _guide_entry(browse_id: str, title: str) -> dict[str, Any]:
    return {
        "guideEntryRenderer": {
            "navigationEndpoint": {"browseEndpoint": {"browseId": browse_id}},
            "formattedTitle": text(title),
        }
    }


@pytest.mark.anyio("asyncio")
async def test_subscription_cursor_is_kept_between_requests() -> None:
    def route(endpoint: str, body: dict[str, Any]) -> Any:
        if body.get("browseId") == "FEsubscriptions":
            return continuation_page([playlist_video("v1"), playlist_video("v2")], "feed-2")
        if body.get("continuation") == "feed-2":
            return continuation_page([playlist_video("v3")])
        raise AssertionError(f"unexpected call {endpoint} {body}")

    executor, client = build_executor(route)

    first = await executor.handle({"type": "GET_SUBSCRIPTIONS"})
    more = await executor.handle({"type": "GET_MORE_SUBSCRIPTIONS"})
    exhausted = await executor.handle({"type": "GET_MORE_SUBSCRIPTIONS"})

    assert first.success and [video["id"] for video in first.data] == ["v1", "v2"]
    assert first.data[0]["kind"] == "video"
    assert [video["id"] for video in more.data] == ["v3"]
    assert exhausted == RelayResponse.ok([])
    assert executor.cursor(StreamKind.SUBSCRIPTIONS) is None
    assert len(client.calls) == 2


@pytest.mark.anyio("asyncio")
async def test_get_more_without_a_first_page_makes_no_request() -> None:
    executor, client = build_executor(lambda endpoint, body: AssertionError("no calls expected"))

    response = await executor.handle({"type": "GET_MORE_CHANNELS"})

    assert response.success and response.data == []
    assert client.calls == []


@pytest.mark.anyio("asyncio")
async def test_conflict_is_passed_through_for_the_caller_to_judge() -> None:
    executor, _ = build_executor(
        lambda endpoint, body: AmbiguousConflict("InnerTube API error: 409", status=409, endpoint=endpoint)
    )

    response = await executor.handle(
        {"type": "REMOVE_FROM_WATCH_LATER", "videoId": "v1", "setVideoId": "s1"}
    )

    assert not response.success
    assert response.error_kind == "AmbiguousConflict"
    assert response.status == 409
    assert response.is_conflict


@pytest.mark.anyio("asyncio")
async def test_auth_failures_are_reported_with_their_kind() -> None:
    executor, _ = build_executor(lambda endpoint, body: Unauthenticated("expired", status=401))

    response = await executor.handle({"type": "GET_WATCH_LATER"})

    assert response.to_payload() == {
        "success": False,
        "error": "expired",
        "errorKind": "Unauthenticated",
        "status": 401,
    }


@pytest.mark.anyio("asyncio")
async def test_edit_playlist_actions() -> None:
    executor, client = build_executor(lambda endpoint, body: {})

    await executor.handle({"type": "MOVE_TO_TOP", "setVideoId": "s2", "firstSetVideoId": "s1"})
    await executor.handle({"type": "MOVE_TO_BOTTOM", "setVideoId": "s2", "lastSetVideoId": "s9"})
    await executor.handle({"type": "ADD_TO_PLAYLIST", "playlistId": "PL1", "videoId": "v1"})
    await executor.handle(
        {"type": "MOVE_PLAYLIST_VIDEO", "playlistId": "PL1", "setVideoId": "a", "targetSetVideoId": "b"}
    )
    await executor.handle({"type": "RENAME_PLAYLIST", "playlistId": "PL1", "newTitle": "Renamed"})

    assert client.calls == [
        (
            "browse/edit_playlist",
            {
                "playlistId": "WL",
                "actions": [
                    {"setVideoId": "s2", "action": "ACTION_MOVE_VIDEO_BEFORE", "movedSetVideoIdSuccessor": "s1"}
                ],
            },
        ),
        (
            "browse/edit_playlist",
            {
                "playlistId": "WL",
                "actions": [
                    {"setVideoId": "s2", "action": "ACTION_MOVE_VIDEO_AFTER", "movedSetVideoIdPredecessor": "s9"}
                ],
            },
        ),
        (
            "browse/edit_playlist",
            {"playlistId": "PL1", "actions": [{"addedVideoId": "v1", "action": "ACTION_ADD_VIDEO"}]},
        ),
        (
            "browse/edit_playlist",
            {
                "playlistId": "PL1",
                "actions": [
                    {"setVideoId": "a", "action": "ACTION_MOVE_VIDEO_BEFORE", "movedSetVideoIdSuccessor": "b"}
                ],
            },
        ),
        ("browse/edit_playlist", {"playlistId": "PL1", "playlistName": "Renamed"}),
    ]


@pytest.mark.anyio("asyncio")
async def test_move_to_top_is_a_no_op_when_already_first() -> None:
    executor, client = build_executor(lambda endpoint, body: {})

    response = await executor.handle({"type": "MOVE_TO_TOP", "setVideoId": "s1", "firstSetVideoId": "s1"})
    without_anchor = await executor.handle({"type": "MOVE_TO_TOP", "setVideoId": "s1"})

    assert response.success and without_anchor.success
    assert client.calls == []


@pytest.mark.anyio("asyncio")
async def test_playlists_merge_library_guide_and_details() -> None:
    def route(endpoint: str, body: dict[str, Any]) -> Any:
        if endpoint == "guide":
            return {
                "items": [
                    {
                        "guideSectionRenderer": {
                            "items": [
                                _guide_entry("VLPL3", "From guide"),
                                _guide_entry("VLPL1", "Duplicate"),
                                _guide_entry("VLWL", "Watch later"),
                            ]
                        }
                    }
                ]
            }
        browse_id = body.get("browseId")
        if browse_id == "FElibrary":
            return {
                "contents": [
                    {"playlistRenderer": {"playlistId": "PL1", "title": text("Known"), "videoCount": "5"}},
                    {"gridPlaylistRenderer": {"playlistId": "PL2", "title": text("Uncounted")}},
                    {"playlistRenderer": {"playlistId": "LL", "title": text("Liked")}},
                ]
            }
        if browse_id == "VLPL2":
            return {"header": {"playlistHeaderRenderer": {"stats": [{"runs": [{"text": "8 videos"}]}]}}}
        if browse_id == "VLPL3":
            return ServerError("boom", status=500)
        raise AssertionError(f"unexpected call {endpoint} {body}")

    executor, client = build_executor(route)

    response = await executor.handle({"type": "GET_PLAYLISTS"})

    assert response.success
    assert [(item["id"], item["title"], item["video_count"]) for item in response.data] == [
        ("PL1", "Known", 5),
        ("PL2", "Uncounted", 8),
        ("PL3", "From guide", 0),
    ]
    assert ("browse", {"browseId": "VLPL1"}) not in client.calls


@pytest.mark.anyio("asyncio")
async def test_guide_failure_keeps_library_playlists() -> None:
    def route(endpoint: str, body: dict[str, Any]) -> Any:
        if endpoint == "guide":
            return ServerError("guide down", status=503)
        return {"contents": [{"playlistRenderer": {"playlistId": "PL1", "title": text("Only"), "videoCount": "2"}}]}

    executor, _ = build_executor(route)

    response = await executor.handle({"type": "GET_PLAYLISTS"})

    assert [item["id"] for item in response.data] == ["PL1"]


@pytest.mark.anyio("asyncio")
async def test_create_playlist_returns_new_id() -> None:
    executor, client = build_executor(lambda endpoint, body: {"playlistId": "PLnew"})

    response = await executor.handle({"type": "CREATE_PLAYLIST", "title": "Later"})

    assert response == RelayResponse.ok({"playlistId": "PLnew"})
    assert client.calls == [("playlist/create", {"title": "Later"})]


@pytest.mark.anyio("asyncio")
async def test_channel_suggestions_fall_back_to_home_tab() -> None:
    def route(endpoint: str, body: dict[str, Any]) -> Any:
        if body.get("params") == CHANNELS_TAB_PARAMS:
            return {"contents": [channel_renderer("UCme", "Myself")]}
        return {"contents": [channel_renderer("UCme", "Myself"), channel_renderer("UCother", "Other")]}

    executor, client = build_executor(route)

    response = await executor.handle({"type": "GET_CHANNEL_SUGGESTIONS", "channelId": "UCme"})

    assert [channel["id"] for channel in response.data] == ["UCother"]
    assert client.calls[1] == ("browse", {"browseId": "UCme"})


@pytest.mark.anyio("asyncio")
async def test_channel_videos_degrade_to_empty_on_platform_errors() -> None:
    def route(endpoint: str, body: dict[str, Any]) -> Any:
        assert body == {"browseId": "UCx", "params": VIDEOS_TAB_PARAMS}
        return ServerError("unavailable", status=500)

    executor, _ = build_executor(route)

    response = await executor.handle({"type": "GET_CHANNEL_VIDEOS", "channelId": "UCx"})

    assert response == RelayResponse.ok([])


@pytest.mark.anyio("asyncio")
async def test_unknown_or_malformed_requests_are_rejected() -> None:
    executor, client = build_executor(lambda endpoint, body: {})

    unknown = await executor.handle({"type": "FORMAT_DISK"})
    missing_field = await executor.handle({"type": "ADD_TO_PLAYLIST", "playlistId": "PL1"})
    ping = await executor.handle({"type": "PING"})

    assert unknown == RelayResponse.failure("Unknown message type")
    assert missing_field.error == "Unknown message type"
    assert ping.data == "pong"
    assert client.calls == []
