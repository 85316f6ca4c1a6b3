"""Privileged executor: runs relay requests against the signed-in session."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from ..errors import PlatformError, UnsupportedMessage
from ..messages import (
    AddToPlaylist,
    AddToWatchLater,
    CreatePlaylist,
    DeletePlaylist,
    GetChannelSuggestions,
    GetChannelVideos,
    GetPlaylistVideos,
    MovePlaylistVideo,
    MoveToBottom,
    MoveToTop,
    RelayMessage,
    RelayResponse,
    RemoveFromPlaylist,
    RemoveFromWatchLater,
    RenamePlaylist,
    Subscribe,
    Unsubscribe,
    parse_message,
)
from ..models import WATCH_LATER_PLAYLIST_ID, Cursor, Page, StreamKind
from .library import YouTubeLibrary

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


def _dump(entities: list[BaseModel]) -> list[dict[str, Any]]:
    return [entity.model_dump(mode="json") for entity in entities]


class PlatformExecutor:
    """Dispatch each request tag to the matching library operation.

    Stream cursors for the subscription feed and channel list live here, so
    ``GET_MORE_*`` requests continue where the previous load stopped. A 409
    is reported as-is through ``error_kind``/``status``; deciding whether it
    counts as success is left to the caller.
    """

    def __init__(
        self,
        library: YouTubeLibrary,
        *,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ):
        self._library = library
        self._on_close = on_close
        self._cursors: dict[StreamKind, Cursor | None] = {}
        self._handlers: dict[str, Handler] = {
            "PING": self._ping,
            "GET_WATCH_LATER": self._get_watch_later,
            "GET_SUBSCRIPTIONS": self._get_subscriptions,
            "GET_MORE_SUBSCRIPTIONS": self._get_more_subscriptions,
            "GET_PLAYLISTS": self._get_playlists,
            "GET_PLAYLIST_VIDEOS": self._get_playlist_videos,
            "REMOVE_FROM_WATCH_LATER": self._remove_from_watch_later,
            "REMOVE_FROM_PLAYLIST": self._remove_from_playlist,
            "ADD_TO_PLAYLIST": self._add_to_playlist,
            "ADD_TO_WATCH_LATER": self._add_to_watch_later,
            "MOVE_TO_TOP": self._move_to_top,
            "MOVE_TO_BOTTOM": self._move_to_bottom,
            "MOVE_PLAYLIST_VIDEO": self._move_playlist_video,
            "GET_CHANNELS": self._get_channels,
            "GET_MORE_CHANNELS": self._get_more_channels,
            "UNSUBSCRIBE": self._unsubscribe,
            "SUBSCRIBE": self._subscribe,
            "GET_CHANNEL_SUGGESTIONS": self._get_channel_suggestions,
            "GET_CHANNEL_VIDEOS": self._get_channel_videos,
            "CREATE_PLAYLIST": self._create_playlist,
            "DELETE_PLAYLIST": self._delete_playlist,
            "RENAME_PLAYLIST": self._rename_playlist,
        }

    def cursor(self, stream: StreamKind) -> Cursor | None:
        return self._cursors.get(stream)

    async def handle(self, request: RelayMessage | dict[str, Any]) -> RelayResponse:
        try:
            message = parse_message(request)
        except UnsupportedMessage:
            return RelayResponse.failure("Unknown message type")
        handler = self._handlers.get(getattr(message, "type", ""))
        if handler is None:
            return RelayResponse.failure("Unknown message type")
        try:
            data = await handler(message)
        except PlatformError as exc:
            logger.warning("%s failed: %s", message.type, exc.message)
            return RelayResponse.failure(exc)
        return RelayResponse.ok(data)

    async def aclose(self) -> None:
        if self._on_close is not None:
            await self._on_close()

    async def _ping(self, _message: RelayMessage) -> str:
        return "pong"

    async def _get_watch_later(self, _message: RelayMessage) -> list[dict[str, Any]]:
        return _dump(await self._library.watch_later())

    async def _get_playlist_videos(self, message: GetPlaylistVideos) -> list[dict[str, Any]]:
        return _dump(await self._library.playlist_videos(message.playlist_id))

    def _remember(self, stream: StreamKind, page: Page) -> list[dict[str, Any]]:
        self._cursors[stream] = page.cursor
        logger.debug(
            "%s page: %s entities, continuation %s",
            stream.value,
            len(page.entities),
            "present" if page.cursor else "none",
        )
        return _dump(page.entities)

    async def _get_subscriptions(self, _message: RelayMessage) -> list[dict[str, Any]]:
        page = await self._library.subscription_feed()
        return self._remember(StreamKind.SUBSCRIPTIONS, page)

    async def _get_more_subscriptions(self, _message: RelayMessage) -> list[dict[str, Any]]:
        cursor = self._cursors.get(StreamKind.SUBSCRIPTIONS)
        if cursor is None:
            return []
        page = await self._library.subscription_feed(cursor)
        return self._remember(StreamKind.SUBSCRIPTIONS, page)

    async def _get_channels(self, _message: RelayMessage) -> list[dict[str, Any]]:
        page = await self._library.subscribed_channels()
        return self._remember(StreamKind.CHANNELS, page)

    async def _get_more_channels(self, _message: RelayMessage) -> list[dict[str, Any]]:
        cursor = self._cursors.get(StreamKind.CHANNELS)
        if cursor is None:
            return []
        page = await self._library.subscribed_channels(cursor)
        return self._remember(StreamKind.CHANNELS, page)

    async def _get_playlists(self, _message: RelayMessage) -> list[dict[str, Any]]:
        return _dump(await self._library.playlists())

    async def _get_channel_suggestions(self, message: GetChannelSuggestions) -> list[dict[str, Any]]:
        return _dump(await self._library.channel_suggestions(message.channel_id))

    async def _get_channel_videos(self, message: GetChannelVideos) -> list[dict[str, Any]]:
        return _dump(await self._library.channel_videos(message.channel_id))

    async def _remove_from_watch_later(self, message: RemoveFromWatchLater) -> None:
        await self._library.remove_from_playlist(WATCH_LATER_PLAYLIST_ID, message.set_video_id)

    async def _remove_from_playlist(self, message: RemoveFromPlaylist) -> None:
        await self._library.remove_from_playlist(message.playlist_id, message.set_video_id)

    async def _add_to_playlist(self, message: AddToPlaylist) -> None:
        await self._library.add_to_playlist(message.playlist_id, message.video_id)

    async def _add_to_watch_later(self, message: AddToWatchLater) -> None:
        await self._library.add_to_playlist(WATCH_LATER_PLAYLIST_ID, message.video_id)

    async def _move_to_top(self, message: MoveToTop) -> None:
        await self._library.move_to_top(message.set_video_id, message.first_set_video_id)

    async def _move_to_bottom(self, message: MoveToBottom) -> None:
        await self._library.move_to_bottom(message.set_video_id, message.last_set_video_id)

    async def _move_playlist_video(self, message: MovePlaylistVideo) -> None:
        await self._library.move_before(
            message.playlist_id, message.set_video_id, message.target_set_video_id
        )

    async def _subscribe(self, message: Subscribe) -> None:
        await self._library.subscribe(message.channel_id)

    async def _unsubscribe(self, message: Unsubscribe) -> None:
        await self._library.unsubscribe(message.channel_id)

    async def _create_playlist(self, message: CreatePlaylist) -> dict[str, Any]:
        return {"playlistId": await self._library.create_playlist(message.title)}

    async def _delete_playlist(self, message: DeletePlaylist) -> None:
        await self._library.delete_playlist(message.playlist_id)

    async def _rename_playlist(self, message: RenamePlaylist) -> None:
        await self._library.rename_playlist(message.playlist_id, message.new_title)
