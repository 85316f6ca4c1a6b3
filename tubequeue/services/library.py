"""High level reads and mutations against the user's YouTube library."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import PlatformError
from ..models import (
    WATCH_LATER_PLAYLIST_ID,
    Channel,
    Cursor,
    Page,
    Playlist,
    StreamKind,
    Video,
)
from .innertube import AuthenticatedRequestClient
from .normalizer import traverse, video_count_from_details
from .pagination import PaginatedFetcher

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_BROWSE_ID = "FEsubscriptions"
CHANNELS_BROWSE_ID = "FEchannels"
LIBRARY_BROWSE_ID = "FElibrary"
CHANNELS_TAB_PARAMS = "EghjaGFubmVscw%3D%3D"
VIDEOS_TAB_PARAMS = "EgZ2aWRlb3PyBgQKAjoA"
PLAYLIST_DETAIL_BATCH_SIZE = 3

EDIT_PLAYLIST = "browse/edit_playlist"


def playlist_browse_id(playlist_id: str) -> str:
    return f"VL{playlist_id}"


class YouTubeLibrary:
    """Operations on Watch Later, playlists, subscriptions and channels."""

    def __init__(self, client: AuthenticatedRequestClient, fetcher: PaginatedFetcher | None = None):
        self._client = client
        self._fetcher = fetcher or PaginatedFetcher(client)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def playlist_videos(self, playlist_id: str) -> list[Video]:
        """Return every video of a playlist, following all continuations."""

        videos: list[Video] = []
        async for entity in self._fetcher.fetch_all(
            StreamKind.PLAYLIST,
            {"browseId": playlist_browse_id(playlist_id)},
            playlist_id=playlist_id,
        ):
            if isinstance(entity, Video):
                videos.append(entity)
        return videos

    async def watch_later(self) -> list[Video]:
        return await self.playlist_videos(WATCH_LATER_PLAYLIST_ID)

    async def subscription_feed(self, cursor: Cursor | None = None) -> Page:
        if cursor is None:
            return await self._fetcher.fetch_page(
                StreamKind.SUBSCRIPTIONS, seed={"browseId": SUBSCRIPTIONS_BROWSE_ID}
            )
        return await self._fetcher.fetch_page(StreamKind.SUBSCRIPTIONS, cursor=cursor)

    async def subscribed_channels(self, cursor: Cursor | None = None) -> Page:
        if cursor is None:
            return await self._fetcher.fetch_page(
                StreamKind.CHANNELS, seed={"browseId": CHANNELS_BROWSE_ID}
            )
        return await self._fetcher.fetch_page(StreamKind.CHANNELS, cursor=cursor)

    async def playlists(self) -> list[Playlist]:
        """List the user's playlists with video counts filled in where possible."""

        data = await self._client.call("browse", {"browseId": LIBRARY_BROWSE_ID})
        playlists: list[Playlist] = [
            entity
            for entity in traverse(data.get("contents", data), kinds=("playlist",)).entities
            if isinstance(entity, Playlist)
        ]
        known = {playlist.id for playlist in playlists}

        try:
            guide = await self._client.call("guide", {})
        except PlatformError as exc:
            logger.warning("Could not fetch guide playlists: %s", exc)
        else:
            for playlist in self._guide_playlists(guide):
                if playlist.id not in known:
                    known.add(playlist.id)
                    playlists.append(playlist)

        missing = [index for index, playlist in enumerate(playlists) if playlist.video_count == 0]
        for start in range(0, len(missing), PLAYLIST_DETAIL_BATCH_SIZE):
            batch = missing[start : start + PLAYLIST_DETAIL_BATCH_SIZE]
            counts = await asyncio.gather(
                *(self._playlist_count(playlists[index].id) for index in batch)
            )
            for index, count in zip(batch, counts):
                if count > 0:
                    playlists[index] = playlists[index].model_copy(update={"video_count": count})
        return playlists

    @staticmethod
    def _guide_playlists(guide: dict[str, Any]) -> list[Playlist]:
        return [
            entity
            for entity in traverse(guide.get("items", []), kinds=("playlist",)).entities
            if isinstance(entity, Playlist)
        ]

    async def _playlist_count(self, playlist_id: str) -> int:
        try:
            data = await self._client.call("browse", {"browseId": playlist_browse_id(playlist_id)})
        except PlatformError as exc:
            logger.debug("Failed to fetch playlist details for %s: %s", playlist_id, exc)
            return 0
        return video_count_from_details(data)

    async def channel_suggestions(self, channel_id: str) -> list[Channel]:
        """Featured channels from a channel's page (channels tab, then home tab)."""

        try:
            data = await self._client.call(
                "browse", {"browseId": channel_id, "params": CHANNELS_TAB_PARAMS}
            )
            suggestions = self._channels_except(data, channel_id)
            if not suggestions:
                logger.debug("No channels in channels tab of %s, trying home tab", channel_id)
                home = await self._client.call("browse", {"browseId": channel_id})
                suggestions = self._channels_except(home, channel_id)
        except PlatformError as exc:
            logger.warning("Could not fetch channel suggestions for %s: %s", channel_id, exc)
            return []
        return suggestions

    @staticmethod
    def _channels_except(data: Any, channel_id: str) -> list[Channel]:
        return [
            entity
            for entity in traverse(data, kinds=("channel",)).entities
            if isinstance(entity, Channel) and entity.id != channel_id
        ]

    async def channel_videos(self, channel_id: str) -> list[Video]:
        """Recent uploads from a channel's videos tab, falling back to its home tab."""

        try:
            data = await self._client.call(
                "browse", {"browseId": channel_id, "params": VIDEOS_TAB_PARAMS}
            )
            videos = self._videos_in(data)
            if not videos:
                logger.debug("No videos in videos tab of %s, trying home tab", channel_id)
                home = await self._client.call("browse", {"browseId": channel_id})
                videos = self._videos_in(home)
        except PlatformError as exc:
            logger.warning("Could not fetch channel videos for %s: %s", channel_id, exc)
            return []
        logger.debug("Fetched %s videos from channel %s", len(videos), channel_id)
        return videos

    @staticmethod
    def _videos_in(data: Any) -> list[Video]:
        return [entity for entity in traverse(data, kinds=("video",)).entities if isinstance(entity, Video)]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def _edit_playlist(self, playlist_id: str, action: dict[str, Any]) -> None:
        await self._client.call(EDIT_PLAYLIST, {"playlistId": playlist_id, "actions": [action]})

    async def add_to_playlist(self, playlist_id: str, video_id: str) -> None:
        await self._edit_playlist(
            playlist_id, {"addedVideoId": video_id, "action": "ACTION_ADD_VIDEO"}
        )

    async def remove_from_playlist(self, playlist_id: str, set_video_id: str) -> None:
        await self._edit_playlist(
            playlist_id, {"setVideoId": set_video_id, "action": "ACTION_REMOVE_VIDEO"}
        )

    async def move_before(self, playlist_id: str, set_video_id: str, successor: str) -> None:
        await self._edit_playlist(
            playlist_id,
            {
                "setVideoId": set_video_id,
                "action": "ACTION_MOVE_VIDEO_BEFORE",
                "movedSetVideoIdSuccessor": successor,
            },
        )

    async def move_after(self, playlist_id: str, set_video_id: str, predecessor: str) -> None:
        await self._edit_playlist(
            playlist_id,
            {
                "setVideoId": set_video_id,
                "action": "ACTION_MOVE_VIDEO_AFTER",
                "movedSetVideoIdPredecessor": predecessor,
            },
        )

    async def move_to_top(self, set_video_id: str, first_set_video_id: str | None) -> None:
        """Move a Watch Later item first; no call when it already is or no anchor is known."""

        if not first_set_video_id or first_set_video_id == set_video_id:
            return
        await self.move_before(WATCH_LATER_PLAYLIST_ID, set_video_id, first_set_video_id)

    async def move_to_bottom(self, set_video_id: str, last_set_video_id: str | None) -> None:
        if not last_set_video_id or last_set_video_id == set_video_id:
            return
        await self.move_after(WATCH_LATER_PLAYLIST_ID, set_video_id, last_set_video_id)

    async def rename_playlist(self, playlist_id: str, title: str) -> None:
        await self._client.call(EDIT_PLAYLIST, {"playlistId": playlist_id, "playlistName": title})

    async def create_playlist(self, title: str) -> str | None:
        """Create a playlist and return its id when the platform reports one."""

        data = await self._client.call("playlist/create", {"title": title})
        playlist_id = data.get("playlistId")
        return playlist_id if isinstance(playlist_id, str) and playlist_id else None

    async def delete_playlist(self, playlist_id: str) -> None:
        await self._client.call("playlist/delete", {"playlistId": playlist_id})

    async def subscribe(self, channel_id: str) -> None:
        await self._client.call("subscription/subscribe", {"channelIds": [channel_id]})

    async def unsubscribe(self, channel_id: str) -> None:
        await self._client.call("subscription/unsubscribe", {"channelIds": [channel_id]})
