"""Optimistic local edits, reconciliation with the platform, and undo.

Every mutation follows the same protocol: snapshot the affected list
together with focus and selection, apply the change locally and
re-render, then issue the remote call(s) in a tracked background task.
The platform frequently answers 409 although it applied the change, so a
409 from a mutation counts as success. Other failures raise one toast
naming how many items failed; the local change is not rolled back
automatically. Undo pops the most recent entry and runs its inverse.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Coroutine, Iterable, Protocol, TypeVar

from ..config import Settings
from ..errors import AUTH_EXPIRED_MESSAGE
from ..messages import (
    AddToPlaylist,
    AddToWatchLater,
    CreatePlaylist,
    DeletePlaylist,
    GetChannelSuggestions,
    GetChannelVideos,
    GetChannels,
    GetMoreChannels,
    GetMoreSubscriptions,
    GetPlaylists,
    GetPlaylistVideos,
    GetSubscriptions,
    GetWatchLater,
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
)
from ..models import (
    CHANNEL_LIST,
    PLAYLIST_LIST,
    VIDEO_LIST,
    WATCH_LATER_PLAYLIST_ID,
    Channel,
    Playlist,
    Video,
)
from ..utils import parse_relative_time
from .overlays import OverlayStore

logger = logging.getLogger(__name__)

NEW_BADGE_AGE = timedelta(hours=12)
MAX_TOASTS = 5
PENDING_PLAYLIST_PREFIX = "pending-"

T = TypeVar("T")


class RelayChannel(Protocol):
    async def request(self, message: RelayMessage) -> RelayResponse: ...


class Tab(str, Enum):
    WATCH_LATER = "watch_later"
    SUBSCRIPTIONS = "subscriptions"
    CHANNELS = "channels"
    PLAYLISTS = "playlists"


class MutationKind(str, Enum):
    DELETE_VIDEOS = "delete_videos"
    MOVE_TO_TOP = "move_to_top"
    MOVE_TO_BOTTOM = "move_to_bottom"
    MOVE_TO_PLAYLIST = "move_to_playlist"
    ADD_TO_PLAYLIST = "add_to_playlist"
    ADD_TO_WATCH_LATER = "add_to_watch_later"
    UNSUBSCRIBE = "unsubscribe"
    RESUBSCRIBE = "resubscribe"
    CREATE_PLAYLIST = "create_playlist"
    DELETE_PLAYLIST = "delete_playlist"
    RENAME_PLAYLIST = "rename_playlist"
    RESTORE_VIDEOS = "restore_videos"


@dataclass(slots=True)
class Toast:
    message: str
    level: str = "info"


@dataclass(slots=True)
class PendingMutation:
    """An applied change that can still be undone."""

    kind: MutationKind
    affected_ids: tuple[str, ...]
    snapshot: Any
    timestamp: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    focus_index: int = 0
    selection: frozenset[str] = frozenset()


class UndoHistory:
    """Bounded LIFO of pending mutations; the oldest entry falls off silently."""

    def __init__(self, limit: int = 50):
        self._entries: deque[PendingMutation] = deque(maxlen=limit)

    def push(self, entry: PendingMutation) -> None:
        self._entries.append(entry)

    def pop(self) -> PendingMutation | None:
        return self._entries.pop() if self._entries else None

    def peek(self) -> PendingMutation | None:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))


@dataclass(slots=True)
class MutationOutcome:
    kind: MutationKind
    attempted: int = 0
    failed: int = 0
    auth_failed: bool = False
    data: Any = None

    @property
    def ok(self) -> bool:
        return self.failed == 0


@dataclass(slots=True)
class ChannelPreview:
    """Recent uploads of one channel plus related channels not yet followed."""

    channel_id: str
    videos: list[Video] = field(default_factory=list)
    similar: list[Channel] = field(default_factory=list)
    videos_failed: bool = False


@dataclass(slots=True)
class ViewModel:
    """Everything a surface needs to render the current state."""

    tab: Tab = Tab.WATCH_LATER
    focus_index: int = 0
    selection: set[str] = field(default_factory=set)
    watch_later: list[Video] = field(default_factory=list)
    subscriptions: list[Video] = field(default_factory=list)
    channels: list[Channel] = field(default_factory=list)
    playlists: list[Playlist] = field(default_factory=list)
    open_playlist_id: str | None = None
    open_playlist: list[Video] = field(default_factory=list)
    subscriptions_exhausted: bool = False
    channels_exhausted: bool = False
    hide_watched: bool = False
    loading: bool = False
    toasts: list[Toast] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "tab": self.tab.value,
            "focusIndex": self.focus_index,
            "selection": sorted(self.selection),
            "watchLater": VIDEO_LIST.dump_python(self.watch_later, mode="json"),
            "subscriptions": VIDEO_LIST.dump_python(self.subscriptions, mode="json"),
            "channels": CHANNEL_LIST.dump_python(self.channels, mode="json"),
            "playlists": PLAYLIST_LIST.dump_python(self.playlists, mode="json"),
            "openPlaylistId": self.open_playlist_id,
            "openPlaylist": VIDEO_LIST.dump_python(self.open_playlist, mode="json"),
            "subscriptionsExhausted": self.subscriptions_exhausted,
            "channelsExhausted": self.channels_exhausted,
            "hideWatched": self.hide_watched,
            "loading": self.loading,
            "toasts": [{"message": toast.message, "level": toast.level} for toast in self.toasts],
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_auth_failure(response: RelayResponse) -> bool:
    return response.error_kind == "Unauthenticated"


class OptimisticMutationCoordinator:
    """Own the view model and every user-initiated change to it."""

    def __init__(
        self,
        channel: RelayChannel,
        overlays: OverlayStore,
        settings: Settings,
        *,
        on_change: Callable[[ViewModel], None] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._channel = channel
        self._overlays = overlays
        self._settings = settings
        self._on_change = on_change
        self._clock = clock
        self.view = ViewModel()
        self.history = UndoHistory(settings.undo_limit)
        self._tasks: set[asyncio.Task[Any]] = set()
        self._loading_more: dict[Tab, asyncio.Task[int]] = {}
        self._placeholder_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _render(self) -> None:
        if self._on_change is not None:
            self._on_change(self.view)

    def notify(self, message: str, level: str = "info") -> None:
        self.view.toasts.append(Toast(message, level))
        del self.view.toasts[:-MAX_TOASTS]
        log = logger.warning if level == "error" else logger.info
        log("%s", message)
        self._render()

    def dismiss_toasts(self) -> None:
        if self.view.toasts:
            self.view.toasts.clear()
            self._render()

    def _notify_failure(self, outcome: MutationOutcome, noun: str) -> None:
        if outcome.auth_failed:
            self.notify(AUTH_EXPIRED_MESSAGE, "error")
        elif outcome.attempted > 1:
            self.notify(f"Failed to {noun} {outcome.failed} of {outcome.attempted} items. Try again.", "error")
        else:
            self.notify(f"Failed to {noun}. Try again.", "error")

    def _spawn(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every background task (including ones they start) finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _request(self, message: RelayMessage) -> RelayResponse:
        return await self._channel.request(message)

    def _failure_toast(self, response: RelayResponse, what: str) -> None:
        if _is_auth_failure(response):
            self.notify(AUTH_EXPIRED_MESSAGE, "error")
        else:
            logger.warning("Failed to %s: %s", what, response.error)
            self.notify(f"Failed to {what}. Try again.", "error")

    async def _run_all(
        self, kind: MutationKind, messages: Iterable[RelayMessage], *, skipped: int = 0
    ) -> MutationOutcome:
        responses = await asyncio.gather(*(self._request(message) for message in messages))
        return self._reconcile(kind, responses, skipped=skipped)

    @staticmethod
    def _reconcile(
        kind: MutationKind, responses: Iterable[RelayResponse], *, skipped: int = 0
    ) -> MutationOutcome:
        outcome = MutationOutcome(kind=kind, attempted=skipped, failed=skipped)
        for response in responses:
            outcome.attempted += 1
            if response.success or response.is_conflict:
                continue
            outcome.failed += 1
            outcome.auth_failed = outcome.auth_failed or _is_auth_failure(response)
        return outcome

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def _active_list(self) -> tuple[str, list[Video]]:
        if self.view.tab is Tab.PLAYLISTS and self.view.open_playlist_id:
            return self.view.open_playlist_id, self.view.open_playlist
        return WATCH_LATER_PLAYLIST_ID, self.view.watch_later

    def _set_list(self, playlist_id: str, videos: list[Video]) -> None:
        if playlist_id == WATCH_LATER_PLAYLIST_ID:
            self.view.watch_later = videos
        if playlist_id == self.view.open_playlist_id:
            self.view.open_playlist = videos

    def _videos_for_tab(self) -> list[Video]:
        if self.view.tab is Tab.SUBSCRIPTIONS:
            return self.view.subscriptions
        if self.view.tab is Tab.PLAYLISTS:
            return self.view.open_playlist if self.view.open_playlist_id else []
        if self.view.tab is Tab.WATCH_LATER:
            return self.view.watch_later
        return []

    def effective(self, video: Video) -> Video:
        return self._overlays.apply(video)

    def visible_videos(self) -> list[Video]:
        """Videos of the current tab with overrides applied and filters honoured."""

        visible: list[Video] = []
        for video in self._videos_for_tab():
            if video.id in self._overlays.hidden:
                continue
            if self.view.hide_watched and self._overlays.is_watched(video):
                continue
            visible.append(self._overlays.apply(video))
        return visible

    def _targets(self, video_ids: Iterable[str] | None) -> list[str]:
        if video_ids is not None:
            return list(dict.fromkeys(video_ids))
        if self.view.selection:
            return list(self.view.selection)
        visible = self.visible_videos()
        if 0 <= self.view.focus_index < len(visible):
            return [visible[self.view.focus_index].id]
        return []

    def _find_playlist(self, playlist_id: str) -> Playlist | None:
        for playlist in self.view.playlists:
            if playlist.id == playlist_id:
                return playlist
        return None

    def _bump_playlist_count(self, playlist_id: str, delta: int) -> None:
        self.view.playlists = [
            playlist.model_copy(update={"video_count": max(0, playlist.video_count + delta)})
            if playlist.id == playlist_id
            else playlist
            for playlist in self.view.playlists
        ]

    def sorted_playlists(self) -> list[Playlist]:
        """Quick-move playlists first by slot number, then the rest by title."""

        slots = {playlist_id: slot for slot, playlist_id in self._overlays.quick_move.items()}

        def order(playlist: Playlist) -> tuple[int, int, str]:
            slot = slots.get(playlist.id)
            if slot is not None:
                return (0, slot, "")
            return (1, 0, playlist.title.casefold())

        return sorted(self.view.playlists, key=order)

    def _checkpoint(
        self,
        kind: MutationKind,
        affected_ids: Iterable[str],
        snapshot: Any,
        payload: dict[str, Any] | None = None,
    ) -> PendingMutation:
        return PendingMutation(
            kind=kind,
            affected_ids=tuple(affected_ids),
            snapshot=snapshot,
            timestamp=self._clock(),
            payload=payload or {},
            focus_index=self.view.focus_index,
            selection=frozenset(self.view.selection),
        )

    def _restore_cursor(self, entry: PendingMutation) -> None:
        self.view.selection = set(entry.selection)
        count = len(self.visible_videos())
        self.view.focus_index = max(0, min(entry.focus_index, count - 1)) if count else 0

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_all(self) -> None:
        """Load overlays and every list, then derive channel activity."""

        self.view.loading = True
        self._render()
        await self._overlays.load()
        self.view.hide_watched = self._overlays.hide_watched

        watch_later, subscriptions, channels, playlists = await asyncio.gather(
            self._request(GetWatchLater()),
            self._request(GetSubscriptions()),
            self._request(GetChannels()),
            self._request(GetPlaylists()),
        )

        if watch_later.success:
            self.view.watch_later = VIDEO_LIST.validate_python(watch_later.data or [])
        else:
            self._failure_toast(watch_later, "load Watch Later")
        if subscriptions.success:
            self.view.subscriptions = VIDEO_LIST.validate_python(subscriptions.data or [])
            self.view.subscriptions_exhausted = False
        else:
            self._failure_toast(subscriptions, "load subscriptions")
        if channels.success:
            self.view.channels = CHANNEL_LIST.validate_python(channels.data or [])
            self.view.channels_exhausted = False
        else:
            self._failure_toast(channels, "load channels")
        if playlists.success:
            self.view.playlists = PLAYLIST_LIST.validate_python(playlists.data or [])
        else:
            self._failure_toast(playlists, "load playlists")

        if watch_later.success:
            loaded = {video.id for video in self.view.watch_later}
            loaded.update(video.id for video in self.view.subscriptions)
            loaded.update(video.id for video in self.view.open_playlist)
            if self._overlays.prune_watched(loaded):
                await self._overlays.save_watched()

        self._recompute_channel_activity()
        self.view.loading = False
        self.view.focus_index = min(self.view.focus_index, max(0, len(self.visible_videos()) - 1))
        logger.info(
            "Loaded %s Watch Later, %s subscription videos, %s channels, %s playlists",
            len(self.view.watch_later),
            len(self.view.subscriptions),
            len(self.view.channels),
            len(self.view.playlists),
        )
        self._render()

    async def load_more_subscriptions(self) -> int:
        """Append the next feed page; callers arriving mid-request share its result."""

        if self.view.subscriptions_exhausted:
            return 0
        return await self._load_more(Tab.SUBSCRIPTIONS, self._fetch_more_subscriptions)

    async def load_more_channels(self) -> int:
        if self.view.channels_exhausted:
            return 0
        return await self._load_more(Tab.CHANNELS, self._fetch_more_channels)

    async def _load_more(self, stream: Tab, fetch: Callable[[], Coroutine[Any, Any, int]]) -> int:
        task = self._loading_more.get(stream)
        if task is None or task.done():
            task = self._spawn(fetch())
            self._loading_more[stream] = task
        return await asyncio.shield(task)

    async def _fetch_more_subscriptions(self) -> int:
        response = await self._request(GetMoreSubscriptions())
        if not response.success:
            self._failure_toast(response, "load more subscriptions")
            return 0
        page = VIDEO_LIST.validate_python(response.data or [])
        if not page:
            self.view.subscriptions_exhausted = True
        known = {video.id for video in self.view.subscriptions}
        fresh = [video for video in page if video.id not in known]
        self.view.subscriptions = self.view.subscriptions + fresh
        self._recompute_channel_activity()
        self._render()
        return len(fresh)

    async def _fetch_more_channels(self) -> int:
        response = await self._request(GetMoreChannels())
        if not response.success:
            self._failure_toast(response, "load more channels")
            return 0
        page = CHANNEL_LIST.validate_python(response.data or [])
        if not page:
            self.view.channels_exhausted = True
        known = {channel.id for channel in self.view.channels}
        fresh = [channel for channel in page if channel.id not in known]
        self.view.channels = self.view.channels + fresh
        self._recompute_channel_activity()
        self._render()
        return len(fresh)

    async def channel_preview(self, channel_id: str) -> ChannelPreview:
        """Fetch a channel's uploads and related channels in parallel."""

        uploads, suggestions = await asyncio.gather(
            self._request(GetChannelVideos(channel_id=channel_id)),
            self._request(GetChannelSuggestions(channel_id=channel_id)),
        )
        preview = ChannelPreview(channel_id=channel_id)
        if uploads.success:
            preview.videos = VIDEO_LIST.validate_python(uploads.data or [])
        else:
            preview.videos_failed = True
            self._failure_toast(uploads, "load channel videos")
        if suggestions.success:
            preview.similar = self._not_followed(suggestions)
        else:
            logger.warning("Could not load channels similar to %s: %s", channel_id, suggestions.error)
        return preview

    async def similar_channels(self, channel_id: str) -> list[Channel]:
        response = await self._request(GetChannelSuggestions(channel_id=channel_id))
        if not response.success:
            self._failure_toast(response, "load similar channels")
            return []
        return self._not_followed(response)

    def _not_followed(self, response: RelayResponse) -> list[Channel]:
        followed = {channel.id for channel in self.view.channels}
        return [
            channel for channel in CHANNEL_LIST.validate_python(response.data or []) if channel.id not in followed
        ]

    async def open_playlist(self, playlist_id: str) -> None:
        response = await self._request(GetPlaylistVideos(playlist_id=playlist_id))
        if not response.success:
            self._failure_toast(response, "open playlist")
            return
        self.view.tab = Tab.PLAYLISTS
        self.view.open_playlist_id = playlist_id
        self.view.open_playlist = VIDEO_LIST.validate_python(response.data or [])
        self.view.selection.clear()
        self.view.focus_index = 0
        self._render()

    def close_playlist(self) -> None:
        self.view.open_playlist_id = None
        self.view.open_playlist = []
        self.view.selection.clear()
        self.view.focus_index = 0
        self._render()

    async def _refresh_list(self, playlist_id: str) -> None:
        if playlist_id == WATCH_LATER_PLAYLIST_ID:
            response = await self._request(GetWatchLater())
        else:
            response = await self._request(GetPlaylistVideos(playlist_id=playlist_id))
        if response.success:
            self._set_list(playlist_id, VIDEO_LIST.validate_python(response.data or []))
            self._render()
        else:
            logger.warning("Could not refresh %s: %s", playlist_id, response.error)

    def _recompute_channel_activity(self) -> None:
        """Set each channel's last upload time from the newest known video."""

        now = self._clock()
        latest: dict[str, tuple[datetime, str]] = {}
        for video in self.view.subscriptions:
            if not video.channel_id:
                continue
            published = parse_relative_time(video.published_at_text, now=now)
            if published is None:
                continue
            current = latest.get(video.channel_id)
            if current is None or published > current[0]:
                latest[video.channel_id] = (published, video.published_at_text)

        updated: list[Channel] = []
        for channel in self.view.channels:
            timestamp: datetime | None = None
            text = channel.last_upload_text
            if channel.id in latest:
                timestamp, text = latest[channel.id]
            elif text and text.strip().lower() == "new":
                timestamp = now - NEW_BADGE_AGE
            elif text:
                timestamp = parse_relative_time(text, now=now)
            updated.append(
                channel.model_copy(update={"last_upload_timestamp": timestamp, "last_upload_text": text})
            )
        self.view.channels = updated

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def switch_tab(self, tab: Tab) -> None:
        self.view.tab = Tab(tab)
        self.view.selection.clear()
        self.view.focus_index = 0
        self._render()

    def toggle_selection(self, video_id: str) -> bool:
        if video_id in self.view.selection:
            self.view.selection.discard(video_id)
            selected = False
        else:
            self.view.selection.add(video_id)
            selected = True
        self._render()
        return selected

    def focus(self, index: int) -> int:
        count = len(self.visible_videos())
        self.view.focus_index = max(0, min(index, count - 1)) if count else 0
        self._render()
        return self.view.focus_index

    # ------------------------------------------------------------------
    # Video mutations
    # ------------------------------------------------------------------

    def delete_videos(self, video_ids: Iterable[str] | None = None) -> asyncio.Task[MutationOutcome] | None:
        """Remove videos from Watch Later or the open playlist."""

        playlist_id, current = self._active_list()
        targets = set(self._targets(video_ids))
        removed = [video for video in current if video.id in targets]
        if not removed:
            return None

        entry = self._checkpoint(
            MutationKind.DELETE_VIDEOS,
            (video.id for video in removed),
            list(current),
            {"playlist_id": playlist_id},
        )
        self._set_list(playlist_id, [video for video in current if video.id not in targets])
        self.view.selection.difference_update(targets)
        self.history.push(entry)
        if playlist_id != WATCH_LATER_PLAYLIST_ID:
            self._bump_playlist_count(playlist_id, -len(removed))
        self._render()
        return self._spawn(self._remove_remote(playlist_id, removed))

    def _remove_message(self, playlist_id: str, video: Video) -> RelayMessage:
        if playlist_id == WATCH_LATER_PLAYLIST_ID:
            return RemoveFromWatchLater(video_id=video.id, set_video_id=video.playlist_item_id)
        return RemoveFromPlaylist(
            playlist_id=playlist_id, video_id=video.id, set_video_id=video.playlist_item_id
        )

    async def _remove_remote(self, playlist_id: str, videos: list[Video]) -> MutationOutcome:
        removable = [video for video in videos if video.playlist_item_id]
        skipped = len(videos) - len(removable)
        outcome = await self._run_all(
            MutationKind.DELETE_VIDEOS,
            (self._remove_message(playlist_id, video) for video in removable),
            skipped=skipped,
        )
        if not outcome.ok:
            self._notify_failure(outcome, "remove")
        return outcome

    def move_to_top(self, video_id: str | None = None) -> asyncio.Task[MutationOutcome] | None:
        return self._move(MutationKind.MOVE_TO_TOP, video_id)

    def move_to_bottom(self, video_id: str | None = None) -> asyncio.Task[MutationOutcome] | None:
        playlist_id, _ = self._active_list()
        if playlist_id != WATCH_LATER_PLAYLIST_ID:
            self.notify("Move to bottom is only available in Watch Later.", "warning")
            return None
        return self._move(MutationKind.MOVE_TO_BOTTOM, video_id)

    def _move(self, kind: MutationKind, video_id: str | None) -> asyncio.Task[MutationOutcome] | None:
        """Move every target to one end of the active list, keeping their relative order."""

        playlist_id, current = self._active_list()
        targets = set(self._targets([video_id] if video_id else None))
        moving = [video for video in current if video.id in targets]
        if not moving:
            return None

        entry = self._checkpoint(kind, (video.id for video in moving), list(current), {"playlist_id": playlist_id})
        messages, skipped = self._move_messages(kind, playlist_id, current, moving)
        rest = [video for video in current if video.id not in targets]
        to_top = kind is MutationKind.MOVE_TO_TOP
        self._set_list(playlist_id, [*moving, *rest] if to_top else [*rest, *moving])
        self.history.push(entry)
        self.view.selection.clear()
        self.view.focus_index = 0 if to_top else max(0, len(self.visible_videos()) - 1)
        self._render()
        return self._spawn(self._move_remote(kind, messages, skipped=skipped))

    @staticmethod
    def _move_messages(
        kind: MutationKind, playlist_id: str, current: list[Video], moving: list[Video]
    ) -> tuple[list[RelayMessage], int]:
        """Build one request per video, each anchored to its neighbour at that step."""

        to_top = kind is MutationKind.MOVE_TO_TOP
        order = list(current)
        messages: list[RelayMessage] = []
        skipped = 0
        for video in reversed(moving) if to_top else moving:
            others = [item for item in order if item.id != video.id]
            order = [video, *others] if to_top else [*others, video]
            if not video.playlist_item_id:
                skipped += 1
                continue
            if not to_top:
                last = others[-1].playlist_item_id if others else None
                messages.append(MoveToBottom(set_video_id=video.playlist_item_id, last_set_video_id=last))
            elif playlist_id == WATCH_LATER_PLAYLIST_ID:
                first = others[0].playlist_item_id if others else None
                messages.append(MoveToTop(set_video_id=video.playlist_item_id, first_set_video_id=first))
            elif others and others[0].playlist_item_id:
                messages.append(
                    MovePlaylistVideo(
                        playlist_id=playlist_id,
                        set_video_id=video.playlist_item_id,
                        target_set_video_id=others[0].playlist_item_id,
                    )
                )
        return messages, skipped

    async def _move_remote(
        self, kind: MutationKind, messages: list[RelayMessage], *, skipped: int = 0
    ) -> MutationOutcome:
        # Each anchor assumes the previous move already landed.
        responses = [await self._request(message) for message in messages]
        outcome = self._reconcile(kind, responses, skipped=skipped)
        if not outcome.ok:
            self._notify_failure(outcome, "move")
        return outcome

    def move_to_playlist(
        self, target_playlist_id: str, video_ids: Iterable[str] | None = None
    ) -> asyncio.Task[MutationOutcome] | None:
        """Add videos to ``target_playlist_id`` and remove them from the active list."""

        source_id, current = self._active_list()
        if target_playlist_id == source_id:
            return None
        targets = set(self._targets(video_ids))
        moving = [video for video in current if video.id in targets]
        if not moving:
            return None

        entry = self._checkpoint(
            MutationKind.MOVE_TO_PLAYLIST,
            (video.id for video in moving),
            list(current),
            {"playlist_id": source_id, "target_playlist_id": target_playlist_id},
        )
        self._set_list(source_id, [video for video in current if video.id not in targets])
        self.view.selection.difference_update(targets)
        self._bump_playlist_count(target_playlist_id, len(moving))
        if source_id != WATCH_LATER_PLAYLIST_ID:
            self._bump_playlist_count(source_id, -len(moving))
        self.history.push(entry)
        self._render()
        return self._spawn(self._move_to_playlist_remote(source_id, target_playlist_id, moving))

    async def _move_one(self, source_id: str, target_id: str, video: Video) -> RelayResponse:
        added = await self._request(AddToPlaylist(playlist_id=target_id, video_id=video.id))
        if not (added.success or added.is_conflict):
            return added
        if not video.playlist_item_id:
            return RelayResponse.failure(f"{video.id} has no playlist item handle")
        return await self._request(self._remove_message(source_id, video))

    async def _move_to_playlist_remote(
        self, source_id: str, target_id: str, videos: list[Video]
    ) -> MutationOutcome:
        responses = await asyncio.gather(*(self._move_one(source_id, target_id, video) for video in videos))
        outcome = self._reconcile(MutationKind.MOVE_TO_PLAYLIST, responses)
        if not outcome.ok:
            self._notify_failure(outcome, "move")
        return outcome

    def add_to_playlist(
        self, target_playlist_id: str, video_ids: Iterable[str] | None = None
    ) -> asyncio.Task[MutationOutcome] | None:
        targets = self._targets(video_ids)
        if not targets:
            return None
        self._bump_playlist_count(target_playlist_id, len(targets))
        self._render()
        return self._spawn(
            self._add_remote(
                MutationKind.ADD_TO_PLAYLIST,
                [AddToPlaylist(playlist_id=target_playlist_id, video_id=video_id) for video_id in targets],
            )
        )

    def add_to_watch_later(self, video_ids: Iterable[str] | None = None) -> asyncio.Task[MutationOutcome] | None:
        """Queue videos at the front of Watch Later; the list is refreshed for handles afterwards."""

        targets = self._targets(video_ids)
        if not targets:
            return None
        queued = {video.id for video in self.view.watch_later}
        added = [
            video.model_copy(update={"playlist_item_id": None})
            for video in (self._find_video(video_id) for video_id in targets)
            if video is not None and video.id not in queued
        ]
        self.view.watch_later = [*added, *self.view.watch_later]
        self.view.selection.clear()
        self._render()
        return self._spawn(
            self._add_to_watch_later_remote([AddToWatchLater(video_id=video_id) for video_id in targets])
        )

    async def _add_to_watch_later_remote(self, messages: list[RelayMessage]) -> MutationOutcome:
        outcome = await self._add_remote(MutationKind.ADD_TO_WATCH_LATER, messages)
        if outcome.failed < outcome.attempted:
            await self._refresh_list(WATCH_LATER_PLAYLIST_ID)
        return outcome

    def toggle_watch_later(self, video_id: str | None = None) -> asyncio.Task[MutationOutcome] | None:
        """Remove the video from Watch Later when it is queued there, otherwise add it."""

        if video_id is None:
            visible = self.visible_videos()
            if not 0 <= self.view.focus_index < len(visible):
                return None
            video_id = visible[self.view.focus_index].id
        queued = next((video for video in self.view.watch_later if video.id == video_id), None)
        if queued is None:
            return self.add_to_watch_later([video_id])
        self.view.watch_later = [video for video in self.view.watch_later if video.id != video_id]
        self._render()
        return self._spawn(self._dequeue_remote(queued))

    async def _dequeue_remote(self, video: Video) -> MutationOutcome:
        outcome = await self._remove_remote(WATCH_LATER_PLAYLIST_ID, [video])
        if outcome.ok:
            self.notify("Removed from Watch Later.")
        return outcome

    async def _add_remote(self, kind: MutationKind, messages: list[RelayMessage]) -> MutationOutcome:
        outcome = await self._run_all(kind, messages)
        if outcome.ok:
            noun = "video" if outcome.attempted == 1 else "videos"
            self.notify(f"Added {outcome.attempted} {noun}.")
        else:
            self._notify_failure(outcome, "add")
        return outcome

    # ------------------------------------------------------------------
    # Channel and playlist mutations
    # ------------------------------------------------------------------

    def unsubscribe(self, channel_id: str) -> asyncio.Task[MutationOutcome] | None:
        index = next((i for i, channel in enumerate(self.view.channels) if channel.id == channel_id), None)
        if index is None:
            return None
        channel = self.view.channels[index]
        self.history.push(
            self._checkpoint(MutationKind.UNSUBSCRIBE, (channel_id,), {"channel": channel, "index": index})
        )
        self.view.channels = [c for c in self.view.channels if c.id != channel_id]
        self._render()
        return self._spawn(self._single(MutationKind.UNSUBSCRIBE, Unsubscribe(channel_id=channel_id), "unsubscribe"))

    async def _single(self, kind: MutationKind, message: RelayMessage, noun: str) -> MutationOutcome:
        outcome = await self._run_all(kind, [message])
        if not outcome.ok:
            self._notify_failure(outcome, noun)
        return outcome

    def create_playlist(self, title: str) -> asyncio.Task[MutationOutcome] | None:
        title = title.strip()
        if not title:
            return None
        placeholder = Playlist(id=f"{PENDING_PLAYLIST_PREFIX}{next(self._placeholder_ids)}", title=title)
        self.view.playlists = [placeholder, *self.view.playlists]
        self._render()
        return self._spawn(self._create_remote(placeholder))

    async def _create_remote(self, placeholder: Playlist) -> MutationOutcome:
        response = await self._request(CreatePlaylist(title=placeholder.title))
        outcome = self._reconcile(MutationKind.CREATE_PLAYLIST, [response])
        new_id = response.data.get("playlistId") if isinstance(response.data, dict) else None
        if response.success and isinstance(new_id, str) and new_id:
            self.view.playlists = [
                playlist.model_copy(update={"id": new_id}) if playlist.id == placeholder.id else playlist
                for playlist in self.view.playlists
            ]
            outcome.data = new_id
            self._render()
            return outcome

        self.view.playlists = [playlist for playlist in self.view.playlists if playlist.id != placeholder.id]
        if outcome.ok:
            outcome.failed = 1
        self._notify_failure(outcome, "create playlist")
        return outcome

    def delete_playlist(self, playlist_id: str) -> asyncio.Task[MutationOutcome] | None:
        if self._find_playlist(playlist_id) is None:
            return None
        self.view.playlists = [playlist for playlist in self.view.playlists if playlist.id != playlist_id]
        if self.view.open_playlist_id == playlist_id:
            self.view.open_playlist_id = None
            self.view.open_playlist = []
        if self._overlays.forget_playlist(playlist_id):
            self._spawn(self._overlays.save_quick_move())
        self._render()
        return self._spawn(
            self._single(MutationKind.DELETE_PLAYLIST, DeletePlaylist(playlist_id=playlist_id), "delete playlist")
        )

    def rename_playlist(self, playlist_id: str, title: str) -> asyncio.Task[MutationOutcome] | None:
        title = title.strip()
        playlist = self._find_playlist(playlist_id)
        if playlist is None or not title or title == playlist.title:
            return None
        self.history.push(
            self._checkpoint(MutationKind.RENAME_PLAYLIST, (playlist_id,), playlist.title, {"title": title})
        )
        self._retitle(playlist_id, title)
        self._render()
        return self._spawn(
            self._single(
                MutationKind.RENAME_PLAYLIST,
                RenamePlaylist(playlist_id=playlist_id, new_title=title),
                "rename playlist",
            )
        )

    def _retitle(self, playlist_id: str, title: str) -> None:
        self.view.playlists = [
            playlist.model_copy(update={"title": title}) if playlist.id == playlist_id else playlist
            for playlist in self.view.playlists
        ]

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    def undo(self) -> asyncio.Task[MutationOutcome] | None:
        """Revert the most recent undoable change."""

        entry = self.history.pop()
        if entry is None:
            self.notify("Nothing to undo.")
            return None

        if entry.kind in (MutationKind.MOVE_TO_TOP, MutationKind.MOVE_TO_BOTTOM):
            self._set_list(entry.payload["playlist_id"], list(entry.snapshot))
            self._restore_cursor(entry)
            self._render()
            return None

        if entry.kind in (MutationKind.DELETE_VIDEOS, MutationKind.MOVE_TO_PLAYLIST):
            playlist_id = entry.payload["playlist_id"]
            restored = [video for video in entry.snapshot if video.id in entry.affected_ids]
            self._set_list(playlist_id, list(entry.snapshot))
            if playlist_id != WATCH_LATER_PLAYLIST_ID:
                self._bump_playlist_count(playlist_id, len(restored))
            target = entry.payload.get("target_playlist_id")
            if target:
                self._bump_playlist_count(target, -len(restored))
            self._restore_cursor(entry)
            self._render()
            return self._spawn(self._restore_remote(playlist_id, restored))

        if entry.kind is MutationKind.UNSUBSCRIBE:
            channel: Channel = entry.snapshot["channel"]
            index: int = entry.snapshot["index"]
            channels = [c for c in self.view.channels if c.id != channel.id]
            channels.insert(min(index, len(channels)), channel)
            self.view.channels = channels
            self._restore_cursor(entry)
            self._render()
            return self._spawn(self._resubscribe(entry))

        if entry.kind is MutationKind.RENAME_PLAYLIST:
            playlist_id = entry.affected_ids[0]
            self._retitle(playlist_id, entry.snapshot)
            self._restore_cursor(entry)
            self._render()
            return self._spawn(self._rename_back(entry))

        logger.warning("No inverse for %s", entry.kind)
        return None

    async def _restore_remote(self, playlist_id: str, videos: list[Video]) -> MutationOutcome:
        outcome = await self._run_all(
            MutationKind.RESTORE_VIDEOS,
            (AddToPlaylist(playlist_id=playlist_id, video_id=video.id) for video in videos),
        )
        if outcome.ok:
            await self._refresh_list(playlist_id)
        else:
            self._notify_failure(outcome, "restore")
        return outcome

    async def _resubscribe(self, entry: PendingMutation) -> MutationOutcome:
        channel: Channel = entry.snapshot["channel"]
        outcome = await self._run_all(MutationKind.RESUBSCRIBE, [Subscribe(channel_id=channel.id)])
        if not outcome.ok:
            self.view.channels = [c for c in self.view.channels if c.id != channel.id]
            self.history.push(entry)
            self._notify_failure(outcome, "resubscribe")
        return outcome

    async def _rename_back(self, entry: PendingMutation) -> MutationOutcome:
        playlist_id = entry.affected_ids[0]
        outcome = await self._run_all(
            MutationKind.RENAME_PLAYLIST,
            [RenamePlaylist(playlist_id=playlist_id, new_title=entry.snapshot)],
        )
        if not outcome.ok:
            self._retitle(playlist_id, entry.payload["title"])
            self.history.push(entry)
            self._notify_failure(outcome, "undo rename")
        return outcome

    # ------------------------------------------------------------------
    # Overlays
    # ------------------------------------------------------------------

    def _find_video(self, video_id: str) -> Video | None:
        for videos in (self.view.watch_later, self.view.open_playlist, self.view.subscriptions):
            for video in videos:
                if video.id == video_id:
                    return video
        return None

    def toggle_watched(self, video_id: str | None = None) -> asyncio.Task[None] | None:
        targets = self._targets([video_id] if video_id else None)
        if not targets:
            return None
        for target in targets:
            video = self._find_video(target)
            current = self._overlays.is_watched(video) if video else target in self._overlays.watched
            self._overlays.set_watched(target, not current)
        self._render()
        return self._spawn(self._overlays.save_watched())

    def clear_watched_override(self, video_id: str) -> asyncio.Task[None] | None:
        if not self._overlays.clear_watched(video_id):
            return None
        self._render()
        return self._spawn(self._overlays.save_watched())

    def set_hide_watched(self, enabled: bool) -> asyncio.Task[None]:
        self._overlays.hide_watched = enabled
        self.view.hide_watched = enabled
        self.view.focus_index = min(self.view.focus_index, max(0, len(self.visible_videos()) - 1))
        self._render()
        return self._spawn(self._overlays.save_hide_watched())

    def hide_video(self, video_id: str) -> asyncio.Task[None]:
        self._overlays.hidden.add(video_id)
        self.view.selection.discard(video_id)
        self._render()
        return self._spawn(self._overlays.save_hidden())

    def unhide_video(self, video_id: str) -> asyncio.Task[None] | None:
        if video_id not in self._overlays.hidden:
            return None
        self._overlays.hidden.discard(video_id)
        self._render()
        return self._spawn(self._overlays.save_hidden())

    def assign_quick_move(self, slot: int, playlist_id: str | None) -> asyncio.Task[None]:
        self._overlays.assign_quick_move(slot, playlist_id)
        self._render()
        return self._spawn(self._overlays.save_quick_move())

    def playlist_for_quick_move(self, slot: int) -> Playlist | None:
        playlist_id = self._overlays.quick_move_target(slot)
        if playlist_id is None:
            return None
        return self._find_playlist(playlist_id)
