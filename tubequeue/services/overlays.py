"""User-owned state layered over platform data and kept in the key-value store."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Collection

from pydantic import BaseModel, ValidationError

from ..models import Video
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

WATCHED_OVERRIDES_KEY = "watchedOverrides"
HIDDEN_VIDEOS_KEY = "hiddenVideos"
HIDE_WATCHED_KEY = "hideWatched"
QUICK_MOVE_KEY = "quickMoveAssignments"
QUICK_MOVE_SLOTS = range(1, 10)


class WatchedOverride(BaseModel):
    """Manual watched flag for one video and when it was set."""

    watched: bool
    timestamp: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OverlayStore:
    """Watched overrides, hidden videos, the hide-watched flag and quick-move slots."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        retention_days: int = 90,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._store = store
        self._retention = timedelta(days=retention_days)
        self._clock = clock
        self.watched: dict[str, WatchedOverride] = {}
        self.hidden: set[str] = set()
        self.hide_watched = False
        self.quick_move: dict[int, str] = {}

    async def load(self) -> None:
        raw = await self._store.get_many(
            [WATCHED_OVERRIDES_KEY, HIDDEN_VIDEOS_KEY, HIDE_WATCHED_KEY, QUICK_MOVE_KEY]
        )
        self.watched = self._parse_watched(raw.get(WATCHED_OVERRIDES_KEY))
        hidden = raw.get(HIDDEN_VIDEOS_KEY)
        self.hidden = {item for item in hidden if isinstance(item, str)} if isinstance(hidden, list) else set()
        self.hide_watched = bool(raw.get(HIDE_WATCHED_KEY, False))
        self.quick_move = self._parse_quick_move(raw.get(QUICK_MOVE_KEY))

    @staticmethod
    def _parse_watched(raw: Any) -> dict[str, WatchedOverride]:
        if not isinstance(raw, dict):
            return {}
        parsed: dict[str, WatchedOverride] = {}
        for video_id, value in raw.items():
            try:
                parsed[str(video_id)] = WatchedOverride.model_validate(value)
            except ValidationError:
                logger.warning("Dropping malformed watched override for %s", video_id)
        return parsed

    @staticmethod
    def _parse_quick_move(raw: Any) -> dict[int, str]:
        if not isinstance(raw, dict):
            return {}
        parsed: dict[int, str] = {}
        for slot, playlist_id in raw.items():
            try:
                number = int(slot)
            except (TypeError, ValueError):
                continue
            if number in QUICK_MOVE_SLOTS and isinstance(playlist_id, str) and playlist_id:
                parsed[number] = playlist_id
        return parsed

    async def save_watched(self) -> None:
        await self._store.set(
            WATCHED_OVERRIDES_KEY,
            {video_id: override.model_dump(mode="json") for video_id, override in self.watched.items()},
        )

    async def save_hidden(self) -> None:
        await self._store.set(HIDDEN_VIDEOS_KEY, sorted(self.hidden))

    async def save_hide_watched(self) -> None:
        await self._store.set(HIDE_WATCHED_KEY, self.hide_watched)

    async def save_quick_move(self) -> None:
        await self._store.set(
            QUICK_MOVE_KEY, {str(slot): playlist_id for slot, playlist_id in sorted(self.quick_move.items())}
        )

    # ------------------------------------------------------------------
    # Watched overrides
    # ------------------------------------------------------------------

    def set_watched(self, video_id: str, watched: bool) -> WatchedOverride:
        override = WatchedOverride(watched=watched, timestamp=self._clock())
        self.watched[video_id] = override
        return override

    def clear_watched(self, video_id: str) -> bool:
        return self.watched.pop(video_id, None) is not None

    def prune_watched(self, loaded_ids: Collection[str]) -> int:
        """Drop overrides older than the retention window for videos no longer loaded."""

        cutoff = self._clock() - self._retention
        stale = [
            video_id
            for video_id, override in self.watched.items()
            if video_id not in loaded_ids and override.timestamp < cutoff
        ]
        for video_id in stale:
            del self.watched[video_id]
        if stale:
            logger.debug("Pruned %s stale watched overrides", len(stale))
        return len(stale)

    def apply(self, video: Video) -> Video:
        """Return ``video`` with any watched override applied."""

        override = self.watched.get(video.id)
        if override is None:
            return video
        if override.watched:
            return video.model_copy(update={"watched": True, "watched_progress": 100})
        return video.model_copy(update={"watched": False})

    def is_watched(self, video: Video) -> bool:
        override = self.watched.get(video.id)
        if override is not None:
            return override.watched
        return video.platform_watched

    # ------------------------------------------------------------------
    # Quick-move slots
    # ------------------------------------------------------------------

    def assign_quick_move(self, slot: int, playlist_id: str | None) -> None:
        """Bind ``slot`` to ``playlist_id``; a playlist occupies at most one slot."""

        if slot not in QUICK_MOVE_SLOTS:
            raise ValueError(f"Quick-move slot must be between 1 and 9, got {slot}")
        if playlist_id is None:
            self.quick_move.pop(slot, None)
            return
        for other, assigned in list(self.quick_move.items()):
            if assigned == playlist_id and other != slot:
                del self.quick_move[other]
        self.quick_move[slot] = playlist_id

    def quick_move_target(self, slot: int) -> str | None:
        return self.quick_move.get(slot)

    def forget_playlist(self, playlist_id: str) -> bool:
        removed = [slot for slot, assigned in self.quick_move.items() if assigned == playlist_id]
        for slot in removed:
            del self.quick_move[slot]
        return bool(removed)
