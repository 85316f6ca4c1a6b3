"""Pydantic models describing normalized platform entities."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

WATCH_LATER_PLAYLIST_ID = "WL"
LIKED_PLAYLIST_ID = "LL"
RESERVED_PLAYLIST_IDS: frozenset[str] = frozenset(
    {WATCH_LATER_PLAYLIST_ID, LIKED_PLAYLIST_ID}
)
WATCHED_THRESHOLD_PERCENT = 90


def default_video_thumbnail(video_id: str) -> str:
    return f"https://i.ytimg.com/vi/{video_id}/mqdefault.jpg"


class Video(BaseModel):
    """A single video, optionally carrying its playlist membership handle."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["video"] = "video"
    id: str
    title: str = "Unknown"
    channel_name: str = "Unknown"
    channel_id: str = ""
    thumbnail_url: str = ""
    duration: str = ""
    published_at_text: str = ""
    playlist_item_id: str | None = None
    watched: bool = False
    watched_progress: int = Field(default=0, ge=0, le=100)

    @property
    def platform_watched(self) -> bool:
        """Return whether the platform itself reports the video as watched."""

        return self.watched or self.watched_progress >= WATCHED_THRESHOLD_PERCENT


class Channel(BaseModel):
    """A channel the user is (or could be) subscribed to."""

    kind: Literal["channel"] = "channel"
    id: str
    name: str = "Unknown"
    thumbnail_url: str = ""
    subscriber_count_text: str = ""
    video_count_text: str = ""
    last_upload_text: str | None = None
    last_upload_timestamp: datetime | None = None


class Playlist(BaseModel):
    """A user playlist; Watch Later and Liked are never listed here."""

    kind: Literal["playlist"] = "playlist"
    id: str
    title: str = "Unknown"
    video_count: int = 0
    thumbnail_url: str | None = None


Entity = Annotated[Union[Video, Channel, Playlist], Field(discriminator="kind")]
EntityKind = Literal["video", "channel", "playlist"]

VIDEO_LIST = TypeAdapter(list[Video])
CHANNEL_LIST = TypeAdapter(list[Channel])
PLAYLIST_LIST = TypeAdapter(list[Playlist])


class StreamKind(str, Enum):
    """Logical result streams that can be paged with a continuation cursor."""

    SUBSCRIPTIONS = "subscriptions"
    CHANNELS = "channels"
    PLAYLIST = "playlist"

    @property
    def entity_kind(self) -> EntityKind:
        if self is StreamKind.CHANNELS:
            return "channel"
        return "video"


class Cursor(BaseModel):
    """Opaque continuation token bound to the stream it was issued for."""

    model_config = ConfigDict(frozen=True)

    token: str
    stream: StreamKind
    playlist_id: str | None = None


class Page(BaseModel):
    """One normalized response page and the cursor for the next one."""

    entities: list[Entity] = Field(default_factory=list)
    cursor: Cursor | None = None

    @property
    def exhausted(self) -> bool:
        return self.cursor is None
