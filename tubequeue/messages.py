"""Request and response shapes exchanged through the relay."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import DeliveryError, PlatformError, UnsupportedMessage


class RelayMessage(BaseModel):
    """Base for every message; payloads use camelCase keys on the wire."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class OpenDashboard(RelayMessage):
    type: Literal["OPEN_DASHBOARD"] = "OPEN_DASHBOARD"


class OpenSidePanel(RelayMessage):
    type: Literal["OPEN_SIDE_PANEL"] = "OPEN_SIDE_PANEL"


class Ping(RelayMessage):
    type: Literal["PING"] = "PING"


class GetWatchLater(RelayMessage):
    type: Literal["GET_WATCH_LATER"] = "GET_WATCH_LATER"


class GetSubscriptions(RelayMessage):
    type: Literal["GET_SUBSCRIPTIONS"] = "GET_SUBSCRIPTIONS"


class GetMoreSubscriptions(RelayMessage):
    type: Literal["GET_MORE_SUBSCRIPTIONS"] = "GET_MORE_SUBSCRIPTIONS"


class GetPlaylists(RelayMessage):
    type: Literal["GET_PLAYLISTS"] = "GET_PLAYLISTS"


class GetPlaylistVideos(RelayMessage):
    type: Literal["GET_PLAYLIST_VIDEOS"] = "GET_PLAYLIST_VIDEOS"
    playlist_id: str = Field(alias="playlistId", min_length=1)


class RemoveFromWatchLater(RelayMessage):
    type: Literal["REMOVE_FROM_WATCH_LATER"] = "REMOVE_FROM_WATCH_LATER"
    video_id: str = Field(alias="videoId")
    set_video_id: str = Field(alias="setVideoId", min_length=1)


class RemoveFromPlaylist(RelayMessage):
    type: Literal["REMOVE_FROM_PLAYLIST"] = "REMOVE_FROM_PLAYLIST"
    playlist_id: str = Field(alias="playlistId", min_length=1)
    video_id: str = Field(alias="videoId")
    set_video_id: str = Field(alias="setVideoId", min_length=1)


class AddToPlaylist(RelayMessage):
    type: Literal["ADD_TO_PLAYLIST"] = "ADD_TO_PLAYLIST"
    playlist_id: str = Field(alias="playlistId", min_length=1)
    video_id: str = Field(alias="videoId", min_length=1)


class AddToWatchLater(RelayMessage):
    type: Literal["ADD_TO_WATCH_LATER"] = "ADD_TO_WATCH_LATER"
    video_id: str = Field(alias="videoId", min_length=1)


class MoveToTop(RelayMessage):
    type: Literal["MOVE_TO_TOP"] = "MOVE_TO_TOP"
    set_video_id: str = Field(alias="setVideoId", min_length=1)
    first_set_video_id: str | None = Field(default=None, alias="firstSetVideoId")


class MoveToBottom(RelayMessage):
    type: Literal["MOVE_TO_BOTTOM"] = "MOVE_TO_BOTTOM"
    set_video_id: str = Field(alias="setVideoId", min_length=1)
    last_set_video_id: str | None = Field(default=None, alias="lastSetVideoId")


class MovePlaylistVideo(RelayMessage):
    type: Literal["MOVE_PLAYLIST_VIDEO"] = "MOVE_PLAYLIST_VIDEO"
    playlist_id: str = Field(alias="playlistId", min_length=1)
    set_video_id: str = Field(alias="setVideoId", min_length=1)
    target_set_video_id: str = Field(alias="targetSetVideoId", min_length=1)


class GetChannels(RelayMessage):
    type: Literal["GET_CHANNELS"] = "GET_CHANNELS"


class GetMoreChannels(RelayMessage):
    type: Literal["GET_MORE_CHANNELS"] = "GET_MORE_CHANNELS"


class Unsubscribe(RelayMessage):
    type: Literal["UNSUBSCRIBE"] = "UNSUBSCRIBE"
    channel_id: str = Field(alias="channelId", min_length=1)


class Subscribe(RelayMessage):
    type: Literal["SUBSCRIBE"] = "SUBSCRIBE"
    channel_id: str = Field(alias="channelId", min_length=1)


class GetChannelSuggestions(RelayMessage):
    type: Literal["GET_CHANNEL_SUGGESTIONS"] = "GET_CHANNEL_SUGGESTIONS"
    channel_id: str = Field(alias="channelId", min_length=1)


class GetChannelVideos(RelayMessage):
    type: Literal["GET_CHANNEL_VIDEOS"] = "GET_CHANNEL_VIDEOS"
    channel_id: str = Field(alias="channelId", min_length=1)


class CreatePlaylist(RelayMessage):
    type: Literal["CREATE_PLAYLIST"] = "CREATE_PLAYLIST"
    title: str = Field(min_length=1)


class DeletePlaylist(RelayMessage):
    type: Literal["DELETE_PLAYLIST"] = "DELETE_PLAYLIST"
    playlist_id: str = Field(alias="playlistId", min_length=1)


class RenamePlaylist(RelayMessage):
    type: Literal["RENAME_PLAYLIST"] = "RENAME_PLAYLIST"
    playlist_id: str = Field(alias="playlistId", min_length=1)
    new_title: str = Field(alias="newTitle", min_length=1)


ControlMessage = Annotated[
    Union[OpenDashboard, OpenSidePanel], Field(discriminator="type")
]

DataRequest = Annotated[
    Union[
        Ping,
        GetWatchLater,
        GetSubscriptions,
        GetMoreSubscriptions,
        GetPlaylists,
        GetPlaylistVideos,
        RemoveFromWatchLater,
        RemoveFromPlaylist,
        AddToPlaylist,
        AddToWatchLater,
        MoveToTop,
        MoveToBottom,
        MovePlaylistVideo,
        GetChannels,
        GetMoreChannels,
        Unsubscribe,
        Subscribe,
        GetChannelSuggestions,
        GetChannelVideos,
        CreatePlaylist,
        DeletePlaylist,
        RenamePlaylist,
    ],
    Field(discriminator="type"),
]

CONTROL_TYPES: frozenset[str] = frozenset({"OPEN_DASHBOARD", "OPEN_SIDE_PANEL"})

_CONTROL_ADAPTER: TypeAdapter[Any] = TypeAdapter(ControlMessage)
_DATA_ADAPTER: TypeAdapter[Any] = TypeAdapter(DataRequest)


def parse_message(payload: Any) -> RelayMessage:
    """Validate ``payload`` into one of the known control or data messages."""

    if isinstance(payload, RelayMessage):
        return payload
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise UnsupportedMessage("Unsupported message type")
    adapter = _CONTROL_ADAPTER if payload["type"] in CONTROL_TYPES else _DATA_ADAPTER
    try:
        return adapter.validate_python(payload)
    except ValidationError as exc:
        raise UnsupportedMessage("Unsupported message type") from exc


def is_control(message: RelayMessage) -> bool:
    return isinstance(message, (OpenDashboard, OpenSidePanel))


class RelayResponse(BaseModel):
    """Uniform response envelope returned for every relay message."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    data: Any = None
    error: str | None = None
    error_kind: str | None = Field(default=None, alias="errorKind")
    status: int | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "RelayResponse":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, exc: BaseException | str) -> "RelayResponse":
        if isinstance(exc, str):
            return cls(success=False, error=exc)
        if isinstance(exc, PlatformError):
            return cls(success=False, error=exc.message, error_kind=exc.kind, status=exc.status)
        if isinstance(exc, DeliveryError):
            return cls(success=False, error=exc.message, error_kind=exc.kind)
        return cls(success=False, error=str(exc) or exc.__class__.__name__)

    @property
    def is_conflict(self) -> bool:
        """Whether the failure was a 409 the platform may still have applied."""

        return not self.success and (self.error_kind == "AmbiguousConflict" or self.status == 409)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
