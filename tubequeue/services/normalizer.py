"""Turn InnerTube response fragments into Video / Channel / Playlist entities.

The platform ships several renderer shapes for the same logical entity and
keeps adding new ones. Each known shape is described by a ``RendererRule``
(a predicate plus an extractor); rules are tried in a fixed priority order
and the first extraction wins. Container responses are walked with
``traverse``, which visits every reachable dict/list exactly once (by object
identity, so shared or self-referencing sub-objects cannot loop forever).

Nothing in this module performs I/O or reads the clock, so normalizing the
same fragment twice always yields equal entities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Iterable, Mapping

from ..models import (
    RESERVED_PLAYLIST_IDS,
    WATCHED_THRESHOLD_PERCENT,
    Channel,
    Entity,
    EntityKind,
    Playlist,
    Video,
    default_video_thumbnail,
)
from ..utils import (
    PERCENT_RE,
    as_list,
    as_text,
    contains_ago,
    dig,
    first_thumbnail,
    looks_like_duration,
    match_video_count,
    parse_int,
    run_text,
    runs_joined,
)

logger = logging.getLogger(__name__)

VIDEO_RENDERER_KEYS = ("videoRenderer", "gridVideoRenderer", "compactVideoRenderer")
PLAYLIST_VIDEO_RENDERER_KEYS = ("playlistVideoRenderer", "playlistPanelVideoRenderer")
CHANNEL_RENDERER_KEYS = ("gridChannelRenderer", "channelRenderer")
PLAYLIST_RENDERER_KEYS = ("gridPlaylistRenderer", "playlistRenderer")
COUNT_TEXT_KEYS = ("text", "content", "simpleText", "label")


@dataclass(frozen=True, slots=True)
class RendererRule:
    """One known renderer shape: when it applies and how to read it."""

    name: str
    matches: Callable[[Mapping[str, Any]], bool]
    extract: Callable[[Mapping[str, Any]], Entity | None]


@dataclass(slots=True)
class Traversal:
    """Everything collected from one walk over a response."""

    entities: list[Entity] = field(default_factory=list)
    cursor: str | None = None
    visited: int = 0

    def of_kind(self, kind: EntityKind) -> list[Entity]:
        return [entity for entity in self.entities if entity.kind == kind]


@dataclass(slots=True)
class WatchProgress:
    duration: str = ""
    progress: int = 0
    watched: bool = False


# ---------------------------------------------------------------------------
# Shared field readers
# ---------------------------------------------------------------------------


def _first_renderer(obj: Mapping[str, Any], keys: Iterable[str]) -> Mapping[str, Any] | None:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, Mapping):
            return value
    return None


def _browse_id(run_container: Any) -> str:
    browse_id = dig(run_container, "runs", 0, "navigationEndpoint", "browseEndpoint", "browseId")
    return as_text(browse_id)


def _clamp_percent(value: int) -> int:
    return max(0, min(100, value))


def _lockup_metadata(lockup: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = dig(lockup, "metadata", "lockupMetadataViewModel")
    return metadata if isinstance(metadata, Mapping) else {}


def _metadata_parts(metadata: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    parts: list[Mapping[str, Any]] = []
    rows = as_list(dig(metadata, "metadata", "contentMetadataViewModel", "metadataRows"))
    for row in rows:
        for part in as_list(dig(row, "metadataParts")):
            if isinstance(part, Mapping):
                parts.append(part)
    return parts


def _part_text(part: Mapping[str, Any]) -> str:
    return as_text(dig(part, "text", "content"))


def _badge_texts(badges: Any) -> list[str]:
    texts: list[str] = []
    for badge in as_list(badges):
        text = as_text(dig(badge, "thumbnailBadgeViewModel", "text"))
        if text:
            texts.append(text)
    return texts


def extract_duration_and_progress(lockup: Mapping[str, Any]) -> WatchProgress:
    """Read duration and watch progress from a lockup's thumbnail overlays.

    A ``NN%`` progress text marks the video watched from 90% on; a resume
    playback overlay without a percentage counts as fully watched.
    """

    result = WatchProgress()
    overlays = as_list(dig(lockup, "contentImage", "thumbnailViewModel", "overlays"))
    for overlay in overlays:
        if not isinstance(overlay, Mapping):
            continue
        for text in _badge_texts(dig(overlay, "thumbnailOverlayBadgeViewModel", "thumbnailBadges")):
            if looks_like_duration(text):
                result.duration = text

        bottom = overlay.get("thumbnailBottomOverlayViewModel")
        if isinstance(bottom, Mapping):
            range_text = as_text(
                dig(bottom, "progressBar", "thumbnailOverlayProgressBarViewModel", "valueRangeText")
            )
            match = PERCENT_RE.search(range_text)
            if match:
                result.progress = _clamp_percent(int(match.group(1)))
                result.watched = result.progress >= WATCHED_THRESHOLD_PERCENT
            for text in _badge_texts(bottom.get("badges")):
                if looks_like_duration(text):
                    result.duration = text

        if "thumbnailOverlayResumePlaybackRenderer" in overlay:
            result.watched = True
            result.progress = 100
    return result


def _legacy_overlay_progress(renderer: Mapping[str, Any]) -> WatchProgress:
    """Duration and progress from ``thumbnailOverlays`` on classic renderers."""

    result = WatchProgress()
    for overlay in as_list(renderer.get("thumbnailOverlays")):
        if not isinstance(overlay, Mapping):
            continue
        status = overlay.get("thumbnailOverlayTimeStatusRenderer")
        if isinstance(status, Mapping):
            text = run_text(status.get("text"))
            if looks_like_duration(text):
                result.duration = text
        resume = overlay.get("thumbnailOverlayResumePlaybackRenderer")
        if isinstance(resume, Mapping):
            percent = resume.get("percentDurationWatched")
            if isinstance(percent, (int, float)) and not isinstance(percent, bool):
                result.progress = _clamp_percent(int(percent))
                result.watched = result.progress >= WATCHED_THRESHOLD_PERCENT
            else:
                result.progress = 100
                result.watched = True
    return result


# ---------------------------------------------------------------------------
# Video extractors
# ---------------------------------------------------------------------------


def _extract_playlist_video(obj: Mapping[str, Any]) -> Video | None:
    renderer = _first_renderer(obj, PLAYLIST_VIDEO_RENDERER_KEYS)
    if renderer is None:
        return None
    video_id = as_text(renderer.get("videoId"))
    if not video_id:
        return None

    byline = renderer.get("shortBylineText")
    overlay = _legacy_overlay_progress(renderer)
    set_video_id = renderer.get("setVideoId")
    return Video(
        id=video_id,
        title=run_text(renderer.get("title")) or "Unknown",
        channel_name=run_text(byline) or "Unknown",
        channel_id=_browse_id(byline),
        thumbnail_url=first_thumbnail(renderer.get("thumbnail")) or default_video_thumbnail(video_id),
        duration=run_text(renderer.get("lengthText")) or overlay.duration,
        published_at_text=run_text(renderer.get("publishedTimeText")),
        playlist_item_id=set_video_id if isinstance(set_video_id, str) and set_video_id else None,
        watched=overlay.watched,
        watched_progress=overlay.progress,
    )


def _extract_video_renderer(obj: Mapping[str, Any]) -> Video | None:
    renderer = _first_renderer(obj, VIDEO_RENDERER_KEYS)
    if renderer is None:
        renderer = dig(obj, "content", "videoRenderer")
    if not isinstance(renderer, Mapping):
        return None
    video_id = as_text(renderer.get("videoId"))
    if not video_id:
        return None

    channel_name = "Unknown"
    channel_id = ""
    for key in ("ownerText", "shortBylineText", "longBylineText"):
        name = run_text(renderer.get(key))
        if name:
            channel_name = name
            break
    for key in ("ownerText", "shortBylineText", "longBylineText"):
        browse_id = _browse_id(renderer.get(key))
        if browse_id:
            channel_id = browse_id
            break

    overlay = _legacy_overlay_progress(renderer)
    return Video(
        id=video_id,
        title=run_text(renderer.get("title")) or "Unknown",
        channel_name=channel_name,
        channel_id=channel_id,
        thumbnail_url=first_thumbnail(renderer.get("thumbnail")) or default_video_thumbnail(video_id),
        duration=run_text(renderer.get("lengthText")) or overlay.duration,
        published_at_text=run_text(renderer.get("publishedTimeText")),
        watched=overlay.watched,
        watched_progress=overlay.progress,
    )


def _lockup_video(lockup: Mapping[str, Any]) -> Video | None:
    video_id = as_text(lockup.get("contentId"))
    if not video_id:
        return None
    metadata = _lockup_metadata(lockup)

    channel_name = "Unknown"
    channel_id = ""
    published = ""
    for part in _metadata_parts(metadata):
        text = _part_text(part)
        browse_id = as_text(
            dig(part, "text", "commandRuns", 0, "onTap", "innertubeCommand", "browseEndpoint", "browseId")
        )
        if browse_id.startswith("UC"):
            channel_name = text or channel_name
            channel_id = browse_id
        elif channel_name == "Unknown" and text:
            channel_name = text
        if contains_ago(text):
            published = text

    progress = extract_duration_and_progress(lockup)
    return Video(
        id=video_id,
        title=as_text(dig(metadata, "title", "content")) or "Unknown",
        channel_name=channel_name,
        channel_id=channel_id,
        thumbnail_url=default_video_thumbnail(video_id),
        duration=progress.duration,
        published_at_text=published,
        watched=progress.watched,
        watched_progress=progress.progress,
    )


# ---------------------------------------------------------------------------
# Channel extractors
# ---------------------------------------------------------------------------


def extract_activity_text(renderer: Mapping[str, Any]) -> str | None:
    """Find a ``"... ago"`` activity hint on a classic channel renderer."""

    for key in ("videoCountText", "secondaryText", "subtitle", "descriptionSnippet"):
        text = run_text(renderer.get(key))
        if contains_ago(text):
            return text
    badges = as_list(renderer.get("ownerBadges")) or as_list(renderer.get("badges"))
    for badge in badges:
        label = as_text(dig(badge, "metadataBadgeRenderer", "label")) or as_text(
            dig(badge, "liveBroadcastBadgeRenderer", "label", "simpleText")
        )
        if contains_ago(label):
            return label
    return None


def _extract_channel_renderer(obj: Mapping[str, Any]) -> Channel | None:
    renderer = _first_renderer(obj, CHANNEL_RENDERER_KEYS)
    if renderer is None:
        return None
    channel_id = as_text(renderer.get("channelId"))
    if not channel_id:
        return None
    return Channel(
        id=channel_id,
        name=run_text(renderer.get("title")) or "Unknown",
        thumbnail_url=first_thumbnail(renderer.get("thumbnail")),
        subscriber_count_text=run_text(renderer.get("subscriberCountText")),
        video_count_text=run_text(renderer.get("videoCountText")),
        last_upload_text=extract_activity_text(renderer),
    )


def _channel_lockup_thumbnail(lockup: Mapping[str, Any]) -> str:
    for path in (
        ("contentImage", "collectionThumbnailViewModel", "primaryThumbnail", "thumbnailViewModel", "image", "sources", 0, "url"),
        ("contentImage", "decoratedAvatarViewModel", "avatar", "avatarViewModel", "image", "sources", 0, "url"),
    ):
        url = as_text(dig(lockup, *path))
        if url:
            return url
    return ""


def _lockup_channel(lockup: Mapping[str, Any]) -> Channel | None:
    channel_id = as_text(lockup.get("contentId"))
    if not channel_id:
        return None
    metadata = _lockup_metadata(lockup)

    subscribers = ""
    activity: str | None = None
    for part in _metadata_parts(metadata):
        text = _part_text(part)
        lowered = text.lower()
        if "subscriber" in lowered:
            subscribers = text
        elif "ago" in lowered:
            activity = text

    subtitle = as_text(dig(metadata, "subtitle", "content"))
    if activity is None and contains_ago(subtitle):
        activity = subtitle

    overlays = as_list(
        dig(lockup, "contentImage", "collectionThumbnailViewModel", "primaryThumbnail", "thumbnailViewModel", "overlays")
    )
    for overlay in overlays:
        badge = as_text(dig(overlay, "thumbnailBadgeViewModel", "text")) or as_text(
            dig(overlay, "thumbnailOverlayBadgeViewModel", "text")
        )
        if activity is None and contains_ago(badge):
            activity = badge
        if activity is None and badge.lower() == "new":
            activity = "New"

    return Channel(
        id=channel_id,
        name=as_text(dig(metadata, "title", "content")) or "Unknown",
        thumbnail_url=_channel_lockup_thumbnail(lockup),
        subscriber_count_text=subscribers,
        last_upload_text=activity,
    )


# ---------------------------------------------------------------------------
# Playlist extractors
# ---------------------------------------------------------------------------


def find_video_count(root: Any) -> int:
    """Depth-first search for the first positive ``"N videos"`` text."""

    visited: set[int] = set()
    stack: list[Any] = [root]
    while stack:
        node = stack.pop()
        if not isinstance(node, (Mapping, list)):
            continue
        marker = id(node)
        if marker in visited:
            continue
        visited.add(marker)
        if isinstance(node, Mapping):
            for key in COUNT_TEXT_KEYS:
                count = match_video_count(node.get(key))
                if count:
                    return count
            children = list(node.values())
        else:
            children = node
        stack.extend(reversed(children))
    return 0


def _lockup_playlist_video_count(lockup: Mapping[str, Any], metadata: Mapping[str, Any]) -> int:
    content_image = lockup.get("contentImage")
    overlays = (
        as_list(dig(content_image, "collectionThumbnailViewModel", "overlays"))
        or as_list(dig(content_image, "collectionThumbnailViewModel", "primaryThumbnail", "thumbnailViewModel", "overlays"))
        or as_list(dig(content_image, "thumbnailViewModel", "overlays"))
    )
    for overlay in overlays:
        texts = _badge_texts(dig(overlay, "thumbnailOverlayBadgeViewModel", "thumbnailBadges"))
        texts += _badge_texts(dig(overlay, "thumbnailBottomOverlayViewModel", "badges"))
        for text in texts:
            count = match_video_count(text)
            if count is not None:
                return count

    label = dig(content_image, "collectionThumbnailViewModel", "accessibility", "accessibilityData", "label")
    count = match_video_count(label)
    if count is not None:
        return count

    count = find_video_count(lockup)
    if count > 0:
        return count

    for part in _metadata_parts(metadata):
        count = match_video_count(_part_text(part))
        if count:
            return count
    return 0


def _lockup_playlist(lockup: Mapping[str, Any]) -> Playlist | None:
    playlist_id = as_text(lockup.get("contentId"))
    if not playlist_id or playlist_id.startswith("WL") or playlist_id in RESERVED_PLAYLIST_IDS:
        return None
    metadata = _lockup_metadata(lockup)
    thumbnail = as_text(
        dig(
            lockup,
            "contentImage",
            "collectionThumbnailViewModel",
            "primaryThumbnail",
            "thumbnailViewModel",
            "image",
            "sources",
            0,
            "url",
        )
    )
    return Playlist(
        id=playlist_id,
        title=as_text(dig(metadata, "title", "content")) or "Unknown",
        video_count=_lockup_playlist_video_count(lockup, metadata),
        thumbnail_url=thumbnail or None,
    )


def _extract_playlist_renderer(obj: Mapping[str, Any]) -> Playlist | None:
    renderer = _first_renderer(obj, PLAYLIST_RENDERER_KEYS)
    if renderer is None:
        return None
    playlist_id = as_text(renderer.get("playlistId"))
    if not playlist_id or playlist_id in RESERVED_PLAYLIST_IDS:
        return None
    count_source = renderer.get("videoCount")
    if count_source is None:
        count_source = run_text(renderer.get("videoCountText"))
    thumbnail = first_thumbnail(renderer.get("thumbnail")) or as_text(
        dig(renderer, "thumbnails", 0, "thumbnails", 0, "url")
    )
    return Playlist(
        id=playlist_id,
        title=run_text(renderer.get("title")) or "Unknown",
        video_count=parse_int(count_source),
        thumbnail_url=thumbnail or None,
    )


def _extract_guide_playlist(obj: Mapping[str, Any]) -> Playlist | None:
    entry = obj.get("guideEntryRenderer")
    if not isinstance(entry, Mapping):
        return None
    browse_id = as_text(dig(entry, "navigationEndpoint", "browseEndpoint", "browseId"))
    if not browse_id.startswith("VL"):
        return None
    playlist_id = browse_id[2:]
    if not playlist_id or playlist_id in RESERVED_PLAYLIST_IDS:
        return None
    title = run_text(entry.get("formattedTitle")) or run_text(entry.get("title"))
    return Playlist(id=playlist_id, title=title or "Unknown", video_count=0)


def video_count_from_details(data: Any) -> int:
    """Read the item count from a single playlist's ``VL<id>`` browse response."""

    header = dig(data, "header", "playlistHeaderRenderer")
    if isinstance(header, Mapping):
        stats = as_list(header.get("stats"))
        joined = " ".join(runs_joined(stat) for stat in stats if isinstance(stat, Mapping))
        count = match_video_count(joined)
        if count is not None:
            return count
        num_text = run_text(header.get("numVideosText"))
        if num_text:
            return parse_int(num_text)

    for item in as_list(dig(data, "sidebar", "playlistSidebarRenderer", "items")):
        stats = as_list(dig(item, "playlistSidebarPrimaryInfoRenderer", "stats"))
        for stat in stats:
            count = match_video_count(runs_joined(stat))
            if count is not None:
                return count

    return find_video_count(data)


# ---------------------------------------------------------------------------
# Lockup dispatch
# ---------------------------------------------------------------------------


def _lockup(obj: Mapping[str, Any]) -> Mapping[str, Any] | None:
    lockup = obj.get("lockupViewModel")
    return lockup if isinstance(lockup, Mapping) else None


def _has_tagged_lockup(obj: Mapping[str, Any]) -> bool:
    lockup = _lockup(obj)
    return lockup is not None and bool(as_text(lockup.get("contentType")))


def _has_untagged_lockup(obj: Mapping[str, Any]) -> bool:
    lockup = _lockup(obj)
    return lockup is not None and not as_text(lockup.get("contentType"))


def _extract_tagged_lockup(obj: Mapping[str, Any]) -> Entity | None:
    lockup = _lockup(obj)
    if lockup is None:
        return None
    content_type = as_text(lockup.get("contentType")).upper()
    if "VIDEO" in content_type:
        return _lockup_video(lockup)
    if "CHANNEL" in content_type:
        return _lockup_channel(lockup)
    if "PLAYLIST" in content_type:
        return _lockup_playlist(lockup)
    return None


def _looks_like_channel(lockup: Mapping[str, Any]) -> bool:
    metadata = _lockup_metadata(lockup)
    return any("subscriber" in _part_text(part).lower() for part in _metadata_parts(metadata))


def _looks_like_playlist(lockup: Mapping[str, Any]) -> bool:
    if isinstance(dig(lockup, "contentImage", "collectionThumbnailViewModel"), Mapping):
        return True
    browse_id = as_text(
        dig(lockup, "rendererContext", "commandContext", "onTap", "innertubeCommand", "browseEndpoint", "browseId")
    )
    return browse_id.startswith("VL")


LOCKUP_HEURISTICS: tuple[tuple[Callable[[Mapping[str, Any]], bool], Callable[[Mapping[str, Any]], Entity | None]], ...] = (
    (_looks_like_channel, _lockup_channel),
    (_looks_like_playlist, _lockup_playlist),
    (lambda _lockup: True, _lockup_video),
)


def _extract_untagged_lockup(obj: Mapping[str, Any]) -> Entity | None:
    lockup = _lockup(obj)
    if lockup is None:
        return None
    for predicate, extractor in LOCKUP_HEURISTICS:
        if predicate(lockup):
            return extractor(lockup)
    return None


def _extract_rich_item(obj: Mapping[str, Any]) -> Entity | None:
    content = dig(obj, "richItemRenderer", "content")
    if not isinstance(content, Mapping):
        return None
    return normalize_fragment(content)


RENDERER_RULES: tuple[RendererRule, ...] = (
    RendererRule(
        "playlist-video",
        lambda obj: _first_renderer(obj, PLAYLIST_VIDEO_RENDERER_KEYS) is not None,
        _extract_playlist_video,
    ),
    RendererRule("tagged-lockup", _has_tagged_lockup, _extract_tagged_lockup),
    RendererRule(
        "rich-item",
        lambda obj: isinstance(dig(obj, "richItemRenderer", "content"), Mapping),
        _extract_rich_item,
    ),
    RendererRule(
        "video",
        lambda obj: _first_renderer(obj, VIDEO_RENDERER_KEYS) is not None
        or isinstance(dig(obj, "content", "videoRenderer"), Mapping),
        _extract_video_renderer,
    ),
    RendererRule(
        "channel",
        lambda obj: _first_renderer(obj, CHANNEL_RENDERER_KEYS) is not None,
        _extract_channel_renderer,
    ),
    RendererRule(
        "playlist",
        lambda obj: _first_renderer(obj, PLAYLIST_RENDERER_KEYS) is not None,
        _extract_playlist_renderer,
    ),
    RendererRule(
        "guide-playlist",
        lambda obj: isinstance(obj.get("guideEntryRenderer"), Mapping),
        _extract_guide_playlist,
    ),
    RendererRule("untagged-lockup", _has_untagged_lockup, _extract_untagged_lockup),
)


def normalize_fragment(fragment: Any) -> Entity | None:
    """Return the entity described by ``fragment`` or ``None``.

    Malformed input never raises; it degrades to fallbacks or ``None``.
    """

    if not isinstance(fragment, Mapping):
        return None
    for rule in RENDERER_RULES:
        try:
            if not rule.matches(fragment):
                continue
            entity = rule.extract(fragment)
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            logger.debug("Renderer rule %s could not read fragment: %s", rule.name, exc)
            continue
        if entity is not None:
            return entity
    return None


def continuation_token(obj: Any) -> str | None:
    """Return the continuation token carried by ``obj`` itself, if any."""

    if not isinstance(obj, Mapping):
        return None
    renderer = obj.get("continuationItemRenderer")
    if isinstance(renderer, Mapping):
        endpoint = renderer.get("continuationEndpoint")
        token = as_text(dig(endpoint, "continuationCommand", "token"))
        if token:
            return token
        for command in as_list(dig(endpoint, "commandExecutorCommand", "commands")):
            token = as_text(dig(command, "continuationCommand", "token"))
            if token:
                return token
    token = as_text(dig(obj, "nextContinuationData", "continuation"))
    return token or None


def traverse(root: Any, *, kinds: Collection[EntityKind] | None = None) -> Traversal:
    """Collect every entity and the last continuation token under ``root``.

    Objects are visited depth-first in document order, each distinct object
    once. Entities are deduplicated by ``(kind, id)``; ``kinds`` restricts
    which entity kinds are kept.
    """

    result = Traversal()
    seen_keys: set[tuple[str, str]] = set()
    visited: set[int] = set()
    stack: list[Any] = [root]
    while stack:
        node = stack.pop()
        if not isinstance(node, (Mapping, list)):
            continue
        marker = id(node)
        if marker in visited:
            continue
        visited.add(marker)

        if isinstance(node, Mapping):
            entity = normalize_fragment(node)
            if entity is not None and (kinds is None or entity.kind in kinds):
                key = (entity.kind, entity.id)
                if key not in seen_keys:
                    seen_keys.add(key)
                    result.entities.append(entity)
            token = continuation_token(node)
            if token:
                result.cursor = token
            children = list(node.values())
        else:
            children = node
        stack.extend(reversed(children))

    result.visited = len(visited)
    return result
