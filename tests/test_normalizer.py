"""Tests for turning InnerTube fragments into entities."""

from __future__ import annotations

from fakes import (
    channel_renderer,
    continuation_item,
    grid_video,
    lockup,
    metadata_part,
    playlist_page,
    playlist_video,
    text,
)

from tubequeue.models import Channel, Playlist, Video
from tubequeue.services.normalizer import (
    find_video_count,
    normalize_fragment,
    traverse,
    video_count_from_details,
)


def _progress_overlay(percent_text: str, duration: str) -> dict:
    return {
        "thumbnailViewModel": {
            "overlays": [
                {
                    "thumbnailBottomOverlayViewModel": {
                        "progressBar": {
                            "thumbnailOverlayProgressBarViewModel": {"valueRangeText": percent_text}
                        },
                        "badges": [{"thumbnailBadgeViewModel": {"text": duration}}],
                    }
                }
            ]
        }
    }


def _video_lockup(video_id: str = "vid1", **kwargs) -> dict:
    return lockup(
        video_id,
        "Lockup title",
        [
            [metadata_part("Creator", "UCcreator")],
            [metadata_part("1.2K views"), metadata_part("3 days ago")],
        ],
        **kwargs,
    )


def test_playlist_video_renderer_keeps_membership_handle() -> None:
    video = normalize_fragment(
        playlist_video("abc", "set-1", title="Hello", channel="Chan", channel_id="UC1", length="12:34")
    )

    assert video == Video(
        id="abc",
        title="Hello",
        channel_name="Chan",
        channel_id="UC1",
        thumbnail_url="https://img.example/abc.jpg",
        duration="12:34",
        playlist_item_id="set-1",
    )


def test_resume_overlay_percentage_sets_progress() -> None:
    nearly_done = normalize_fragment(playlist_video("a", "s", percent=95))
    halfway = normalize_fragment(playlist_video("b", "s", percent=40))

    assert isinstance(nearly_done, Video) and isinstance(halfway, Video)
    assert (nearly_done.watched, nearly_done.watched_progress) == (True, 95)
    assert (halfway.watched, halfway.watched_progress) == (False, 40)


def test_tagged_lockup_video_reads_metadata_and_progress() -> None:
    video = normalize_fragment(
        _video_lockup(
            content_type="LOCKUP_CONTENT_TYPE_VIDEO",
            content_image=_progress_overlay("95% watched", "12:34"),
        )
    )

    assert isinstance(video, Video)
    assert video.id == "vid1"
    assert video.title == "Lockup title"
    assert video.channel_name == "Creator"
    assert video.channel_id == "UCcreator"
    assert video.published_at_text == "3 days ago"
    assert video.duration == "12:34"
    assert video.watched is True
    assert video.watched_progress == 95
    assert video.thumbnail_url == "https://i.ytimg.com/vi/vid1/mqdefault.jpg"


def test_lockup_resume_overlay_counts_as_fully_watched() -> None:
    video = normalize_fragment(
        _video_lockup(
            content_type="LOCKUP_CONTENT_TYPE_VIDEO",
            content_image={"thumbnailViewModel": {"overlays": [{"thumbnailOverlayResumePlaybackRenderer": {}}]}},
        )
    )

    assert isinstance(video, Video)
    assert (video.watched, video.watched_progress) == (True, 100)


def test_rich_item_delegates_to_its_content() -> None:
    inner = _video_lockup(content_type="LOCKUP_CONTENT_TYPE_VIDEO")

    assert normalize_fragment({"richItemRenderer": {"content": inner}}) == normalize_fragment(inner)


def test_grid_video_duration_falls_back_to_time_status_overlay() -> None:
    video = normalize_fragment(grid_video("g1", published="2 hours ago"))

    assert isinstance(video, Video)
    assert video.duration == "10:05"
    assert video.channel_name == "Uploader"
    assert video.channel_id == "UCuploader"
    assert video.published_at_text == "2 hours ago"


def test_channel_renderer_reads_activity_hint() -> None:
    channel = normalize_fragment(channel_renderer("UCa", "Alpha", activity="2 days ago"))

    assert channel == Channel(
        id="UCa",
        name="Alpha",
        thumbnail_url="https://img.example/UCa.jpg",
        subscriber_count_text="1.2K subscribers",
        video_count_text="2 days ago",
        last_upload_text="2 days ago",
    )


def test_channel_lockup_new_badge_becomes_new_activity() -> None:
    fragment = lockup(
        "UCn",
        "Newbie",
        [[metadata_part("10K subscribers")]],
        content_type="LOCKUP_CONTENT_TYPE_CHANNEL",
        content_image={
            "collectionThumbnailViewModel": {
                "primaryThumbnail": {
                    "thumbnailViewModel": {
                        "image": {"sources": [{"url": "https://img.example/n.jpg"}]},
                        "overlays": [{"thumbnailBadgeViewModel": {"text": "NEW"}}],
                    }
                }
            }
        },
    )

    channel = normalize_fragment(fragment)

    assert isinstance(channel, Channel)
    assert channel.name == "Newbie"
    assert channel.subscriber_count_text == "10K subscribers"
    assert channel.thumbnail_url == "https://img.example/n.jpg"
    assert channel.last_upload_text == "New"
    assert channel.last_upload_timestamp is None


def test_playlist_renderers_skip_reserved_ids() -> None:
    mix = normalize_fragment({"playlistRenderer": {"playlistId": "PL1", "title": text("Mix"), "videoCount": "12"}})
    grid = normalize_fragment(
        {
            "gridPlaylistRenderer": {
                "playlistId": "PL2",
                "title": text("Big"),
                "videoCountText": {"runs": [{"text": "1,234 videos"}]},
            }
        }
    )

    assert mix == Playlist(id="PL1", title="Mix", video_count=12)
    assert isinstance(grid, Playlist) and grid.video_count == 1234
    assert normalize_fragment({"playlistRenderer": {"playlistId": "WL", "title": text("Watch later")}}) is None
    assert normalize_fragment({"gridPlaylistRenderer": {"playlistId": "LL", "title": text("Liked")}}) is None


def test_guide_entry_pointing_at_playlist() -> None:
    def entry(browse_id: str) -> dict:
        return {
            "guideEntryRenderer": {
                "navigationEndpoint": {"browseEndpoint": {"browseId": browse_id}},
                "formattedTitle": text("Road trip"),
            }
        }

    assert normalize_fragment(entry("VLPLroad")) == Playlist(id="PLroad", title="Road trip", video_count=0)
    assert normalize_fragment(entry("VLLL")) is None
    assert normalize_fragment(entry("UCsomebody")) is None


def test_untagged_lockups_are_classified_by_shape() -> None:
    channel = normalize_fragment(
        lockup("UCx", "Someone", [[metadata_part("@someone"), metadata_part("5K subscribers")]])
    )
    playlist = normalize_fragment(
        lockup(
            "PLz",
            "Collection",
            [[metadata_part("Updated today")]],
            content_image={
                "collectionThumbnailViewModel": {
                    "primaryThumbnail": {
                        "thumbnailViewModel": {
                            "overlays": [
                                {
                                    "thumbnailOverlayBadgeViewModel": {
                                        "thumbnailBadges": [{"thumbnailBadgeViewModel": {"text": "7 videos"}}]
                                    }
                                }
                            ]
                        }
                    }
                }
            },
        )
    )
    video = normalize_fragment(lockup("vidU", "Plain", [[metadata_part("Creator")]]))

    assert isinstance(channel, Channel) and channel.subscriber_count_text == "5K subscribers"
    assert isinstance(playlist, Playlist) and playlist.video_count == 7
    assert isinstance(video, Video) and video.channel_name == "Creator"


def test_missing_fields_fall_back_to_defaults() -> None:
    video = normalize_fragment({"videoRenderer": {"videoId": "v9"}})

    assert video == Video(
        id="v9",
        title="Unknown",
        channel_name="Unknown",
        thumbnail_url="https://i.ytimg.com/vi/v9/mqdefault.jpg",
    )


def test_malformed_fragments_never_raise() -> None:
    fragments = [
        {"videoRenderer": {"videoId": 5}},
        {"videoRenderer": "broken"},
        {"lockupViewModel": {"contentType": "LOCKUP_CONTENT_TYPE_VIDEO"}},
        {"lockupViewModel": None},
        {"channelRenderer": {"title": text("No id")}},
        {"richItemRenderer": {"content": []}},
        [],
        "text",
        42,
        None,
    ]

    assert [normalize_fragment(fragment) for fragment in fragments] == [None] * len(fragments)
    odd_title = normalize_fragment({"playlistVideoRenderer": {"videoId": "x", "title": ["weird"]}})
    assert isinstance(odd_title, Video) and odd_title.title == "Unknown"


def test_traverse_terminates_on_cycles_and_visits_shared_objects_once() -> None:
    shared = playlist_video("a", "s1")
    items: list = [shared, shared]
    root: dict = {"items": items, "again": shared}
    root["self"] = root
    items.append(items)

    result = traverse(root)

    assert [entity.id for entity in result.entities] == ["a"]
    # root, items list, shared dict, the renderer dict and its nested objects
    assert result.visited == len({id(root), id(items)}) + traverse(shared).visited


def test_traverse_dedupes_by_kind_and_id_in_document_order() -> None:
    payload = {
        "contents": [
            playlist_video("a", "s1", title="First"),
            playlist_video("b", "s2"),
            playlist_video("a", "s3", title="Second"),
            {"channelRenderer": {"channelId": "a", "title": text("Same id, other kind")}},
        ]
    }

    result = traverse(payload)

    assert [(entity.kind, entity.id) for entity in result.entities] == [
        ("video", "a"),
        ("video", "b"),
        ("channel", "a"),
    ]
    assert result.entities[0].title == "First"
    assert [entity.id for entity in traverse(payload, kinds=("channel",)).entities] == ["a"]


def test_traverse_keeps_last_continuation_token() -> None:
    payload = {"head": continuation_item("first"), "body": playlist_page([playlist_video("a", "s")], token="last")}

    assert traverse(payload).cursor == "last"
    assert traverse(playlist_page([playlist_video("a", "s")])).cursor is None


def test_traverse_is_deterministic() -> None:
    payload = playlist_page(
        [playlist_video(f"v{index}", f"s{index}", percent=index * 10) for index in range(5)],
        token="next",
    )

    first = traverse(payload)
    second = traverse(payload)

    assert first.entities == second.entities
    assert first.cursor == second.cursor == "next"


def test_video_count_from_details_sources() -> None:
    header = {
        "header": {
            "playlistHeaderRenderer": {
                "stats": [{"runs": [{"text": "42"}, {"text": " videos"}]}, text("100 views")]
            }
        }
    }
    sidebar = {
        "sidebar": {
            "playlistSidebarRenderer": {
                "items": [
                    {"playlistSidebarPrimaryInfoRenderer": {"stats": [{"runs": [{"text": "17 videos"}]}]}}
                ]
            }
        }
    }
    deep = {"somewhere": {"deep": [{"text": "9 videos"}]}}

    assert video_count_from_details(header) == 42
    assert video_count_from_details(sidebar) == 17
    assert video_count_from_details(deep) == 9
    assert video_count_from_details({}) == 0


def test_find_video_count_survives_cycles() -> None:
    node: dict = {"label": "nothing here"}
    node["loop"] = node
    node["children"] = [{"content": "3 videos"}]

    assert find_video_count(node) == 3
