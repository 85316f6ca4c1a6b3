"""Tests for user overlays kept in the key-value store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fakes import MemoryStore

from tubequeue.models import Video
from tubequeue.services.overlays import OverlayStore, WatchedOverride

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.mark.anyio("asyncio")
async def test_load_ignores_malformed_entries() -> None:
    store = MemoryStore(
        {
            "watchedOverrides": {
                "good": {"watched": True, "timestamp": NOW.isoformat()},
                "bad": {"watched": "maybe"},
            },
            "hiddenVideos": ["a", 3, "b"],
            "hideWatched": 1,
            "quickMoveAssignments": {"1": "PL1", "12": "PL2", "x": "PL3", "4": ""},
        }
    )
    overlays = OverlayStore(store)

    await overlays.load()

    assert overlays.watched == {"good": WatchedOverride(watched=True, timestamp=NOW)}
    assert overlays.hidden == {"a", "b"}
    assert overlays.hide_watched is True
    assert overlays.quick_move == {1: "PL1"}


@pytest.mark.anyio("asyncio")
async def test_save_round_trips_through_the_store() -> None:
    store = MemoryStore()
    overlays = OverlayStore(store, clock=lambda: NOW)
    overlays.set_watched("v1", False)
    overlays.hidden = {"z", "a"}
    overlays.assign_quick_move(9, "PL9")

    await overlays.save_watched()
    await overlays.save_hidden()
    await overlays.save_quick_move()

    assert store.data["hiddenVideos"] == ["a", "z"]
    assert store.data["quickMoveAssignments"] == {"9": "PL9"}

    reloaded = OverlayStore(store)
    await reloaded.load()
    assert reloaded.watched == overlays.watched
    assert reloaded.quick_move == {9: "PL9"}


def test_apply_override_and_platform_state() -> None:
    overlays = OverlayStore(MemoryStore(), clock=lambda: NOW)
    platform_watched = Video(id="p", watched_progress=92)
    unwatched = Video(id="u", watched_progress=30)

    assert overlays.is_watched(platform_watched)
    assert not overlays.is_watched(unwatched)

    overlays.set_watched("p", False)
    overlays.set_watched("u", True)

    assert overlays.apply(platform_watched) == platform_watched.model_copy(update={"watched": False})
    assert overlays.apply(unwatched).watched_progress == 100
    assert not overlays.is_watched(platform_watched)
    assert overlays.is_watched(unwatched)
    assert overlays.clear_watched("u") and not overlays.clear_watched("u")


def test_prune_keeps_loaded_and_recent_overrides() -> None:
    current = {"now": NOW - timedelta(days=120)}
    overlays = OverlayStore(MemoryStore(), retention_days=90, clock=lambda: current["now"])
    overlays.set_watched("old-loaded", True)
    overlays.set_watched("old-gone", True)
    current["now"] = NOW - timedelta(days=10)
    overlays.set_watched("recent", True)
    current["now"] = NOW

    removed = overlays.prune_watched({"old-loaded"})

    assert removed == 1
    assert set(overlays.watched) == {"old-loaded", "recent"}


def test_quick_move_assignment_rules() -> None:
    overlays = OverlayStore(MemoryStore())

    overlays.assign_quick_move(1, "PL1")
    overlays.assign_quick_move(2, "PL1")
    overlays.assign_quick_move(3, "PL3")
    overlays.assign_quick_move(3, None)

    assert overlays.quick_move == {2: "PL1"}
    assert overlays.quick_move_target(2) == "PL1"
    assert overlays.forget_playlist("PL1")
    assert not overlays.forget_playlist("PL1")
    for slot in (0, 10):
        with pytest.raises(ValueError):
            overlays.assign_quick_move(slot, "PL1")
