"""Tests for visit trackers."""

import asyncio

import pytest

from history_engine.capture.trackers import VisitTracker, VisitTrackerArena


@pytest.mark.asyncio
async def test_replacing_tracker_cancels_pending_captures():
    arena = VisitTrackerArena()
    old = VisitTracker(visit_id=1, start_time=0, url="https://a.example/")
    old.pending["screenshot"] = asyncio.ensure_future(asyncio.sleep(10))
    arena.set("tab-1", old)

    arena.set("tab-1", VisitTracker(visit_id=2, start_time=5, url="https://b.example/"))
    await asyncio.sleep(0)

    assert arena.get("tab-1").visit_id == 2
    assert old.pending == {}
    assert len(arena) == 1


@pytest.mark.asyncio
async def test_pop_cancels_and_returns_tracker():
    arena = VisitTrackerArena()
    tracker = VisitTracker(visit_id=1, start_time=0, url="https://a.example/")
    task = asyncio.ensure_future(asyncio.sleep(10))
    tracker.pending["embedding"] = task
    arena.set("tab-1", tracker)

    assert arena.pop("tab-1") is tracker
    await asyncio.sleep(0)
    assert task.cancelled()
    assert arena.pop("tab-1") is None
    assert "tab-1" not in arena


def test_find_by_visit_and_iteration():
    arena = VisitTrackerArena()
    arena.set("tab-1", VisitTracker(visit_id=1, start_time=0, url="https://a.example/"))
    arena.set("tab-2", VisitTracker(visit_id=2, start_time=0, url="https://b.example/"))

    tab_id, tracker = arena.find_by_visit(2)
    assert tab_id == "tab-2"
    assert tracker.url == "https://b.example/"
    assert arena.find_by_visit(3) is None
    assert sorted(t for t, _ in arena) == ["tab-1", "tab-2"]

    arena.clear()
    assert len(arena) == 0
