"""Tests for the capture pipeline."""

import asyncio

import pytest

from history_engine.capture.pipeline import LOADING_TITLE, CapturePipeline
from history_engine.capture.trackers import VisitTrackerArena
from history_engine.config import EngineConfig
from history_engine.history.models import PendingInteraction
from history_engine.history.settings import HistorySettings

PAGE1 = "https://shop.example.com/products"
PAGE2 = "https://shop.example.com/cart"


@pytest.fixture
def make_pipeline(tmp_path, store, vector_index, embedder, clock):
    """Pipeline with no automatic captures or flushes unless overridden."""

    def factory(settings=None, **overrides):
        options = dict(
            data_dir=tmp_path,
            batch_interval=60.0,
            save_interval=60.0,
            screenshot_delay=60.0,
            snapshot_delay=60.0,
            embedding_delay=60.0,
        )
        options.update(overrides)
        return CapturePipeline(
            store,
            vector_index=vector_index,
            embedder=embedder,
            settings=settings or HistorySettings(excluded_domains=["bank.com"]),
            config=EngineConfig(**options),
            trackers=VisitTrackerArena(),
            clock=clock,
        )

    return factory


def _interaction(visit_id, clock, type="click", **kwargs):
    return PendingInteraction(visit_id=visit_id, type=type, timestamp=clock.now, **kwargs)


@pytest.mark.asyncio
async def test_start_opens_session_and_announces_tabs(make_pipeline, store, page):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    session_id = pipeline.start()

    assert session_id == store.get_current_session_id()
    events = store.get_session_history(session_id).tab_events
    assert [(e.tab_id, e.action) for e in events] == [("tab-1", "created")]

    pipeline.stop()
    assert store.get_session(session_id).end_time is not None
    assert pipeline.session_id is None


@pytest.mark.asyncio
async def test_disabled_pipeline_records_nothing(make_pipeline, store):
    pipeline = make_pipeline(settings=HistorySettings(enabled=False))
    assert pipeline.start() is None
    assert pipeline.handle_navigation("tab-1", PAGE1) is None
    assert store.get_visit_count() == 0


@pytest.mark.asyncio
async def test_same_url_twice_creates_one_visit(make_pipeline, store, page):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()

    first = pipeline.handle_navigation("tab-1", PAGE1)
    assert pipeline.handle_navigation("tab-1", PAGE1) is None
    assert store.get_visit_count() == 1
    assert store.get_visit(first).title == LOADING_TITLE
    pipeline.stop()


@pytest.mark.asyncio
async def test_navigation_ends_previous_visit(make_pipeline, store, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()

    v1 = pipeline.handle_navigation("tab-1", PAGE1, title="Products")
    clock.advance(1500)
    v2 = pipeline.handle_navigation("tab-1", PAGE2)

    assert v2 != v1
    assert store.get_visit(v1).duration == 1500
    assert store.get_visit(v2).duration is None
    assert pipeline.get_current_visit_id("tab-1") == v2
    assert store.get_visit_count() == 2
    pipeline.stop()


@pytest.mark.asyncio
async def test_excluded_domain_produces_no_visit(make_pipeline, store, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()

    v1 = pipeline.handle_navigation("tab-1", PAGE1)
    clock.advance(700)
    assert pipeline.handle_navigation("tab-1", "https://login.bank.com/auth") is None
    assert pipeline.handle_navigation("tab-1", "https://bank.com/") is None

    assert store.get_visit_count() == 1
    assert store.get_visit(v1).duration == 700
    assert pipeline.get_current_visit_id("tab-1") is None
    pipeline.stop()


@pytest.mark.asyncio
async def test_newly_excluded_domain_ends_visit_and_drops_interactions(make_pipeline, store, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)
    clock.advance(300)

    settings = pipeline.settings.updated({"excluded_domains": ["bank.com", "example.com"]})
    pipeline.apply_settings(settings)

    assert pipeline.get_current_visit_id("tab-1") is None
    assert store.get_visit(visit_id).duration == 300
    assert pipeline.record_interaction(_interaction(visit_id, clock)) is False
    pipeline.stop()


@pytest.mark.asyncio
async def test_flush_writes_queued_interactions_in_order(make_pipeline, store, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    for i in range(5):
        clock.advance(10)
        assert pipeline.record_interaction(_interaction(visit_id, clock, selector=f"#item-{i}"))
    assert store.get_interaction_count(visit_id) == 0
    assert pipeline.pending_count == 5

    assert pipeline.flush() == 5
    assert pipeline.pending_count == 0
    assert [i.selector for i in store.get_visit_interactions(visit_id)] == [f"#item-{i}" for i in range(5)]
    assert pipeline.flush() == 0
    pipeline.stop()


@pytest.mark.asyncio
async def test_queue_over_threshold_flushes_immediately(make_pipeline, store, page, clock):
    pipeline = make_pipeline(batch_max_size=100)
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    for _ in range(100):
        pipeline.record_interaction(_interaction(visit_id, clock))
    assert pipeline.pending_count == 100

    pipeline.record_interaction(_interaction(visit_id, clock))
    assert pipeline.pending_count == 0
    assert store.get_interaction_count(visit_id) == 101
    pipeline.stop()


@pytest.mark.asyncio
async def test_interaction_filters(make_pipeline, store, page, clock):
    pipeline = make_pipeline(settings=HistorySettings(track_scroll_events=False))
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    assert pipeline.record_interaction(_interaction(visit_id, clock, type="clipboard")) is False
    assert pipeline.record_interaction(_interaction(visit_id, clock, type="scroll")) is False
    assert pipeline.record_interaction(_interaction(visit_id, clock, type="hover")) is False
    assert pipeline.record_interaction(_interaction(9999, clock)) is False
    assert pipeline.record_interaction({"type": "click"}) is False
    assert pipeline.record_interaction({"visitId": visit_id, "type": "input", "value": "shoes"}) is True

    pipeline.settings.track_interactions = False
    assert pipeline.record_interaction(_interaction(visit_id, clock)) is False

    assert pipeline.pending_count == 1
    pipeline.stop()
    assert [i.type for i in store.get_visit_interactions(visit_id)] == ["input"]


@pytest.mark.asyncio
async def test_clipboard_tracked_when_enabled(make_pipeline, store, page, clock):
    pipeline = make_pipeline(settings=HistorySettings(track_clipboard=True))
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)
    assert pipeline.record_interaction(_interaction(visit_id, clock, type="clipboard", value="copied"))
    pipeline.stop()


@pytest.mark.asyncio
async def test_scroll_samples_are_throttled(make_pipeline, store, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    pipeline.record_interaction(_interaction(visit_id, clock, type="scroll", x=0, y=100))
    clock.advance(200)
    pipeline.record_interaction(_interaction(visit_id, clock, type="scroll", x=0, y=300))
    clock.advance(400)
    pipeline.record_interaction(_interaction(visit_id, clock, type="scroll", x=0, y=900))
    pipeline.flush()

    assert [e.y for e in store.get_visit_scroll_events(visit_id)] == [100, 900]
    assert store.get_interaction_count(visit_id) == 3
    pipeline.stop()


@pytest.mark.asyncio
async def test_screenshots_throttled_per_visit(make_pipeline, store, page, clock):
    pipeline = make_pipeline(settings=HistorySettings(screenshot_quality="low"))
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    assert await pipeline.capture_screenshot("tab-1", visit_id) is True
    clock.advance(10_000)
    assert await pipeline.capture_screenshot("tab-1", visit_id) is False
    assert len(store.get_visit_screenshots(visit_id)) == 1
    assert store.get_visit_screenshots(visit_id)[0].image_data.startswith("data:image/png;base64,")

    clock.advance(20_000)
    assert await pipeline.capture_screenshot("tab-1", visit_id) is True
    assert len(store.get_visit_screenshots(visit_id)) == 2
    pipeline.stop()


@pytest.mark.asyncio
async def test_snapshot_throttled_and_stale_visit_skipped(make_pipeline, store, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    v1 = pipeline.handle_navigation("tab-1", PAGE1)

    assert await pipeline.capture_dom_snapshot("tab-1", v1) is True
    clock.advance(59_000)
    assert await pipeline.capture_dom_snapshot("tab-1", v1) is False

    pipeline.handle_navigation("tab-1", PAGE2)
    assert await pipeline.capture_dom_snapshot("tab-1", v1) is False
    assert len(store.get_visit_snapshots(v1)) == 1
    pipeline.stop()


@pytest.mark.asyncio
async def test_failed_capture_does_not_consume_throttle(make_pipeline, store, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    async def broken(quality="medium"):
        raise RuntimeError("renderer gone")

    original = page.capture_screenshot
    page.capture_screenshot = broken
    assert await pipeline.capture_screenshot("tab-1", visit_id) is False
    page.capture_screenshot = original
    assert await pipeline.capture_screenshot("tab-1", visit_id) is True
    pipeline.stop()


@pytest.mark.asyncio
async def test_embedding_skipped_for_identical_content(make_pipeline, store, page, embedder, vector_index):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1, title="Products")

    assert await pipeline.generate_embedding("tab-1", visit_id) is True
    assert await pipeline.generate_embedding("tab-1", visit_id) is False
    assert len(embedder.calls) == 1
    first_hash = store.get_embedding(visit_id).content_hash

    page.text = "Completely different content"
    assert await pipeline.generate_embedding("tab-1", visit_id) is True
    assert len(embedder.calls) == 2
    assert store.get_embedding(visit_id).content_hash != first_hash
    assert store.get_embedding(visit_id).model_name == "fake-embedding"
    assert vector_index.count() == 1
    pipeline.stop()


@pytest.mark.asyncio
async def test_embedding_text_falls_back_to_snapshot(make_pipeline, store, make_page, embedder):
    page = make_page(text="", html="<body><script>x()</script><p>Archived order list</p></body>")
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1, title="Orders")

    await pipeline.capture_dom_snapshot("tab-1", visit_id)
    assert await pipeline.generate_embedding("tab-1", visit_id) is True
    assert embedder.calls[0] == f"Orders\n{PAGE1}\nArchived order list"
    pipeline.stop()


@pytest.mark.asyncio
async def test_embedding_failure_leaves_visit_unindexed(make_pipeline, store, page, embedder, vector_index):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    async def broken(text):
        raise RuntimeError("provider down")

    embedder.embed = broken
    assert await pipeline.generate_embedding("tab-1", visit_id) is False
    assert not store.has_embedding(visit_id)
    assert vector_index.count() == 0
    pipeline.stop()


@pytest.mark.asyncio
async def test_scheduled_captures_run_after_navigation(make_pipeline, store, page, embedder):
    pipeline = make_pipeline(screenshot_delay=0, snapshot_delay=0, embedding_delay=0)
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    await pipeline.wait_for_captures()

    details = store.get_visit_details(visit_id)
    assert len(details.screenshots) == 1
    assert len(details.snapshots) == 1
    assert details.embedding is not None
    assert len(embedder.calls) == 1
    pipeline.stop()


@pytest.mark.asyncio
async def test_pending_captures_cancelled_when_visit_ends(make_pipeline, store, page, embedder):
    pipeline = make_pipeline(screenshot_delay=0.05, snapshot_delay=0.05, embedding_delay=0.05)
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    v1 = pipeline.handle_navigation("tab-1", PAGE1)
    pipeline.handle_tab_close("tab-1")

    await pipeline.wait_for_captures()

    assert page.screenshot_calls == 0
    assert store.get_visit_details(v1).embedding is None
    assert embedder.calls == []
    pipeline.stop()


@pytest.mark.asyncio
async def test_title_and_favicon_updates(make_pipeline, store, page):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)

    pipeline.handle_title_update("tab-1", "Products")
    pipeline.handle_title_update("tab-1", LOADING_TITLE)
    pipeline.handle_title_update("tab-1", "")
    pipeline.handle_favicon_update("tab-1", "https://shop.example.com/favicon.ico")
    pipeline.handle_title_update("tab-unknown", "Ignored")

    visit = store.get_visit(visit_id)
    assert visit.title == "Products"
    assert visit.favicon_url == "https://shop.example.com/favicon.ico"
    pipeline.stop()


@pytest.mark.asyncio
async def test_tab_switch_and_close(make_pipeline, store, page, make_page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    pipeline.attach_tab("tab-2", make_page())
    visit_id = pipeline.handle_navigation("tab-2", PAGE2)
    pipeline.handle_tab_switch("tab-2")
    clock.advance(2500)
    pipeline.handle_tab_close("tab-2")

    events = store.get_session_history(pipeline.session_id).tab_events
    assert [(e.tab_id, e.action) for e in events] == [
        ("tab-1", "created"),
        ("tab-2", "created"),
        ("tab-2", "switched"),
        ("tab-2", "closed"),
    ]
    assert store.get_visit(visit_id).duration == 2500
    assert pipeline.get_current_visit_id("tab-2") is None
    pipeline.stop()


@pytest.mark.asyncio
async def test_stop_flushes_and_ends_open_visits(make_pipeline, store, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    session_id = pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)
    pipeline.record_interaction(_interaction(visit_id, clock))
    clock.advance(900)

    pipeline.stop()

    assert store.get_interaction_count(visit_id) == 1
    assert store.get_visit(visit_id).duration == 900
    assert store.get_session(session_id).end_time == clock.now
    assert len(pipeline.trackers) == 0


@pytest.mark.asyncio
async def test_handlers_swallow_storage_failures(make_pipeline, store, page):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    store.close()

    assert pipeline.handle_navigation("tab-1", PAGE1) is None
    pipeline.handle_title_update("tab-1", "x")
    pipeline.handle_tab_close("tab-1")
    pipeline.stop()


@pytest.mark.asyncio
async def test_browse_click_and_renavigate_scenario(make_pipeline, store, page, clock):
    pipeline = make_pipeline(batch_interval=0.01)
    pipeline.attach_tab("tab-1", page)
    pipeline.start()

    v1 = pipeline.handle_navigation("tab-1", PAGE1)
    for selector in ("#a", "#b", "#c"):
        pipeline.record_interaction(_interaction(v1, clock, selector=selector))
    clock.advance(2000)
    await asyncio.sleep(0.1)

    assert pipeline.pending_count == 0
    assert [i.selector for i in store.get_visit_interactions(v1)] == ["#a", "#b", "#c"]

    v2 = pipeline.handle_navigation("tab-1", PAGE2)
    assert store.get_visit(v1).duration >= 2000
    assert v2 is not None and v2 != v1

    assert pipeline.handle_navigation("tab-1", PAGE2) is None
    assert store.get_visit_count() == 2
    pipeline.stop()


@pytest.mark.asyncio
async def test_disabling_tracking_ends_session(make_pipeline, store, page):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    session_id = pipeline.start()
    pipeline.handle_navigation("tab-1", PAGE1)

    pipeline.set_enabled(False)

    assert not pipeline.is_active
    assert store.get_session(session_id).end_time is not None
    assert pipeline.handle_navigation("tab-1", PAGE2) is None
    assert pipeline.start() is None
    assert store.get_visit_count() == 1


@pytest.mark.asyncio
async def test_reenabling_tracking_starts_new_session(make_pipeline, store, page):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    first = pipeline.start()

    pipeline.apply_settings(pipeline.settings.updated({"enabled": False}))
    assert not pipeline.is_active
    pipeline.apply_settings(pipeline.settings.updated({"enabled": True}))

    assert pipeline.is_active
    assert pipeline.session_id not in (None, first)
    assert pipeline.handle_navigation("tab-1", PAGE1) is not None

    pipeline.set_enabled(False)
    pipeline.set_enabled(True)
    assert pipeline.is_active
    pipeline.stop()


def test_reenabling_without_event_loop_stays_stopped(make_pipeline):
    pipeline = make_pipeline(settings=HistorySettings(enabled=False))
    pipeline.set_enabled(True)
    assert pipeline.session_id is None
    assert not pipeline.is_active


@pytest.mark.asyncio
async def test_interactions_dropped_after_stop(make_pipeline, page, clock):
    pipeline = make_pipeline()
    pipeline.attach_tab("tab-1", page)
    pipeline.start()
    visit_id = pipeline.handle_navigation("tab-1", PAGE1)
    pipeline.stop()

    assert pipeline.record_interaction(_interaction(visit_id, clock)) is False
    assert pipeline.pending_count == 0
