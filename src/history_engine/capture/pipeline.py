"""Capture pipeline: visit lifecycle, interaction batching and throttled captures."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from history_engine.capture.page import PageView, to_data_url
from history_engine.capture.text import build_embedding_text, content_hash, html_to_text
from history_engine.capture.trackers import VisitTracker, VisitTrackerArena
from history_engine.config import EngineConfig
from history_engine.embeddings.base import AsyncBaseEmbedder
from history_engine.history.models import INTERACTION_TYPES, PendingInteraction
from history_engine.history.settings import HistorySettings
from history_engine.history.store import HistoryStore, now_ms
from history_engine.vectorstore.base import BaseVectorIndex

logger = logging.getLogger(__name__)

LOADING_TITLE = "Loading..."

Capture = Callable[[str, int], Awaitable[bool]]


class CapturePipeline:
    """The only writer of visit lifecycle state.

    Runs on a single asyncio loop with no worker threads: interval tasks flush
    queued interactions and checkpoint the store, and each navigation
    schedules staggered one-shot screenshot, snapshot and embedding captures.
    Handlers on this hot path log failures and never raise them.
    """

    def __init__(
        self,
        store: HistoryStore,
        vector_index: BaseVectorIndex | None = None,
        embedder: AsyncBaseEmbedder | None = None,
        settings: HistorySettings | None = None,
        config: EngineConfig | None = None,
        trackers: VisitTrackerArena | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.store = store
        self.vector_index = vector_index
        self.embedder = embedder
        self.settings = settings or HistorySettings()
        self.config = config or EngineConfig()
        self.trackers = trackers if trackers is not None else VisitTrackerArena()
        self._clock = clock or now_ms
        self._session_id: int | None = None
        self._pages: dict[str, PageView] = {}
        self._announced_tabs: set[str] = set()
        self._pending: list[PendingInteraction] = []
        self._flush_task: asyncio.Task | None = None
        self._save_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._embedding_inflight: set[tuple[int, str]] = set()

    # -- lifecycle ---------------------------------------------------------

    @property
    def session_id(self) -> int | None:
        return self._session_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def is_active(self) -> bool:
        return self.settings.enabled and self._session_id is not None

    def start(self) -> int | None:
        """Open a session and start the flush and save timers.

        Must run inside the event loop. Raises when the store cannot hand
        out a session id.
        """
        if not self.settings.enabled:
            logger.info("History tracking is disabled; not starting")
            return None
        if self._session_id is not None:
            return self._session_id

        loop = asyncio.get_running_loop()
        self._session_id = self.store.start_session()
        self._flush_task = loop.create_task(self._run_every(self.config.batch_interval, self.flush))
        self._save_task = loop.create_task(self._run_every(self.config.save_interval, self.store.save))
        for tab_id in list(self._pages):
            self._announce_tab(tab_id)
        logger.info(f"History tracking started. Session ID: {self._session_id}")
        return self._session_id

    def stop(self) -> None:
        """Flush, end open visits and the session, and cancel all timers."""
        for task in (self._flush_task, self._save_task):
            if task is not None and not task.done():
                task.cancel()
        self._flush_task = None
        self._save_task = None

        if self._session_id is None:
            self.trackers.clear()
            return

        self.flush()
        now = self._clock()
        for tab_id in self.trackers.tab_ids():
            tracker = self.trackers.pop(tab_id)
            if tracker is not None:
                self._end_visit(tracker, now)
        try:
            self.store.end_session(self._session_id)
        except Exception:
            logger.exception(f"Failed to end session {self._session_id}")
        logger.info(f"History tracking stopped. Session ID: {self._session_id}")
        self._session_id = None
        self._announced_tabs.clear()

    async def _run_every(self, interval: float, fn: Callable[[], object]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                fn()
            except Exception:
                logger.exception("Periodic %s failed", getattr(fn, "__name__", fn))

    async def wait_for_captures(self) -> None:
        """Wait until every scheduled or running capture has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def set_enabled(self, enabled: bool) -> None:
        was_enabled = self.settings.enabled
        self.settings.enabled = enabled
        self._follow_enabled(was_enabled)

    def apply_settings(self, settings: HistorySettings) -> None:
        """Swap in new settings; open visits on newly excluded hosts are ended.

        Turning tracking off stops the pipeline; turning it back on starts a
        new session.
        """
        was_enabled = self.settings.enabled
        self.settings = settings
        self._follow_enabled(was_enabled)
        if not settings.enabled:
            return
        now = self._clock()
        for tab_id, tracker in self.trackers:
            if settings.is_domain_excluded(tracker.url):
                self.trackers.pop(tab_id)
                self._end_visit(tracker, now)

    def _follow_enabled(self, was_enabled: bool) -> None:
        if not self.settings.enabled:
            if self._session_id is not None:
                self.stop()
        elif not was_enabled and self._session_id is None:
            try:
                self.start()
            except RuntimeError as e:
                logger.warning(f"Tracking enabled but not restarted: {e}")

    def get_current_visit_id(self, tab_id: str) -> int | None:
        tracker = self.trackers.get(tab_id)
        return tracker.visit_id if tracker else None

    # -- tabs --------------------------------------------------------------

    def attach_tab(self, tab_id: str, page: PageView) -> None:
        """Register the browser view of a tab and record its creation."""
        self._pages[tab_id] = page
        self._announce_tab(tab_id)

    def _announce_tab(self, tab_id: str) -> None:
        if not self.is_active or tab_id in self._announced_tabs:
            return
        self._announced_tabs.add(tab_id)
        try:
            self.store.record_tab_event(self._session_id, tab_id, "created")
        except Exception:
            logger.exception(f"Failed to record creation of tab {tab_id}")

    def handle_tab_switch(self, tab_id: str) -> None:
        if not self.is_active:
            return
        try:
            self.store.record_tab_event(self._session_id, tab_id, "switched")
        except Exception:
            logger.exception(f"Failed to record switch to tab {tab_id}")

    def handle_tab_close(self, tab_id: str) -> None:
        """Record the close, stamp the final duration and drop the tracker."""
        self._pages.pop(tab_id, None)
        self._announced_tabs.discard(tab_id)
        if not self.is_active:
            self.trackers.pop(tab_id)
            return
        try:
            self.store.record_tab_event(self._session_id, tab_id, "closed")
        except Exception:
            logger.exception(f"Failed to record close of tab {tab_id}")
        tracker = self.trackers.pop(tab_id)
        if tracker is not None:
            self._end_visit(tracker, self._clock())

    # -- navigation --------------------------------------------------------

    def handle_navigation(self, tab_id: str, url: str, title: str | None = None) -> int | None:
        """Process a navigation of ``tab_id``; returns the new visit id, if any."""
        if not self.is_active:
            return None
        try:
            return self._navigate(tab_id, url, title)
        except Exception:
            logger.exception(f"Failed to record navigation of tab {tab_id}")
            return None

    def _navigate(self, tab_id: str, url: str, title: str | None) -> int | None:
        now = self._clock()
        tracker = self.trackers.get(tab_id)

        if self.settings.is_domain_excluded(url):
            # The outgoing visit ends here; nothing is recorded for the excluded page.
            if tracker is not None:
                self.trackers.pop(tab_id)
                self._end_visit(tracker, now)
            return None

        if tracker is not None and tracker.url == url:
            return None

        if tracker is not None:
            self._end_visit(tracker, now)

        visit_id = self.store.record_page_visit(
            self._session_id, tab_id, url, title or LOADING_TITLE
        )
        tracker = VisitTracker(visit_id=visit_id, start_time=now, url=url)
        self.trackers.set(tab_id, tracker)

        self._schedule(tab_id, tracker, "screenshot", self.config.screenshot_delay, self.capture_screenshot)
        self._schedule(tab_id, tracker, "snapshot", self.config.snapshot_delay, self.capture_dom_snapshot)
        self._schedule(tab_id, tracker, "embedding", self.config.embedding_delay, self.generate_embedding)
        return visit_id

    def _end_visit(self, tracker: VisitTracker, now: int) -> None:
        tracker.cancel_pending()
        try:
            self.store.update_page_visit_duration(tracker.visit_id, now - tracker.start_time)
        except Exception:
            logger.exception(f"Failed to stamp duration of visit {tracker.visit_id}")

    def _schedule(
        self,
        tab_id: str,
        tracker: VisitTracker,
        kind: str,
        delay: float,
        capture: Capture,
    ) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop; {kind} capture for visit {tracker.visit_id} skipped")
            return

        async def fire() -> None:
            await asyncio.sleep(delay)
            # Once fired, a capture runs to completion even if the visit ends.
            tracker.pending.pop(kind, None)
            await capture(tab_id, tracker.visit_id)

        task = loop.create_task(fire())
        tracker.pending[kind] = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def handle_title_update(self, tab_id: str, title: str) -> None:
        if not self.is_active or not title or title == LOADING_TITLE:
            return
        tracker = self.trackers.get(tab_id)
        if tracker is None:
            return
        try:
            self.store.update_page_visit_title(tracker.visit_id, title)
        except Exception:
            logger.exception(f"Failed to update title of visit {tracker.visit_id}")

    def handle_favicon_update(self, tab_id: str, favicon_url: str | None) -> None:
        if not self.is_active or not favicon_url:
            return
        tracker = self.trackers.get(tab_id)
        if tracker is None:
            return
        try:
            self.store.update_page_visit_favicon(tracker.visit_id, favicon_url)
        except Exception:
            logger.exception(f"Failed to update favicon of visit {tracker.visit_id}")

    # -- throttled captures ------------------------------------------------

    def _capture_target(self, tab_id: str, visit_id: int) -> tuple[VisitTracker, PageView] | None:
        tracker = self.trackers.get(tab_id)
        page = self._pages.get(tab_id)
        if tracker is None or page is None or tracker.visit_id != visit_id:
            return None
        return tracker, page

    async def capture_screenshot(self, tab_id: str, visit_id: int) -> bool:
        target = self._capture_target(tab_id, visit_id)
        if target is None:
            return False
        tracker, page = target
        now = self._clock()
        if now - tracker.last_screenshot_at < self.config.screenshot_throttle_ms:
            return False

        previous = tracker.last_screenshot_at
        tracker.last_screenshot_at = now
        try:
            image = await page.capture_screenshot(self.settings.screenshot_quality)
            self.store.record_screenshot(visit_id, to_data_url(image))
        except Exception:
            tracker.last_screenshot_at = previous
            logger.exception(f"Failed to capture screenshot for visit {visit_id}")
            return False
        return True

    async def capture_dom_snapshot(self, tab_id: str, visit_id: int) -> bool:
        target = self._capture_target(tab_id, visit_id)
        if target is None:
            return False
        tracker, page = target
        now = self._clock()
        if now - tracker.last_snapshot_at < self.config.snapshot_throttle_ms:
            return False

        previous = tracker.last_snapshot_at
        tracker.last_snapshot_at = now
        try:
            html = await page.get_page_html()
            self.store.record_dom_snapshot(visit_id, (html or "")[: self.config.snapshot_max_chars])
        except Exception:
            tracker.last_snapshot_at = previous
            logger.exception(f"Failed to capture DOM snapshot for visit {visit_id}")
            return False
        return True

    # -- embeddings --------------------------------------------------------

    async def generate_embedding(self, tab_id: str, visit_id: int) -> bool:
        """Embed a visit's text and index it, unless its content is already indexed.

        Failures leave the visit unindexed; there is no automatic retry.
        """
        if self.vector_index is None or self.embedder is None:
            return False
        key = None
        try:
            text = await self._embedding_text(tab_id, visit_id)
            if not text:
                return False
            digest = content_hash(text)
            key = (visit_id, digest)
            if key in self._embedding_inflight or self.store.has_embedding(visit_id, digest):
                logger.debug(f"Visit {visit_id} already embedded with this content")
                key = None
                return False
            self._embedding_inflight.add(key)

            vector = await self.embedder.embed(text)
            self.vector_index.add_vector(visit_id, vector)
            self.store.record_embedding(visit_id, self.embedder.model, digest)
            logger.info(f"Generated embedding for visit {visit_id}")
            return True
        except Exception:
            logger.exception(f"Failed to generate embedding for visit {visit_id}")
            return False
        finally:
            if key is not None:
                self._embedding_inflight.discard(key)

    async def _embedding_text(self, tab_id: str, visit_id: int) -> str:
        visit = self.store.get_visit(visit_id)
        if visit is None:
            return ""
        page_text = ""
        if self._capture_target(tab_id, visit_id) is not None:
            try:
                page_text = await self._pages[tab_id].get_page_text()
            except Exception as e:
                logger.warning(f"Could not read page text for visit {visit_id}: {e}")
        if not page_text:
            content = self.store.get_visit_content(visit_id)
            page_text = html_to_text(content.html) if content else ""
        return build_embedding_text(
            visit.title, visit.url, page_text, self.config.embedding_text_max_chars
        )

    # -- interactions ------------------------------------------------------

    def record_interaction(self, interaction: PendingInteraction | dict) -> bool:
        """Queue an interaction reported by a page (fire-and-forget).

        Returns whether it was queued. The queue is flushed by the interval
        timer, or immediately once it grows past ``batch_max_size``.
        """
        if not self.is_active or not self.settings.track_interactions:
            return False
        try:
            if isinstance(interaction, PendingInteraction):
                item = interaction
            else:
                item = PendingInteraction.from_dict(interaction)
            if not self._accepts(item):
                return False
            if not item.timestamp:
                item.timestamp = self._clock()
            if item.type == "scroll":
                self._sample_scroll(item)
            self._pending.append(item)
        except Exception:
            logger.exception("Failed to queue interaction")
            return False

        if len(self._pending) > self.config.batch_max_size:
            self.flush()
        return True

    def _accepts(self, item: PendingInteraction) -> bool:
        if item.type not in INTERACTION_TYPES:
            logger.warning(f"Dropping interaction with unknown type {item.type!r}")
            return False
        if item.type == "clipboard" and not self.settings.track_clipboard:
            return False
        if item.type == "scroll" and not self.settings.track_scroll_events:
            return False
        url = self._visit_url(item.visit_id)
        if url is None:
            logger.debug(f"Dropping interaction for unknown visit {item.visit_id}")
            return False
        return not self.settings.is_domain_excluded(url)

    def _visit_url(self, visit_id: int) -> str | None:
        found = self.trackers.find_by_visit(visit_id)
        if found is not None:
            return found[1].url
        visit = self.store.get_visit(visit_id)
        return visit.url if visit else None

    def _sample_scroll(self, item: PendingInteraction) -> None:
        found = self.trackers.find_by_visit(item.visit_id)
        if found is None:
            return
        tracker = found[1]
        now = self._clock()
        if now - tracker.last_scroll_at < self.config.scroll_throttle_ms:
            return
        tracker.last_scroll_at = now
        try:
            self.store.record_scroll_event(item.visit_id, item.x or 0, item.y or 0)
        except Exception:
            logger.exception(f"Failed to record scroll position for visit {item.visit_id}")

    def flush(self) -> int:
        """Write all queued interactions, in order; returns rows written.

        A batch that fails to write is logged and dropped.
        """
        if not self._pending:
            return 0
        batch = self._pending
        self._pending = []
        try:
            written = self.store.record_interactions_batch(batch)
        except Exception:
            logger.exception(f"Failed to flush {len(batch)} interaction(s)")
            return 0
        logger.debug(f"Flushed {written} interaction(s) to the history database")
        return written
