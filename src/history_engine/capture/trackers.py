"""Per-tab visit trackers and their pending delayed captures."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterator


@dataclass
class VisitTracker:
    """Transient state of the open visit in one tab.

    Advisory only: the history store is the source of truth, and trackers can
    be rebuilt from its open visits.
    """

    visit_id: int
    start_time: int
    url: str
    last_screenshot_at: int = 0
    last_snapshot_at: int = 0
    last_scroll_at: int = 0
    # Delayed captures that have not fired yet, by kind.
    pending: dict[str, asyncio.Task] = field(default_factory=dict)

    def cancel_pending(self) -> int:
        """Cancel captures that have not fired; returns how many were cancelled."""
        cancelled = 0
        for task in self.pending.values():
            if not task.done():
                task.cancel()
                cancelled += 1
        self.pending.clear()
        return cancelled


class VisitTrackerArena:
    """Owns the visit trackers, keyed by tab id.

    Injected into the capture pipeline so callers and tests can inspect it.
    Replacing or removing a tracker cancels its pending captures.
    """

    def __init__(self) -> None:
        self._by_tab: dict[str, VisitTracker] = {}

    def get(self, tab_id: str) -> VisitTracker | None:
        return self._by_tab.get(tab_id)

    def set(self, tab_id: str, tracker: VisitTracker) -> None:
        previous = self._by_tab.get(tab_id)
        if previous is not None and previous is not tracker:
            previous.cancel_pending()
        self._by_tab[tab_id] = tracker

    def pop(self, tab_id: str) -> VisitTracker | None:
        tracker = self._by_tab.pop(tab_id, None)
        if tracker is not None:
            tracker.cancel_pending()
        return tracker

    def find_by_visit(self, visit_id: int) -> tuple[str, VisitTracker] | None:
        for tab_id, tracker in self._by_tab.items():
            if tracker.visit_id == visit_id:
                return tab_id, tracker
        return None

    def tab_ids(self) -> list[str]:
        return list(self._by_tab)

    def clear(self) -> None:
        for tab_id in list(self._by_tab):
            self.pop(tab_id)

    def __contains__(self, tab_id: object) -> bool:
        return tab_id in self._by_tab

    def __len__(self) -> int:
        return len(self._by_tab)

    def __iter__(self) -> Iterator[tuple[str, VisitTracker]]:
        return iter(list(self._by_tab.items()))
