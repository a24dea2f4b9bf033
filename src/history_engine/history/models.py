"""Data models for the browsing history store."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field

TAB_ACTIONS = ("created", "switched", "closed")
INTERACTION_TYPES = ("click", "input", "scroll", "select", "clipboard", "keypress")


@dataclass
class Session:
    """One app run's browsing period."""

    id: int
    start_time: int
    end_time: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Session:
        return cls(id=row["id"], start_time=row["start_time"], end_time=row["end_time"])


@dataclass
class PageVisit:
    """One navigation to a URL in one tab."""

    id: int
    session_id: int
    tab_id: str
    url: str
    title: str
    timestamp: int
    duration: int | None = None
    favicon_url: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> PageVisit:
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            tab_id=row["tab_id"],
            url=row["url"],
            title=row["title"],
            timestamp=row["timestamp"],
            duration=row["duration"],
            favicon_url=row["favicon_url"],
        )


@dataclass
class TabEvent:
    id: int
    session_id: int
    tab_id: str
    action: str  # "created" | "switched" | "closed"
    timestamp: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> TabEvent:
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            tab_id=row["tab_id"],
            action=row["action"],
            timestamp=row["timestamp"],
        )


@dataclass
class Interaction:
    """A user action inside a visited page."""

    id: int
    visit_id: int
    type: str
    selector: str | None
    value: str | None
    x: int | None
    y: int | None
    timestamp: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Interaction:
        return cls(
            id=row["id"],
            visit_id=row["visit_id"],
            type=row["type"],
            selector=row["selector"],
            value=row["value"],
            x=row["x"],
            y=row["y"],
            timestamp=row["timestamp"],
        )


@dataclass
class DOMSnapshot:
    id: int
    visit_id: int
    html: str
    timestamp: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> DOMSnapshot:
        return cls(id=row["id"], visit_id=row["visit_id"], html=row["html"], timestamp=row["timestamp"])


@dataclass
class Screenshot:
    id: int
    visit_id: int
    image_data: str  # data URL
    timestamp: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Screenshot:
        return cls(
            id=row["id"],
            visit_id=row["visit_id"],
            image_data=row["image_data"],
            timestamp=row["timestamp"],
        )


@dataclass
class ScrollEvent:
    id: int
    visit_id: int
    x: int
    y: int
    timestamp: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ScrollEvent:
        return cls(id=row["id"], visit_id=row["visit_id"], x=row["x"], y=row["y"], timestamp=row["timestamp"])


@dataclass
class EmbeddingRecord:
    """Marks a visit as semantically indexed."""

    visit_id: int
    model_name: str
    content_hash: str
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> EmbeddingRecord:
        return cls(
            visit_id=row["visit_id"],
            model_name=row["model_name"],
            content_hash=row["content_hash"],
            created_at=row["created_at"],
        )


@dataclass
class WorkflowCacheEntry:
    id: int
    session_id: int
    workflow_data: str  # JSON
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> WorkflowCacheEntry:
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            workflow_data=row["workflow_data"],
            created_at=row["created_at"],
        )


@dataclass
class PendingInteraction:
    """An interaction reported by a page, queued until the next batch flush."""

    visit_id: int
    type: str
    timestamp: int
    selector: str | None = None
    value: str | None = None
    x: int | None = None
    y: int | None = None

    @classmethod
    def from_dict(cls, raw: dict) -> PendingInteraction:
        """Build from a page-reported payload (camelCase ``visitId`` accepted)."""
        visit_id = raw.get("visit_id", raw.get("visitId"))
        if visit_id is None:
            raise ValueError("interaction payload has no visit id")
        return cls(
            visit_id=int(visit_id),
            type=str(raw.get("type") or ""),
            timestamp=int(raw.get("timestamp") or 0),
            selector=raw.get("selector") or None,
            value=raw.get("value") or None,
            x=_optional_int(raw.get("x")),
            y=_optional_int(raw.get("y")),
        )


@dataclass
class SessionHistory:
    session: Session
    visits: list[PageVisit] = field(default_factory=list)
    tab_events: list[TabEvent] = field(default_factory=list)


@dataclass
class VisitContent:
    """Text sources available for embedding a visit."""

    title: str
    url: str
    html: str


@dataclass
class VisitDetails:
    visit: PageVisit
    interactions: list[Interaction] = field(default_factory=list)
    screenshots: list[Screenshot] = field(default_factory=list)
    snapshots: list[DOMSnapshot] = field(default_factory=list)
    scroll_events: list[ScrollEvent] = field(default_factory=list)
    embedding: EmbeddingRecord | None = None


@dataclass
class HistoryStats:
    sessions: int = 0
    visits: int = 0
    interactions: int = 0
    screenshots: int = 0
    snapshots: int = 0
    scroll_events: int = 0
    embeddings: int = 0
    vectors: int = 0
    current_session_id: int | None = None


def _optional_int(value) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
