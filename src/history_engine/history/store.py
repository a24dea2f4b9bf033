"""Durable SQLite store for sessions, visits, interactions and captures."""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable

from history_engine.exceptions import StorageError, StorageUnavailableError
from history_engine.history.models import (
    INTERACTION_TYPES,
    TAB_ACTIONS,
    DOMSnapshot,
    EmbeddingRecord,
    HistoryStats,
    Interaction,
    PageVisit,
    PendingInteraction,
    Screenshot,
    ScrollEvent,
    Session,
    SessionHistory,
    TabEvent,
    VisitContent,
    VisitDetails,
    WorkflowCacheEntry,
)

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_SNAPSHOT_MAX_CHARS = 50_000

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    start_time INTEGER NOT NULL,
    end_time INTEGER
);

CREATE TABLE IF NOT EXISTS page_visits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL,
    tab_id TEXT NOT NULL,
    url TEXT NOT NULL,
    title TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    duration INTEGER,
    favicon_url TEXT,
    FOREIGN KEY (session_id) REFERENCES sessions(id)
);
CREATE INDEX IF NOT EXISTS idx_page_visits_session ON page_visits(session_id);
CREATE INDEX IF NOT EXISTS idx_page_visits_tab ON page_visits(tab_id);
CREATE INDEX IF NOT EXISTS idx_page_visits_timestamp ON page_visits(timestamp);
CREATE INDEX IF NOT EXISTS idx_page_visits_url ON page_visits(url);

CREATE TABLE IF NOT EXISTS tab_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL,
    tab_id TEXT NOT NULL,
    action TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id)
);
CREATE INDEX IF NOT EXISTS idx_tab_events_session ON tab_events(session_id);
CREATE INDEX IF NOT EXISTS idx_tab_events_timestamp ON tab_events(timestamp);

CREATE TABLE IF NOT EXISTS interactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    visit_id INTEGER NOT NULL,
    type TEXT NOT NULL,
    selector TEXT,
    value TEXT,
    x INTEGER,
    y INTEGER,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (visit_id) REFERENCES page_visits(id)
);
CREATE INDEX IF NOT EXISTS idx_interactions_visit ON interactions(visit_id);
CREATE INDEX IF NOT EXISTS idx_interactions_timestamp ON interactions(timestamp);

CREATE TABLE IF NOT EXISTS dom_snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    visit_id INTEGER NOT NULL,
    html TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (visit_id) REFERENCES page_visits(id)
);
CREATE INDEX IF NOT EXISTS idx_dom_snapshots_visit ON dom_snapshots(visit_id);

CREATE TABLE IF NOT EXISTS screenshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    visit_id INTEGER NOT NULL,
    image_data TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (visit_id) REFERENCES page_visits(id)
);
CREATE INDEX IF NOT EXISTS idx_screenshots_visit ON screenshots(visit_id);

CREATE TABLE IF NOT EXISTS scroll_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    visit_id INTEGER NOT NULL,
    x INTEGER NOT NULL,
    y INTEGER NOT NULL,
    timestamp INTEGER NOT NULL,
    FOREIGN KEY (visit_id) REFERENCES page_visits(id)
);
CREATE INDEX IF NOT EXISTS idx_scroll_events_visit ON scroll_events(visit_id);

CREATE TABLE IF NOT EXISTS embeddings (
    visit_id INTEGER PRIMARY KEY,
    model_name TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (visit_id) REFERENCES page_visits(id)
);

CREATE TABLE IF NOT EXISTS workflow_cache (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL,
    workflow_data TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    FOREIGN KEY (session_id) REFERENCES sessions(id)
);
CREATE INDEX IF NOT EXISTS idx_workflow_cache_session ON workflow_cache(session_id);
"""

# Sessions that may be purged: old, ended, not current and no longer referenced.
_STALE_SESSIONS = """
    SELECT id FROM sessions
    WHERE start_time < ?
      AND end_time IS NOT NULL
      AND id != ?
      AND id NOT IN (SELECT session_id FROM page_visits)
      AND id NOT IN (SELECT session_id FROM tab_events)
"""


def now_ms() -> int:
    """Wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class HistoryStore:
    """Single-file SQLite history database.

    Only ever used from one thread of control, so it holds no locks. Writes
    commit immediately into the write-ahead log; ``save()`` checkpoints the
    log into the main database file and is called periodically by the
    capture pipeline and on ``close()``.

    A store that failed to open (or was closed) answers reads with empty
    results and ignores best-effort writes. Only the operations whose callers
    need a fresh id (``start_session``, ``record_page_visit``) raise
    ``StorageUnavailableError``.
    """

    def __init__(
        self,
        db_path: Path,
        clock: Callable[[], int] | None = None,
        snapshot_max_chars: int = DEFAULT_SNAPSHOT_MAX_CHARS,
    ):
        self.db_path = db_path
        self.snapshot_max_chars = snapshot_max_chars
        self._clock = clock or now_ms
        self._conn: sqlite3.Connection | None = None
        self._current_session_id: int | None = None
        self._open()

    def _open(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Failed to open history database {self.db_path}: {e}")
            return
        self._conn = conn
        logger.info(f"Opened history database at {self.db_path}")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> HistoryStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- low-level helpers -------------------------------------------------

    def _write(self, sql: str, params: tuple = ()) -> sqlite3.Cursor | None:
        if self._conn is None:
            return None
        try:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StorageError(f"History write failed: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        if self._conn is None:
            return []
        try:
            return self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"History query failed: {e}") from e

    def _count(self, sql: str, params: tuple = ()) -> int:
        rows = self._query(sql, params)
        if not rows:
            return 0
        return int(rows[0][0] or 0)

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageUnavailableError(f"History database is not open ({self.db_path})")
        return self._conn

    # -- sessions ----------------------------------------------------------

    def start_session(self) -> int:
        """Open a new session and make it current."""
        self._require_open()
        if self._current_session_id is not None:
            self.end_session(self._current_session_id)
        self._close_dangling_sessions()
        cursor = self._write("INSERT INTO sessions (start_time) VALUES (?)", (self._clock(),))
        self._current_session_id = int(cursor.lastrowid)
        self.save()
        return self._current_session_id

    def _close_dangling_sessions(self) -> None:
        """Sessions left open by an abnormal exit end at their last known activity."""
        cursor = self._write(
            """
            UPDATE sessions SET end_time = MAX(
                start_time,
                COALESCE(
                    (SELECT MAX(timestamp + COALESCE(duration, 0))
                     FROM page_visits WHERE session_id = sessions.id),
                    start_time
                )
            )
            WHERE end_time IS NULL
            """
        )
        if cursor is not None and cursor.rowcount:
            logger.warning(f"Closed {cursor.rowcount} session(s) left open by a previous run")

    def end_session(self, session_id: int) -> None:
        """Stamp the end time of a session; unknown ids are ignored."""
        self._write(
            "UPDATE sessions SET end_time = MAX(?, start_time) WHERE id = ? AND end_time IS NULL",
            (self._clock(), session_id),
        )
        if self._current_session_id == session_id:
            self._current_session_id = None
        self.save()

    def get_current_session_id(self) -> int | None:
        return self._current_session_id

    def get_current_session(self) -> Session | None:
        if self._current_session_id is None:
            return None
        return self.get_session(self._current_session_id)

    def get_session(self, session_id: int) -> Session | None:
        rows = self._query("SELECT * FROM sessions WHERE id = ?", (session_id,))
        return Session.from_row(rows[0]) if rows else None

    def get_all_sessions(self) -> list[Session]:
        rows = self._query("SELECT * FROM sessions ORDER BY start_time DESC, id DESC")
        return [Session.from_row(r) for r in rows]

    # -- page visits -------------------------------------------------------

    def record_page_visit(
        self,
        session_id: int,
        tab_id: str,
        url: str,
        title: str,
        favicon_url: str | None = None,
    ) -> int:
        """Insert a visit row and return its id."""
        self._require_open()
        cursor = self._write(
            """
            INSERT INTO page_visits (session_id, tab_id, url, title, timestamp, favicon_url)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session_id, tab_id, url, title, self._clock(), favicon_url),
        )
        return int(cursor.lastrowid)

    def update_page_visit_duration(self, visit_id: int, duration: int) -> None:
        self._write(
            "UPDATE page_visits SET duration = ? WHERE id = ?",
            (max(0, int(duration)), visit_id),
        )

    def update_page_visit_title(self, visit_id: int, title: str) -> None:
        self._write("UPDATE page_visits SET title = ? WHERE id = ?", (title, visit_id))

    def update_page_visit_favicon(self, visit_id: int, favicon_url: str | None) -> None:
        self._write("UPDATE page_visits SET favicon_url = ? WHERE id = ?", (favicon_url, visit_id))

    def get_visit(self, visit_id: int) -> PageVisit | None:
        rows = self._query("SELECT * FROM page_visits WHERE id = ?", (visit_id,))
        return PageVisit.from_row(rows[0]) if rows else None

    def get_open_visits(self, session_id: int) -> list[PageVisit]:
        """Visits of a session that have not been given a duration yet."""
        rows = self._query(
            "SELECT * FROM page_visits WHERE session_id = ? AND duration IS NULL "
            "ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )
        return [PageVisit.from_row(r) for r in rows]

    # -- tab events --------------------------------------------------------

    def record_tab_event(self, session_id: int, tab_id: str, action: str) -> None:
        if action not in TAB_ACTIONS:
            raise ValueError(f"Unknown tab action: {action!r}")
        self._write(
            "INSERT INTO tab_events (session_id, tab_id, action, timestamp) VALUES (?, ?, ?, ?)",
            (session_id, tab_id, action, self._clock()),
        )

    # -- interactions and captures ----------------------------------------

    def record_interaction(
        self,
        visit_id: int,
        type: str,
        selector: str | None = None,
        value: str | None = None,
        x: int | None = None,
        y: int | None = None,
        timestamp: int | None = None,
    ) -> None:
        if type not in INTERACTION_TYPES:
            raise ValueError(f"Unknown interaction type: {type!r}")
        self._write(
            """
            INSERT INTO interactions (visit_id, type, selector, value, x, y, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (visit_id, type, selector, value, x, y, timestamp or self._clock()),
        )

    def record_interactions_batch(self, interactions: list[PendingInteraction]) -> int:
        """Insert interactions in input order; returns the number written.

        Best effort: a row that fails (bad type, unknown visit) is logged and
        skipped without rolling back the others.
        """
        if self._conn is None or not interactions:
            return 0
        written = 0
        try:
            for item in interactions:
                if item.type not in INTERACTION_TYPES:
                    logger.warning(f"Skipping interaction with unknown type {item.type!r}")
                    continue
                try:
                    self._conn.execute(
                        """
                        INSERT INTO interactions (visit_id, type, selector, value, x, y, timestamp)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            item.visit_id,
                            item.type,
                            item.selector,
                            item.value,
                            item.x,
                            item.y,
                            item.timestamp or self._clock(),
                        ),
                    )
                    written += 1
                except sqlite3.Error as e:
                    logger.warning(f"Skipping interaction for visit {item.visit_id}: {e}")
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StorageError(f"Interaction batch commit failed: {e}") from e
        return written

    def record_dom_snapshot(self, visit_id: int, html: str) -> None:
        self._write(
            "INSERT INTO dom_snapshots (visit_id, html, timestamp) VALUES (?, ?, ?)",
            (visit_id, (html or "")[: self.snapshot_max_chars], self._clock()),
        )

    def record_screenshot(self, visit_id: int, image_data: str) -> None:
        self._write(
            "INSERT INTO screenshots (visit_id, image_data, timestamp) VALUES (?, ?, ?)",
            (visit_id, image_data, self._clock()),
        )

    def record_scroll_event(self, visit_id: int, x: int, y: int) -> None:
        self._write(
            "INSERT INTO scroll_events (visit_id, x, y, timestamp) VALUES (?, ?, ?, ?)",
            (visit_id, int(x), int(y), self._clock()),
        )

    # -- queries -----------------------------------------------------------

    def get_session_history(self, session_id: int) -> SessionHistory | None:
        session = self.get_session(session_id)
        if session is None:
            return None
        visits = self._query(
            "SELECT * FROM page_visits WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )
        tab_events = self._query(
            "SELECT * FROM tab_events WHERE session_id = ? ORDER BY timestamp ASC, id ASC",
            (session_id,),
        )
        return SessionHistory(
            session=session,
            visits=[PageVisit.from_row(r) for r in visits],
            tab_events=[TabEvent.from_row(r) for r in tab_events],
        )

    def get_recent_history(self, limit: int = 50) -> list[PageVisit]:
        if limit <= 0:
            return []
        rows = self._query(
            "SELECT * FROM page_visits ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [PageVisit.from_row(r) for r in rows]

    def get_history_by_date_range(self, start_time: int, end_time: int) -> list[PageVisit]:
        rows = self._query(
            """
            SELECT * FROM page_visits
            WHERE timestamp >= ? AND timestamp <= ?
            ORDER BY timestamp DESC, id DESC
            """,
            (start_time, end_time),
        )
        return [PageVisit.from_row(r) for r in rows]

    def get_visit_interactions(self, visit_id: int) -> list[Interaction]:
        rows = self._query(
            "SELECT * FROM interactions WHERE visit_id = ? ORDER BY timestamp ASC, id ASC",
            (visit_id,),
        )
        return [Interaction.from_row(r) for r in rows]

    def get_visit_screenshots(self, visit_id: int) -> list[Screenshot]:
        rows = self._query(
            "SELECT * FROM screenshots WHERE visit_id = ? ORDER BY timestamp ASC, id ASC",
            (visit_id,),
        )
        return [Screenshot.from_row(r) for r in rows]

    def get_visit_snapshots(self, visit_id: int) -> list[DOMSnapshot]:
        rows = self._query(
            "SELECT * FROM dom_snapshots WHERE visit_id = ? ORDER BY timestamp ASC, id ASC",
            (visit_id,),
        )
        return [DOMSnapshot.from_row(r) for r in rows]

    def get_visit_scroll_events(self, visit_id: int) -> list[ScrollEvent]:
        rows = self._query(
            "SELECT * FROM scroll_events WHERE visit_id = ? ORDER BY timestamp ASC, id ASC",
            (visit_id,),
        )
        return [ScrollEvent.from_row(r) for r in rows]

    def get_visit_details(self, visit_id: int) -> VisitDetails | None:
        visit = self.get_visit(visit_id)
        if visit is None:
            return None
        return VisitDetails(
            visit=visit,
            interactions=self.get_visit_interactions(visit_id),
            screenshots=self.get_visit_screenshots(visit_id),
            snapshots=self.get_visit_snapshots(visit_id),
            scroll_events=self.get_visit_scroll_events(visit_id),
            embedding=self.get_embedding(visit_id),
        )

    def get_visit_content(self, visit_id: int) -> VisitContent | None:
        """Title, url and latest DOM snapshot html of a visit."""
        visit = self.get_visit(visit_id)
        if visit is None:
            return None
        rows = self._query(
            "SELECT html FROM dom_snapshots WHERE visit_id = ? ORDER BY timestamp DESC, id DESC LIMIT 1",
            (visit_id,),
        )
        html = rows[0]["html"] if rows else ""
        return VisitContent(title=visit.title, url=visit.url, html=html)

    def search_history(self, query: str, limit: int = 50) -> list[PageVisit]:
        """Case-insensitive substring match over title or url, newest first."""
        if limit <= 0:
            return []
        pattern = _like_pattern(query or "")
        rows = self._query(
            """
            SELECT * FROM page_visits
            WHERE title LIKE ? ESCAPE '\\' OR url LIKE ? ESCAPE '\\'
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (pattern, pattern, limit),
        )
        return [PageVisit.from_row(r) for r in rows]

    # -- embeddings --------------------------------------------------------

    def has_embedding(self, visit_id: int, content_hash: str | None = None) -> bool:
        """Whether the visit is indexed (with ``content_hash``, when given)."""
        if content_hash is None:
            return self._count("SELECT COUNT(*) FROM embeddings WHERE visit_id = ?", (visit_id,)) > 0
        return self._count(
            "SELECT COUNT(*) FROM embeddings WHERE visit_id = ? AND content_hash = ?",
            (visit_id, content_hash),
        ) > 0

    def record_embedding(self, visit_id: int, model_name: str, content_hash: str) -> None:
        """Record the live embedding of a visit, replacing any previous one."""
        self._write(
            """
            INSERT OR REPLACE INTO embeddings (visit_id, model_name, content_hash, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (visit_id, model_name, content_hash, self._clock()),
        )

    def get_embedding(self, visit_id: int) -> EmbeddingRecord | None:
        rows = self._query("SELECT * FROM embeddings WHERE visit_id = ?", (visit_id,))
        return EmbeddingRecord.from_row(rows[0]) if rows else None

    def get_embedded_visit_ids(self) -> list[int]:
        rows = self._query("SELECT visit_id FROM embeddings ORDER BY visit_id ASC")
        return [int(r["visit_id"]) for r in rows]

    def delete_embedding(self, visit_id: int) -> None:
        self._write("DELETE FROM embeddings WHERE visit_id = ?", (visit_id,))

    # -- workflow cache ----------------------------------------------------

    def cache_workflow(self, session_id: int, workflow_data: str) -> None:
        self._write(
            "INSERT INTO workflow_cache (session_id, workflow_data, created_at) VALUES (?, ?, ?)",
            (session_id, workflow_data, self._clock()),
        )
        self.save()

    def get_workflow_cache(self, session_id: int) -> WorkflowCacheEntry | None:
        rows = self._query(
            """
            SELECT * FROM workflow_cache WHERE session_id = ?
            ORDER BY created_at DESC, id DESC LIMIT 1
            """,
            (session_id,),
        )
        return WorkflowCacheEntry.from_row(rows[0]) if rows else None

    # -- cleanup -----------------------------------------------------------

    def delete_old_history(self, older_than_days: int) -> list[int]:
        """Delete visits older than the cutoff, children first.

        Returns the ids of the deleted visits so derived indexes can drop them.
        """
        if older_than_days < 0:
            raise ValueError("older_than_days must be >= 0")
        if self._conn is None:
            return []
        cutoff = self._clock() - older_than_days * DAY_MS
        current = self._current_session_id if self._current_session_id is not None else -1
        old_visits = "SELECT id FROM page_visits WHERE timestamp < ?"

        deleted_ids = [
            int(r["id"]) for r in self._query(old_visits, (cutoff,))
        ]
        stmts = [
            (f"DELETE FROM scroll_events WHERE visit_id IN ({old_visits})", (cutoff,)),
            (f"DELETE FROM screenshots WHERE visit_id IN ({old_visits})", (cutoff,)),
            (f"DELETE FROM dom_snapshots WHERE visit_id IN ({old_visits})", (cutoff,)),
            (f"DELETE FROM interactions WHERE visit_id IN ({old_visits})", (cutoff,)),
            (f"DELETE FROM embeddings WHERE visit_id IN ({old_visits})", (cutoff,)),
            ("DELETE FROM page_visits WHERE timestamp < ?", (cutoff,)),
            ("DELETE FROM tab_events WHERE timestamp < ?", (cutoff,)),
            (f"DELETE FROM workflow_cache WHERE session_id IN ({_STALE_SESSIONS})", (cutoff, current)),
            (f"DELETE FROM sessions WHERE id IN ({_STALE_SESSIONS})", (cutoff, current)),
        ]
        try:
            for sql, params in stmts:
                self._conn.execute(sql, params)
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn.rollback()
            raise StorageError(f"Failed to delete old history: {e}") from e

        logger.info(f"Deleted {len(deleted_ids)} visit(s) older than {older_than_days} day(s)")
        self.save()
        return deleted_ids

    # -- statistics --------------------------------------------------------

    def get_visit_count(self) -> int:
        return self._count("SELECT COUNT(*) FROM page_visits")

    def get_interaction_count(self, visit_id: int) -> int:
        return self._count("SELECT COUNT(*) FROM interactions WHERE visit_id = ?", (visit_id,))

    def get_stats(self) -> HistoryStats:
        return HistoryStats(
            sessions=self._count("SELECT COUNT(*) FROM sessions"),
            visits=self.get_visit_count(),
            interactions=self._count("SELECT COUNT(*) FROM interactions"),
            screenshots=self._count("SELECT COUNT(*) FROM screenshots"),
            snapshots=self._count("SELECT COUNT(*) FROM dom_snapshots"),
            scroll_events=self._count("SELECT COUNT(*) FROM scroll_events"),
            embeddings=self._count("SELECT COUNT(*) FROM embeddings"),
            current_session_id=self._current_session_id,
        )

    # -- persistence -------------------------------------------------------

    def save(self) -> None:
        """Checkpoint the write-ahead log into the database file."""
        if self._conn is None:
            return
        try:
            self._conn.commit()
            self._conn.execute("PRAGMA wal_checkpoint(PASSIVE)")
        except sqlite3.Error as e:
            logger.warning(f"History checkpoint failed: {e}")

    def close(self) -> None:
        if self._conn is None:
            return
        self.save()
        try:
            self._conn.close()
        finally:
            self._conn = None
            logger.info(f"Closed history database at {self.db_path}")
