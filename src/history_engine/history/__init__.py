"""Durable browsing history: sessions, visits, interactions and captures."""

from history_engine.history.models import (
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
from history_engine.history.settings import HistorySettings
from history_engine.history.store import HistoryStore
from history_engine.history.urls import hostname_of, is_excluded_domain

__all__ = [
    "HistoryStore",
    "HistorySettings",
    "hostname_of",
    "is_excluded_domain",
    "Session",
    "PageVisit",
    "TabEvent",
    "Interaction",
    "DOMSnapshot",
    "Screenshot",
    "ScrollEvent",
    "EmbeddingRecord",
    "WorkflowCacheEntry",
    "PendingInteraction",
    "SessionHistory",
    "VisitContent",
    "VisitDetails",
    "HistoryStats",
]
