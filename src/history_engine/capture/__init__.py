"""Capture pipeline: turns browser events into history rows and vectors."""

from history_engine.capture.page import PageView, to_data_url
from history_engine.capture.pipeline import LOADING_TITLE, CapturePipeline
from history_engine.capture.trackers import VisitTracker, VisitTrackerArena

__all__ = [
    "CapturePipeline",
    "PageView",
    "VisitTracker",
    "VisitTrackerArena",
    "LOADING_TITLE",
    "to_data_url",
]
