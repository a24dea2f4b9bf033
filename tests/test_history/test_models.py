"""Tests for history data models."""

import pytest

from history_engine.history.models import PendingInteraction


def test_pending_interaction_from_page_payload():
    item = PendingInteraction.from_dict(
        {"visitId": "7", "type": "click", "selector": "#buy", "x": "10", "y": 20.0, "timestamp": 5}
    )
    assert item.visit_id == 7
    assert item.type == "click"
    assert item.selector == "#buy"
    assert (item.x, item.y) == (10, 20)
    assert item.timestamp == 5


def test_pending_interaction_blank_fields_become_none():
    item = PendingInteraction.from_dict({"visit_id": 1, "type": "input", "value": "", "x": ""})
    assert item.value is None
    assert item.x is None
    assert item.timestamp == 0


def test_pending_interaction_requires_visit_id():
    with pytest.raises(ValueError, match="visit id"):
        PendingInteraction.from_dict({"type": "click"})
