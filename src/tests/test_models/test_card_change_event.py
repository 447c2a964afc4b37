"""
Tests for CardChangeEvent
"""

import pytest
from pydantic import ValidationError

from models import CardChangeEvent, ChangeType


class TestCardChangeEvent:
    """Shape checks and derived fields"""

    def test_update_takes_project_from_record(self, make_card):
        event = CardChangeEvent(type=ChangeType.UPDATE, record=make_card("c1"))

        assert event.project_id == "project-1"
        assert event.entity_id == "c1"
        assert not event.is_delete

    def test_insert_requires_record(self):
        with pytest.raises(ValidationError):
            CardChangeEvent(type=ChangeType.INSERT)

    def test_delete_requires_id(self):
        with pytest.raises(ValidationError):
            CardChangeEvent(type=ChangeType.DELETE, old_record={})

    def test_delete_without_project(self):
        event = CardChangeEvent(type=ChangeType.DELETE, old_record={"id": "c9"})

        assert event.is_delete
        assert event.entity_id == "c9"
        assert event.project_id is None

    def test_commit_epoch(self, make_card):
        event = CardChangeEvent(
            type=ChangeType.UPDATE,
            record=make_card(),
            commit_timestamp="2025-10-01T12:00:00+00:00",
        )
        assert event.commit_epoch == pytest.approx(1759320000.0)

    def test_commit_epoch_missing(self, make_card):
        event = CardChangeEvent(type=ChangeType.UPDATE, record=make_card())
        assert event.commit_epoch is None
