"""
Tests for mutation validation
"""

import math

import pytest

from core.validators import (
    CardLockedError,
    ValidationError,
    require_valid,
    validate_coordinates,
    validate_mutation,
    validate_project_scope,
)
from models import MutationKind


class TestValidateCoordinates:
    """validate_coordinates"""

    def test_finite_numbers(self):
        assert validate_coordinates(130, 130.5) == (True, None)

    def test_out_of_canvas_is_accepted(self):
        # Range is the caller's job (clamp), not validation's
        is_valid, _ = validate_coordinates(-5000, 5000)
        assert is_valid

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite(self, bad):
        is_valid, error = validate_coordinates(bad, 10)
        assert not is_valid
        assert "finite" in error

    @pytest.mark.parametrize("bad", ["130", None, True, [1]])
    def test_non_numeric(self, bad):
        is_valid, error = validate_coordinates(10, bad)
        assert not is_valid
        assert "y" in error


class TestValidateProjectScope:
    """validate_project_scope"""

    def test_missing_scope(self):
        assert validate_project_scope(None, "project-1")[0] is False
        assert validate_project_scope("", "project-1")[0] is False

    def test_no_active_project(self):
        is_valid, error = validate_project_scope("project-1", None)
        assert not is_valid
        assert error == "No active project"

    def test_foreign_project(self):
        is_valid, error = validate_project_scope("project-2", "project-1")
        assert not is_valid
        assert "project-2" in error


class TestValidateMutation:
    """validate_mutation"""

    def test_create_without_position_is_allowed(self):
        assert validate_mutation(MutationKind.CREATE, "project-1", "project-1", {}) == (True, None)

    def test_create_with_nan(self):
        is_valid, _ = validate_mutation(
            MutationKind.CREATE, "project-1", "project-1", {"x": math.nan, "y": 1}
        )
        assert not is_valid

    def test_create_with_mismatched_payload_project(self):
        is_valid, error = validate_mutation(
            MutationKind.CREATE, "project-1", "project-1", {"x": 1, "y": 1, "project_id": "project-2"}
        )
        assert not is_valid
        assert "project_id" in error

    def test_update_requires_existing_card(self):
        is_valid, error = validate_mutation(MutationKind.UPDATE, "project-1", "project-1", {})
        assert not is_valid
        assert "unknown card" in error

    def test_update_of_card_in_other_project(self, make_card):
        card = make_card("c1", project_id="project-2")
        is_valid, _ = validate_mutation(MutationKind.UPDATE, "project-1", "project-1", {}, card)
        assert not is_valid

    def test_partial_move_uses_existing_axis(self, make_card):
        card = make_card("c1", x=100, y=100)
        assert validate_mutation(MutationKind.MOVE, "project-1", "project-1", {"x": 200}, card)[0]

    def test_partial_move_with_bad_axis(self, make_card):
        card = make_card("c1")
        is_valid, _ = validate_mutation(
            MutationKind.MOVE, "project-1", "project-1", {"y": math.inf}, card
        )
        assert not is_valid

    def test_delete(self, make_card):
        card = make_card("c1")
        assert validate_mutation(MutationKind.DELETE, "project-1", "project-1", None, card)[0]


class TestRequireValid:
    """require_valid and CardLockedError"""

    def test_passes_through(self):
        require_valid((True, None))

    def test_raises_with_message(self):
        with pytest.raises(ValidationError, match="No active project"):
            require_valid((False, "No active project"))

    def test_card_locked_error(self):
        error = CardLockedError("c1", "bob")

        assert isinstance(error, ValidationError)
        assert error.card_id == "c1"
        assert error.holder_id == "bob"
        assert str(error) == "Card c1 is being edited by bob"
