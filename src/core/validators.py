"""
Input validation for card mutations

Checks run before any network call. Non-finite coordinates and missing or
foreign project scope are rejected; finite coordinates outside the canvas are
accepted here and clamped by the caller.
"""

import math
from typing import Any

from models import Card, MutationKind


class ValidationError(Exception):
    """Raised when validation fails"""

    pass


def validate_coordinates(x: Any, y: Any) -> tuple[bool, str | None]:
    """
    Validate a pair of logical coordinates

    Returns:
        Tuple of (is_valid, error_message)
    """
    for axis, value in (("x", x), ("y", y)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False, f"Invalid {axis} coordinate: {value!r} (must be a number)"
        if not math.isfinite(value):
            return False, f"Invalid {axis} coordinate: {value} (must be finite)"
    return True, None


def validate_project_scope(
    project_id: str | None, active_project_id: str | None
) -> tuple[bool, str | None]:
    """Validate a mutation targets the active project."""
    if not project_id:
        return False, "Missing project scope"
    if active_project_id is None:
        return False, "No active project"
    if project_id != active_project_id:
        return False, f"Project {project_id} is not the active project ({active_project_id})"
    return True, None


def validate_mutation(
    kind: MutationKind,
    project_id: str | None,
    active_project_id: str | None,
    payload: dict[str, Any] | None = None,
    existing: Card | None = None,
) -> tuple[bool, str | None]:
    """
    Validate a card mutation before it is applied

    Args:
        kind: Mutation kind
        project_id: Project the mutation is scoped to
        active_project_id: Currently open project
        payload: Fields being written (create/update/move)
        existing: Current card value (required for update/move/delete)

    Returns:
        Tuple of (is_valid, error_message)
    """
    is_valid, error = validate_project_scope(project_id, active_project_id)
    if not is_valid:
        return False, error

    if kind != MutationKind.CREATE:
        if existing is None:
            return False, f"{kind.value} of unknown card"
        if existing.project_id != project_id:
            return False, f"Card {existing.id} belongs to project {existing.project_id}"

    payload = payload or {}
    if kind == MutationKind.CREATE or "x" in payload or "y" in payload:
        x = payload.get("x", existing.x if existing else None)
        y = payload.get("y", existing.y if existing else None)
        if kind == MutationKind.CREATE and x is None and y is None:
            # Placement picks a position
            return True, None
        is_valid, error = validate_coordinates(x, y)
        if not is_valid:
            return False, error

    if kind == MutationKind.CREATE and payload.get("project_id") not in (None, project_id):
        return False, "Payload project_id does not match mutation scope"

    return True, None


def require_valid(result: tuple[bool, str | None]) -> None:
    """Raise ValidationError for a failed (is_valid, error_message) check."""
    is_valid, error = result
    if not is_valid:
        raise ValidationError(error)


class CardLockedError(ValidationError):
    """Edit refused: another participant holds the card's lock"""

    def __init__(self, card_id: str, holder_id: str | None):
        super().__init__(f"Card {card_id} is being edited by {holder_id}")
        self.card_id = card_id
        self.holder_id = holder_id
