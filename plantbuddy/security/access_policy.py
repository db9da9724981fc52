"""
Access Policy Gate
==================

Pure role -> operation table. The same answer drives two things:

* the mutation coordinator refuses denied operations before any request
  is built;
* the presentation shell hides surfaces the role cannot use at all.

Ownership is decided by the caller: a plant whose owner is unknown counts
as someone else's plant.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from plantbuddy.domain.mutations import MutationKind
from plantbuddy.enums.common import Role


class Operation(str, Enum):
    VIEW_OWN_PLANTS = "view_own_plants"
    EDIT_OWN_PLANT = "edit_own_plant"
    VIEW_ANY_PLANT = "view_any_plant"
    EDIT_ANY_PLANT = "edit_any_plant"
    MANAGE_USERS = "manage_users"
    CHANGE_SETTINGS = "change_settings"


_STANDARD = frozenset(
    {
        Operation.VIEW_OWN_PLANTS,
        Operation.EDIT_OWN_PLANT,
        Operation.CHANGE_SETTINGS,
    }
)

POLICY: dict[Role, frozenset[Operation]] = {
    Role.STANDARD: _STANDARD,
    Role.ADMIN: frozenset(Operation),
}

_USER_MUTATIONS = frozenset({MutationKind.CREATE_USER, MutationKind.UPDATE_USER, MutationKind.DELETE_USER})
_PLANT_MUTATIONS = frozenset({MutationKind.CREATE_PLANT, MutationKind.EDIT_PLANT, MutationKind.DELETE_PLANT})


def is_allowed(role: Role | None, operation: Operation) -> bool:
    """Return True when ``role`` may perform ``operation``. No role allows nothing."""
    if role is None:
        return False
    return operation in POLICY.get(role, frozenset())


def allowed_operations(role: Role | None) -> frozenset[Operation]:
    """Every operation ``role`` may perform, for hiding admin-only surfaces."""
    if role is None:
        return frozenset()
    return POLICY.get(role, frozenset())


def operation_for(mutation: Any, user_id: int | None, owner_id: int | None = None) -> Operation:
    """Classify a mutation as the policy operation it needs.

    Args:
        mutation: Any mutation command (see ``plantbuddy.domain.mutations``).
        user_id: Id of the logged-in user.
        owner_id: Owner of the targeted plant, when the mutation targets one.
    """
    kind = mutation.kind
    if kind is MutationKind.UPDATE_SETTINGS:
        return Operation.CHANGE_SETTINGS
    if kind in _USER_MUTATIONS:
        return Operation.MANAGE_USERS
    if kind in _PLANT_MUTATIONS:
        if kind is MutationKind.CREATE_PLANT:
            requested_owner = mutation.fields.get("owner_id")
            owner_id = user_id if requested_owner is None else requested_owner
        elif kind is MutationKind.EDIT_PLANT and mutation.changes.get("owner_id") is not None:
            # Handing a plant to another user is an edit of someone else's plant
            if user_id is None or int(mutation.changes["owner_id"]) != int(user_id):
                return Operation.EDIT_ANY_PLANT
        if owner_id is not None and user_id is not None and int(owner_id) == int(user_id):
            return Operation.EDIT_OWN_PLANT
        return Operation.EDIT_ANY_PLANT
    raise ValueError(f"Unknown mutation kind: {kind!r}")


def may_view_plant(role: Role | None, user_id: int | None, owner_id: int | None) -> bool:
    """Read-side counterpart of :func:`operation_for` for plant visibility."""
    if is_allowed(role, Operation.VIEW_ANY_PLANT):
        return True
    if owner_id is None or user_id is None:
        return False
    return is_allowed(role, Operation.VIEW_OWN_PLANTS) and int(owner_id) == int(user_id)
