"""
Mutation Commands
=================
Create/update/delete commands accepted by the mutation coordinator.

Each command names the cache key it targets; commands targeting the same key
are executed strictly in submission order. Creates have no server id yet, so
they target a client-side temporary key derived from ``client_ref``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from plantbuddy.domain.models import EntityKey
from plantbuddy.enums.common import EntityKind, Role


class MutationKind(str, Enum):
    CREATE_PLANT = "create_plant"
    EDIT_PLANT = "edit_plant"
    DELETE_PLANT = "delete_plant"
    UPDATE_SETTINGS = "update_settings"
    CREATE_USER = "create_user"
    UPDATE_USER = "update_user"
    DELETE_USER = "delete_user"


def _client_ref() -> str:
    return f"new-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class EditPlant:
    plant_id: str
    changes: Mapping[str, Any]
    base_version: int

    kind = MutationKind.EDIT_PLANT

    @property
    def key(self) -> EntityKey:
        return EntityKey.plant(self.plant_id)


@dataclass(frozen=True)
class CreatePlant:
    fields: Mapping[str, Any]
    client_ref: str = field(default_factory=_client_ref)

    kind = MutationKind.CREATE_PLANT

    @property
    def key(self) -> EntityKey:
        return EntityKey.plant(self.client_ref)


@dataclass(frozen=True)
class DeletePlant:
    plant_id: str
    base_version: int

    kind = MutationKind.DELETE_PLANT

    @property
    def key(self) -> EntityKey:
        return EntityKey.plant(self.plant_id)


@dataclass(frozen=True)
class UpdateSettings:
    changes: Mapping[str, Any]

    kind = MutationKind.UPDATE_SETTINGS

    @property
    def key(self) -> EntityKey:
        return EntityKey(EntityKind.SETTINGS, "local")


@dataclass(frozen=True)
class CreateUser:
    display_name: str
    password: str = field(repr=False)
    role: Role = Role.STANDARD
    client_ref: str = field(default_factory=_client_ref)

    kind = MutationKind.CREATE_USER

    @property
    def key(self) -> EntityKey:
        return EntityKey.user(self.client_ref)


@dataclass(frozen=True)
class UpdateUser:
    user_id: int
    display_name: str | None = None
    password: str | None = field(default=None, repr=False)
    role: Role | None = None

    kind = MutationKind.UPDATE_USER

    @property
    def key(self) -> EntityKey:
        return EntityKey.user(self.user_id)


@dataclass(frozen=True)
class DeleteUser:
    user_id: int

    kind = MutationKind.DELETE_USER

    @property
    def key(self) -> EntityKey:
        return EntityKey.user(self.user_id)


Mutation = EditPlant | CreatePlant | DeletePlant | UpdateSettings | CreateUser | UpdateUser | DeleteUser


@dataclass(frozen=True)
class Ack:
    """Confirmation of an accepted mutation."""

    kind: MutationKind
    key: EntityKey
    value: Any = None
    version: int | None = None
