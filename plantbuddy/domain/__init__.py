"""
Domain Package
==============
Immutable entities, mutation commands and the exception hierarchy of the
client core.
"""

from .models import EntityKey, Plant, SensorReading, Session, UserAccount, merge_readings
from .mutations import (
    Ack,
    CreatePlant,
    CreateUser,
    DeletePlant,
    DeleteUser,
    EditPlant,
    Mutation,
    MutationKind,
    UpdateSettings,
    UpdateUser,
)

__all__ = [
    "Ack",
    "CreatePlant",
    "CreateUser",
    "DeletePlant",
    "DeleteUser",
    "EditPlant",
    "EntityKey",
    "Mutation",
    "MutationKind",
    "Plant",
    "SensorReading",
    "Session",
    "UpdateSettings",
    "UpdateUser",
    "UserAccount",
    "merge_readings",
]
