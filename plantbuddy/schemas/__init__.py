"""
Schemas Module
==============

Pydantic models for the remote service's request and response bodies.
Every response passes through one of these before it becomes a domain object.
"""

from plantbuddy.schemas.plants import ConflictPayload, PlantPayload, PlantWriteRequest
from plantbuddy.schemas.sensors import SensorDataResponse, SensorSample
from plantbuddy.schemas.session import LoginRequest, LoginResponse
from plantbuddy.schemas.users import UserPayload, UserWriteRequest

__all__ = [
    "ConflictPayload",
    "LoginRequest",
    "LoginResponse",
    "PlantPayload",
    "PlantWriteRequest",
    "SensorDataResponse",
    "SensorSample",
    "UserPayload",
    "UserWriteRequest",
]
