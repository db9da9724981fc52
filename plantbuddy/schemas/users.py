"""
User Schemas
============

Wire schemas for the admin user endpoints.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plantbuddy.domain.models import UserAccount
from plantbuddy.enums.common import Role


class UserPayload(BaseModel):
    """User object as returned by ``GET user/{id}``."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    role: Role = Role.STANDARD
    version: int = 0
    credentials_ref: str | None = None

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v):
        return Role.from_wire(v)

    def to_domain(self) -> UserAccount:
        return UserAccount(
            id=self.id,
            display_name=self.name,
            role=self.role,
            credentials_ref=self.credentials_ref,
            version=self.version,
        )


class UserWriteRequest(BaseModel):
    """Body of ``POST user/`` and ``PUT user/{id}``; the role travels as its wire code."""

    name: str | None = Field(default=None, min_length=1)
    password: str | None = Field(default=None, min_length=1, repr=False)
    role: Role | None = None

    def to_wire(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        if self.role is not None:
            data["role"] = self.role.to_wire()
        return data
