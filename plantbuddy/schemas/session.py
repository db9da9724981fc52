"""
Session Schemas
===============

Pydantic models for login and token refresh.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plantbuddy.enums.common import Role


class LoginRequest(BaseModel):
    """Body of ``POST user/login``."""

    name: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, repr=False)


class LoginResponse(BaseModel):
    """Response of ``POST user/login`` and ``POST user/refresh``."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str
    role: Role
    token: str = Field(..., min_length=1, repr=False)
    expires_in: int | None = Field(default=None, gt=0)

    @field_validator("role", mode="before")
    @classmethod
    def parse_role(cls, v):
        return Role.from_wire(v)
