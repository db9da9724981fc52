"""
Plant Schemas
=============

Wire schemas for plant endpoints. Responses are validated here and converted
into immutable domain objects before they reach the cache.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plantbuddy.domain.models import Plant


class PlantPayload(BaseModel):
    """Plant object as returned by ``GET plant/{id}`` and plant writes."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str
    species: str = ""
    location: str = ""
    owner_id: int | None = None
    last_reading_summary: dict[str, float] = Field(default_factory=dict)
    version: int = Field(default=0, ge=0, alias="metadata_version")
    description: str = ""
    group_id: str | None = None
    care_tips: list[str] = Field(default_factory=list)

    @field_validator("id", "group_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v):
        """The service returns ids as strings or integers."""
        if v is None:
            return v
        return str(v)

    @field_validator("species", "location", "description", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    def to_domain(self) -> Plant:
        return Plant(
            id=self.id,
            name=self.name,
            species=self.species,
            location=self.location,
            owner_id=self.owner_id,
            last_reading_summary=dict(self.last_reading_summary),
            metadata_version=self.version,
            description=self.description,
            group_id=self.group_id,
            care_tips=tuple(self.care_tips),
        )


class PlantWriteRequest(BaseModel):
    """Body of ``POST plant`` and ``PUT plant/{id}``."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1)
    species: str | None = None
    location: str | None = None
    description: str | None = None
    group_id: str | None = None
    care_tips: list[str] | None = None
    owner_id: int | None = None
    base_version: int | None = Field(default=None, ge=0)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ConflictPayload(BaseModel):
    """Body of a ``409`` response: the server's canonical plant."""

    model_config = ConfigDict(extra="ignore")

    plant: PlantPayload | None = None
