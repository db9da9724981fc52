"""
Sensor Schemas
==============

Schemas for ``GET sensor-data`` range queries.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from plantbuddy.domain.models import SensorReading
from plantbuddy.enums.common import MetricKind
from plantbuddy.utils.time import coerce_datetime


class SensorSample(BaseModel):
    value: float
    timestamp: datetime

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v):
        """Accept ISO-8601 with or without offset; naive timestamps are UTC."""
        parsed = coerce_datetime(v)
        if parsed is None:
            raise ValueError(f"Invalid timestamp: {v!r}")
        return parsed


class SensorDataResponse(BaseModel):
    """``{"data": [{"value": ..., "timestamp": ...}, ...]}``"""

    model_config = ConfigDict(extra="ignore")

    data: list[SensorSample] = Field(default_factory=list)

    def to_domain(self, plant_id: str, metric: MetricKind) -> tuple[SensorReading, ...]:
        return tuple(
            SensorReading(plant_id=plant_id, timestamp=sample.timestamp, metric_kind=metric, value=sample.value)
            for sample in self.data
        )
