"""
Remote plant-management service API.

Maps client operations onto :class:`~infrastructure.api.transport.TransportClient`
requests and validates every response with the pydantic schemas in
``plantbuddy.schemas``. Callers receive domain objects, never raw JSON.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from infrastructure.api.transport import Request, TransportClient
from plantbuddy.domain.exceptions import MalformedResponseError, ServerError, ValidationError
from plantbuddy.domain.models import Plant, SensorReading, UserAccount
from plantbuddy.enums.common import MetricKind, Role
from plantbuddy.schemas import (
    ConflictPayload,
    LoginRequest,
    LoginResponse,
    PlantPayload,
    PlantWriteRequest,
    SensorDataResponse,
    UserPayload,
    UserWriteRequest,
)
from plantbuddy.utils.time import to_wire_timestamp

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _parse(model: type[M], payload: Any, what: str) -> M:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        logger.error("Malformed %s payload: %s", what, e.errors(include_input=False))
        raise MalformedResponseError(f"Malformed {what} response", detail={"errors": e.error_count()}) from e


def _body(model: type[M], **values: Any) -> dict[str, Any]:
    """Validate an outgoing body; bad local input never reaches the wire."""
    try:
        return model(**values).to_wire()
    except PydanticValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err.get("loc")})
        raise ValidationError(f"Invalid request fields: {fields}", detail={"fields": fields}) from e


def _parse_ids(payload: Any, what: str) -> tuple[str, ...]:
    if not isinstance(payload, list):
        raise MalformedResponseError(f"Expected a list of ids for {what}")
    return tuple(str(item) for item in payload)


class PlantServiceApi:
    """Typed operations against the remote service."""

    def __init__(self, transport: TransportClient) -> None:
        self.transport = transport

    # -- session ---------------------------------------------------------
    def login(self, username: str, password: str) -> LoginResponse:
        body = LoginRequest(name=username, password=password).model_dump()
        response = self.transport.send(Request("POST", "user/login", json=body))
        return _parse(LoginResponse, response.payload, "login")

    def refresh(self, token: str) -> LoginResponse:
        response = self.transport.send(Request("POST", "user/refresh", token=token))
        return _parse(LoginResponse, response.payload, "session refresh")

    # -- plants ----------------------------------------------------------
    def list_plant_ids(self, token: str) -> tuple[str, ...]:
        response = self.transport.send(Request("GET", "plants", token=token))
        return _parse_ids(response.payload, "plants")

    def get_plant(self, token: str, plant_id: str) -> Plant | None:
        """Fetch one plant; ``None`` when the server no longer has it."""
        try:
            response = self.transport.send(Request("GET", f"plant/{plant_id}", token=token))
        except ServerError as e:
            if e.status == 404:
                return None
            raise
        return _parse(PlantPayload, response.payload, "plant").to_domain()

    def create_plant(self, token: str, fields: Mapping[str, Any]) -> Plant:
        body = _body(PlantWriteRequest, **fields)
        response = self.transport.send(Request("POST", "plant", json=body, token=token))
        return _parse(PlantPayload, response.payload, "plant").to_domain()

    def update_plant(self, token: str, plant_id: str, changes: Mapping[str, Any], base_version: int) -> Plant:
        body = _body(PlantWriteRequest, **changes, base_version=base_version)
        response = self.transport.send(Request("PUT", f"plant/{plant_id}", json=body, token=token))
        return _parse(PlantPayload, response.payload, "plant").to_domain()

    def delete_plant(self, token: str, plant_id: str, base_version: int) -> None:
        self.transport.send(
            Request("DELETE", f"plant/{plant_id}", params={"base_version": base_version}, token=token)
        )

    @staticmethod
    def conflict_canonical(error: ServerError) -> Plant | None:
        """Extract the server's canonical plant from a 409 body, if present."""
        if not isinstance(error.payload, dict):
            return None
        try:
            conflict = ConflictPayload.model_validate(error.payload)
        except PydanticValidationError:
            logger.warning("Conflict response carried an unreadable plant payload")
            return None
        return conflict.plant.to_domain() if conflict.plant is not None else None

    # -- readings --------------------------------------------------------
    def get_readings(
        self, token: str, plant_id: str, metric: MetricKind, start: datetime, end: datetime
    ) -> tuple[SensorReading, ...]:
        params = {
            "sensor": MetricKind(metric).value,
            "plant": plant_id,
            "from": to_wire_timestamp(start),
            "to": to_wire_timestamp(end),
        }
        response = self.transport.send(Request("GET", "sensor-data", params=params, token=token))
        return _parse(SensorDataResponse, response.payload or {}, "sensor data").to_domain(plant_id, metric)

    # -- users -----------------------------------------------------------
    def list_user_ids(self, token: str) -> tuple[str, ...]:
        response = self.transport.send(Request("GET", "users", token=token))
        return _parse_ids(response.payload, "users")

    def get_user(self, token: str, user_id: Any) -> UserAccount | None:
        try:
            response = self.transport.send(Request("GET", f"user/{user_id}", token=token))
        except ServerError as e:
            if e.status == 404:
                return None
            raise
        return _parse(UserPayload, response.payload, "user").to_domain()

    def create_user(self, token: str, display_name: str, password: str, role: Role) -> UserAccount | None:
        """Create a user. Returns the stored record when the service echoes it back."""
        body = _body(UserWriteRequest, name=display_name, password=password, role=role)
        response = self.transport.send(Request("POST", "user/", json=body, token=token))
        if response.payload is None:
            return None
        return _parse(UserPayload, response.payload, "user").to_domain()

    def update_user(
        self,
        token: str,
        user_id: int,
        *,
        display_name: str | None = None,
        password: str | None = None,
        role: Role | None = None,
    ) -> UserAccount | None:
        body = _body(UserWriteRequest, name=display_name, password=password, role=role)
        response = self.transport.send(Request("PUT", f"user/{user_id}", json=body, token=token))
        if response.payload is None:
            return None
        return _parse(UserPayload, response.payload, "user").to_domain()

    def delete_user(self, token: str, user_id: int) -> None:
        self.transport.send(Request("DELETE", f"user/{user_id}", token=token))
