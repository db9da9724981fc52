from datetime import datetime, timedelta, timezone

import pytest

from plantbuddy.domain.exceptions import ValidationError
from plantbuddy.domain.models import EntityKey, Plant, SensorReading, Session, merge_readings
from plantbuddy.enums.common import EntityKind, MetricKind, Role

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def test_plant_apply_changes_returns_copy():
    plant = Plant(id="7", name="Basil", metadata_version=3)

    edited = plant.apply_changes({"name": "Thai basil", "care_tips": ["Pinch flowers"]})

    assert edited.name == "Thai basil"
    assert edited.care_tips == ("Pinch flowers",)
    assert edited.metadata_version == 3
    assert plant.name == "Basil"


@pytest.mark.parametrize("field", ["id", "metadata_version", "last_reading_summary"])
def test_plant_server_owned_fields_are_not_editable(field):
    with pytest.raises(ValidationError):
        Plant(id="7", name="Basil").apply_changes({field: 1})


def test_plant_version_ordering():
    v3 = Plant(id="7", name="Basil", metadata_version=3)

    assert Plant(id="7", name="Basil", metadata_version=4).is_newer_than(v3)
    assert not Plant(id="7", name="Basil", metadata_version=3).is_newer_than(v3)
    assert v3.is_newer_than(None)


def test_plant_to_dict_is_json_friendly():
    data = Plant(id="7", name="Basil", care_tips=("Sun",), last_reading_summary={"humidity": 40.0}).to_dict()

    assert data["care_tips"] == ["Sun"]
    assert data["last_reading_summary"] == {"humidity": 40.0}


def test_entity_keys():
    assert EntityKey.plant(7) == EntityKey.plant("7")
    assert str(EntityKey.plant(7)) == "plant/7"
    key = EntityKey.readings("7", MetricKind.SOIL_MOISTURE)
    assert key.kind is EntityKind.READINGS
    assert key.split_readings_id() == ("7", MetricKind.SOIL_MOISTURE)


def test_merge_readings_orders_and_keeps_cached_samples():
    cached = (SensorReading("7", T0, MetricKind.HUMIDITY, 40.0),)
    fetched = (
        SensorReading("7", T0 + timedelta(minutes=5), MetricKind.HUMIDITY, 41.0),
        SensorReading("7", T0, MetricKind.HUMIDITY, 99.0),
        SensorReading("7", T0 - timedelta(minutes=5), MetricKind.HUMIDITY, 39.0),
    )

    merged = merge_readings(cached, fetched)

    assert [r.value for r in merged] == [39.0, 40.0, 41.0]
    assert merge_readings(None, ()) == ()


def test_session_expiry():
    session = Session(1, "alice", Role.STANDARD, "tok", issued_at=T0, expires_at=T0 + timedelta(hours=1))

    assert not session.is_expired(T0 + timedelta(minutes=59))
    assert session.is_expired(T0 + timedelta(hours=1))
    assert session.seconds_left(T0) == 3600
    assert "tok" not in repr(session)


@pytest.mark.parametrize("wire,role", [(0, Role.ADMIN), (1, Role.STANDARD), ("0", Role.ADMIN), ("admin", Role.ADMIN)])
def test_role_from_wire(wire, role):
    assert Role.from_wire(wire) is role
    assert Role.from_wire(role.to_wire()) is role


def test_unknown_role_code():
    with pytest.raises(ValueError):
        Role.from_wire(2)
