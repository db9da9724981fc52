from datetime import datetime, timezone

import pytest

from infrastructure.api.transport import Response
from plantbuddy.domain.exceptions import MalformedResponseError, ServerError, ValidationError
from plantbuddy.domain.models import Plant
from plantbuddy.enums.common import MetricKind, Role


def test_login_posts_credentials_and_parses_role(api, fake_transport, make_login):
    fake_transport.route("POST", "user/login", make_login(user_id=99, name="admin", role=0))

    reply = api.login("admin", "1234")

    assert reply.role is Role.ADMIN
    assert reply.token == "tok-admin"
    request = fake_transport.calls[0]
    assert request.json == {"name": "admin", "password": "1234"}
    assert request.token is None


def test_login_with_unknown_role_code_is_malformed(api, fake_transport, make_login):
    fake_transport.route("POST", "user/login", make_login(role=7))

    with pytest.raises(MalformedResponseError):
        api.login("alice", "pw")


def test_get_plant_returns_domain_object(api, fake_transport, make_plant):
    fake_transport.route("GET", "plant/7", make_plant("7", version=3, care_tips=["Water weekly"]))

    plant = api.get_plant("tok", "7")

    assert isinstance(plant, Plant)
    assert plant.metadata_version == 3
    assert plant.care_tips == ("Water weekly",)
    assert fake_transport.calls[0].token == "tok"


def test_get_plant_accepts_integer_ids(api, fake_transport, make_plant):
    fake_transport.route("GET", "plant/12", make_plant(12))

    assert api.get_plant("tok", "12").id == "12"


def test_get_plant_not_found_returns_none(api, fake_transport):
    fake_transport.route("GET", "plant/404", ServerError(404))

    assert api.get_plant("tok", "404") is None


def test_get_plant_missing_name_is_malformed(api, fake_transport):
    fake_transport.route("GET", "plant/7", {"id": "7", "version": 1})

    with pytest.raises(MalformedResponseError):
        api.get_plant("tok", "7")


def test_plant_index_must_be_a_list(api, fake_transport):
    fake_transport.route("GET", "plants", {"ids": ["1"]})

    with pytest.raises(MalformedResponseError):
        api.list_plant_ids("tok")


def test_update_plant_sends_base_version(api, fake_transport, make_plant):
    fake_transport.route("PUT", "plant/7", make_plant("7", version=4, name="Thai basil"))

    plant = api.update_plant("tok", "7", {"name": "Thai basil"}, base_version=3)

    assert plant.name == "Thai basil"
    assert fake_transport.calls[0].json == {"name": "Thai basil", "base_version": 3}


def test_update_plant_rejects_bad_field_locally(api, fake_transport):
    with pytest.raises(ValidationError):
        api.update_plant("tok", "7", {"name": ""}, base_version=1)

    assert fake_transport.calls == []


def test_delete_plant_passes_base_version_as_query(api, fake_transport):
    fake_transport.route("DELETE", "plant/7", Response(status=204))

    api.delete_plant("tok", "7", base_version=5)

    assert fake_transport.calls[0].params == {"base_version": 5}


def test_conflict_canonical_reads_plant_from_409_body(api, make_plant):
    error = ServerError(409, {"plant": make_plant("7", version=4)})

    canonical = api.conflict_canonical(error)

    assert canonical.metadata_version == 4


def test_conflict_canonical_tolerates_missing_body(api):
    assert api.conflict_canonical(ServerError(409, None)) is None
    assert api.conflict_canonical(ServerError(409, {"plant": {"bogus": True}})) is None


def test_readings_query_uses_wire_timestamps(api, fake_transport):
    fake_transport.route(
        "GET",
        "sensor-data",
        {"data": [{"value": 41.5, "timestamp": "2023-05-19T10:00:00.000Z"}, {"value": 40, "timestamp": "2023-05-19T11:00:00Z"}]},
    )
    start = datetime(2023, 5, 19, tzinfo=timezone.utc)
    end = datetime(2023, 5, 20, tzinfo=timezone.utc)

    readings = api.get_readings("tok", "7", MetricKind.HUMIDITY, start, end)

    assert [r.value for r in readings] == [41.5, 40.0]
    assert all(r.metric_kind is MetricKind.HUMIDITY and r.plant_id == "7" for r in readings)
    assert fake_transport.calls[0].params == {
        "sensor": "humidity",
        "plant": "7",
        "from": "2023-05-19T00:00:00.000Z",
        "to": "2023-05-20T00:00:00.000Z",
    }


def test_get_user_maps_role_codes(api, fake_transport):
    fake_transport.route("GET", "user/3", {"id": 3, "name": "bob", "role": 1})

    user = api.get_user("tok", 3)

    assert user.display_name == "bob"
    assert user.role is Role.STANDARD


def test_create_user_sends_role_wire_code(api, fake_transport):
    fake_transport.route("POST", "user/", Response(status=201))

    assert api.create_user("tok", "carol", "pw", Role.ADMIN) is None
    assert fake_transport.calls[0].json == {"name": "carol", "password": "pw", "role": 0}
