import json
from unittest.mock import MagicMock

import pytest
import requests

from infrastructure.api.transport import Request, TransportClient
from plantbuddy.domain.exceptions import (
    MalformedResponseError,
    ServerError,
    TransportTimeoutError,
    UnreachableError,
)


def _http(status: int, body=None, raw: bytes | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    if raw is not None:
        response._content = raw
    else:
        response._content = json.dumps(body).encode("utf-8") if body is not None else b""
    response.encoding = "utf-8"
    return response


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture()
def http_session():
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture()
def transport_clock():
    return _Clock()


@pytest.fixture()
def sleeps(transport_clock):
    recorded = []

    def _sleep(seconds):
        recorded.append(seconds)
        transport_clock.now += seconds

    _sleep.recorded = recorded
    return _sleep


@pytest.fixture()
def transport(http_session, sleeps, transport_clock):
    return TransportClient(
        "https://pb.example.test/v1",
        timeout=30.0,
        max_retries=3,
        backoff_base=0.25,
        backoff_max=4.0,
        session=http_session,
        sleep=sleeps,
        clock=transport_clock,
    )


def test_get_is_retried_with_exponential_backoff(transport, http_session, sleeps):
    http_session.request.side_effect = [
        requests.exceptions.ConnectionError("refused"),
        requests.exceptions.ConnectionError("refused"),
        _http(200, ["1", "2"]),
    ]

    response = transport.send(Request("GET", "plants", token="tok"))

    assert response.payload == ["1", "2"]
    assert http_session.request.call_count == 3
    assert sleeps.recorded == [0.25, 0.5]
    assert transport.get_metrics()["retries"] == 2


def test_get_gives_up_after_max_retries(transport, http_session, sleeps):
    http_session.request.side_effect = requests.exceptions.ConnectionError("down")

    with pytest.raises(UnreachableError) as excinfo:
        transport.send(Request("GET", "plants", token="tok"))

    assert http_session.request.call_count == 4
    assert sleeps.recorded == [0.25, 0.5, 1.0]
    assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)


@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE"])
def test_writes_are_never_retried(transport, http_session, sleeps, method):
    http_session.request.side_effect = requests.exceptions.ConnectionError("reset")

    with pytest.raises(UnreachableError):
        transport.send(Request(method, "plant/7", json={"name": "x"}, token="tok"))

    assert http_session.request.call_count == 1
    assert sleeps.recorded == []


def test_timeout_maps_to_transport_timeout(transport, http_session):
    http_session.request.side_effect = requests.exceptions.ReadTimeout("slow")

    with pytest.raises(TransportTimeoutError):
        transport.send(Request("POST", "user/login", json={"name": "a", "password": "b"}))


def test_deadline_covers_retries_and_backoff(http_session, transport_clock):
    def _slow_failure(*args, **kwargs):
        transport_clock.now += 0.4
        raise requests.exceptions.ConnectTimeout("no route")

    def _sleep(seconds):
        transport_clock.now += seconds

    http_session.request.side_effect = _slow_failure
    client = TransportClient(
        "https://pb.example.test/v1/",
        timeout=1.0,
        max_retries=5,
        backoff_base=0.25,
        session=http_session,
        sleep=_sleep,
        clock=transport_clock,
    )

    with pytest.raises(TransportTimeoutError):
        client.send(Request("GET", "plants", token="tok"))

    # 0.4 + 0.25 + 0.4 leaves no room for another 0.5s backoff
    assert http_session.request.call_count == 2
    assert transport_clock.now < 1.5


def test_each_attempt_gets_the_remaining_deadline(transport, http_session):
    http_session.request.return_value = _http(200, [])

    transport.send(Request("GET", "plants", token="tok"), timeout=5.0)

    assert http_session.request.call_args.kwargs["timeout"] == pytest.approx(5.0)


def test_slow_read_past_the_deadline_fails(transport, http_session, transport_clock):
    def _trickle(*args, **kwargs):
        transport_clock.now += 31.0
        return _http(200, ["7"])

    http_session.request.side_effect = _trickle

    with pytest.raises(TransportTimeoutError):
        transport.send(Request("GET", "plants", token="tok"))
    assert http_session.request.call_count == 1


def test_late_write_reply_is_kept(transport, http_session, transport_clock):
    def _trickle(*args, **kwargs):
        transport_clock.now += 31.0
        return _http(200, {"id": "7", "name": "Basil", "version": 4})

    http_session.request.side_effect = _trickle

    response = transport.send(Request("PUT", "plant/7", json={"name": "Basil"}, token="tok"))

    assert response.payload["version"] == 4


def test_server_error_carries_status_and_payload_without_retry(transport, http_session):
    http_session.request.return_value = _http(409, {"plant": {"id": "7", "name": "Basil", "version": 4}})

    with pytest.raises(ServerError) as excinfo:
        transport.send(Request("GET", "plant/7", token="tok"))

    assert excinfo.value.status == 409
    assert excinfo.value.is_conflict
    assert excinfo.value.payload["plant"]["version"] == 4
    assert http_session.request.call_count == 1


def test_non_json_success_body_is_malformed(transport, http_session):
    http_session.request.return_value = _http(200, raw=b"<html>oops</html>")

    with pytest.raises(MalformedResponseError):
        transport.send(Request("GET", "plants", token="tok"))


def test_empty_body_yields_no_payload(transport, http_session):
    http_session.request.return_value = _http(204)

    response = transport.send(Request("DELETE", "user/3", token="tok"))

    assert response.status == 204
    assert response.payload is None


def test_request_carries_bearer_token_and_joined_url(transport, http_session):
    http_session.request.return_value = _http(200, {"data": []})

    transport.send(Request("GET", "sensor-data", params={"sensor": "humidity", "plant": "7"}, token="abc"))

    args, kwargs = http_session.request.call_args
    assert args == ("GET", "https://pb.example.test/v1/sensor-data")
    assert kwargs["headers"] == {"Authorization": "Bearer abc"}
    assert kwargs["params"] == {"sensor": "humidity", "plant": "7"}


def test_login_request_has_no_authorization_header(transport, http_session):
    http_session.request.return_value = _http(200, {"id": 1})

    transport.send(Request("POST", "user/login", json={"name": "a", "password": "b"}))

    assert http_session.request.call_args.kwargs["headers"] == {}


def test_token_is_not_in_request_repr():
    assert "secret-token" not in repr(Request("GET", "plants", token="secret-token"))
