import pytest

from plantbuddy.domain.exceptions import (
    InvalidCredentialsError,
    LoginRejectedError,
    NotAuthenticatedError,
    ServerError,
    SessionExpiredError,
    UnreachableError,
)
from plantbuddy.domain.models import EntityKey, Plant
from plantbuddy.enums.common import Role, SessionState
from plantbuddy.enums.events import ClientEvent


def test_login_starts_active_session(sessions, fake_transport, make_login, event_bus, audit_logger):
    fake_transport.route("POST", "user/login", make_login(user_id=1, name="alice", role=1))

    session = sessions.login("alice", "secret")

    assert sessions.state is SessionState.ACTIVE
    assert sessions.current_role() is Role.STANDARD
    assert session.token == "tok-alice"
    assert sessions.require_session() is session
    event_bus.publish.assert_called_with(
        ClientEvent.SESSION_STARTED,
        {"user_id": 1, "username": "alice", "role": "standard", "expires_at": session.expires_at.isoformat()},
    )
    audit_logger.log_event.assert_called_with(
        actor="alice", action="login", resource="session", outcome="success", role="standard"
    )


def test_admin_login_reports_admin_role(login_as, sessions):
    login_as("admin")

    assert sessions.current_role() is Role.ADMIN
    assert sessions.current_session().is_admin


@pytest.mark.parametrize("username,secret", [("", "pw"), ("alice", ""), ("   ", "pw")])
def test_empty_credentials_fail_without_network(sessions, fake_transport, audit_logger, username, secret):
    with pytest.raises(InvalidCredentialsError):
        sessions.login(username, secret)

    assert fake_transport.calls == []
    assert sessions.state is SessionState.LOGGED_OUT
    assert audit_logger.log_event.call_args.kwargs["outcome"] == "denied"


@pytest.mark.parametrize("status", [401, 403])
def test_refused_credentials(sessions, fake_transport, status):
    fake_transport.route("POST", "user/login", ServerError(status))

    with pytest.raises(InvalidCredentialsError):
        sessions.login("alice", "wrong")

    assert sessions.state is SessionState.LOGGED_OUT
    assert sessions.current_session() is None


def test_server_failure_is_login_rejected(sessions, fake_transport):
    fake_transport.route("POST", "user/login", ServerError(500, "boom"))

    with pytest.raises(LoginRejectedError):
        sessions.login("alice", "secret")


def test_unreachable_service_is_login_rejected(sessions, fake_transport):
    fake_transport.route("POST", "user/login", UnreachableError("no route"))

    with pytest.raises(LoginRejectedError) as excinfo:
        sessions.login("alice", "secret")

    assert isinstance(excinfo.value.__cause__, UnreachableError)
    assert sessions.state is SessionState.LOGGED_OUT


def test_require_session_when_logged_out(sessions):
    with pytest.raises(NotAuthenticatedError):
        sessions.require_session()


def test_logout_purges_cache(login_as, sessions, cache, event_bus, audit_logger):
    login_as("alice")
    cache.adopt_canonical(EntityKey.plant("7"), cache.epoch, Plant(id="7", name="Basil", owner_id=1))

    sessions.logout()

    assert sessions.state is SessionState.LOGGED_OUT
    assert cache.stats()["size"] == 0
    event_bus.publish.assert_called_with(ClientEvent.SESSION_ENDED, {"reason": "logout", "user_id": 1})
    assert audit_logger.log_event.call_args.kwargs["action"] == "logout"


def test_logout_without_session_is_harmless(sessions, audit_logger):
    sessions.logout()

    assert sessions.state is SessionState.LOGGED_OUT
    audit_logger.log_event.assert_not_called()


def test_new_login_replaces_previous_session(login_as, sessions, cache):
    login_as("admin")
    cache.adopt_canonical(EntityKey.user_index(), cache.epoch, ("1", "99"))

    login_as("alice")

    assert sessions.current_role() is Role.STANDARD
    assert cache.peek(EntityKey.user_index()) is None


def test_logout_during_login_wins(sessions, fake_transport, make_login):
    def _slow_login(request):
        sessions.logout()  # user gives up while the request is in flight
        return make_login()

    fake_transport.route("POST", "user/login", _slow_login)

    with pytest.raises(LoginRejectedError):
        sessions.login("alice", "secret")

    assert sessions.current_session() is None
    assert sessions.state is SessionState.LOGGED_OUT


def test_expired_session_is_ended_on_access(login_as, sessions, wall_clock, cache, event_bus):
    login_as("alice", expires_in=600)
    cache.adopt_canonical(EntityKey.plant("7"), cache.epoch, Plant(id="7", name="Basil", owner_id=1))
    wall_clock.advance(601)

    with pytest.raises(SessionExpiredError):
        sessions.require_session()

    assert sessions.state is SessionState.LOGGED_OUT
    assert cache.peek(EntityKey.plant("7")) is None
    event_bus.publish.assert_called_with(ClientEvent.SESSION_EXPIRED, {"reason": "expired", "user_id": 1})


def test_check_expiry_refreshes_near_the_end(login_as, sessions, fake_transport, make_login, wall_clock):
    first = login_as("alice", expires_in=600)
    fake_transport.route("POST", "user/refresh", make_login(token="tok-renewed", expires_in=600))
    wall_clock.advance(550)

    state = sessions.check_expiry()

    assert state is SessionState.ACTIVE
    renewed = sessions.current_session()
    assert renewed.token == "tok-renewed"
    assert renewed.expires_at > first.expires_at
    assert fake_transport.calls_to("POST", "user/refresh")[0].token == "tok-alice"


def test_check_expiry_without_refresh_marks_expiring(login_as, sessions, fake_transport, wall_clock):
    sessions.refresh_enabled = False
    login_as("alice", expires_in=600)
    wall_clock.advance(550)

    assert sessions.check_expiry() is SessionState.EXPIRING
    assert fake_transport.calls_to("POST", "user/refresh") == []
    # Still usable until the token actually lapses
    assert sessions.require_session().username == "alice"


def test_failed_refresh_ends_session(login_as, sessions, fake_transport, wall_clock):
    login_as("alice", expires_in=600)
    fake_transport.route("POST", "user/refresh", ServerError(401))
    wall_clock.advance(550)

    assert sessions.check_expiry() is SessionState.LOGGED_OUT
    assert sessions.current_session() is None


def test_check_expiry_ends_lapsed_session(login_as, sessions, wall_clock):
    login_as("alice", expires_in=600)
    wall_clock.advance(700)

    assert sessions.check_expiry() is SessionState.LOGGED_OUT


def test_invalidate_ends_session(login_as, sessions, event_bus):
    login_as("alice")

    sessions.invalidate("token_rejected")

    assert sessions.current_session() is None
    event_bus.publish.assert_called_with(ClientEvent.SESSION_EXPIRED, {"reason": "token_rejected", "user_id": 1})


def test_missing_expiry_uses_default_lifetime(sessions, fake_transport, make_login, wall_clock):
    fake_transport.route("POST", "user/login", make_login(expires_in=None))

    session = sessions.login("alice", "secret")

    assert (session.expires_at - wall_clock.now).total_seconds() == 3600
