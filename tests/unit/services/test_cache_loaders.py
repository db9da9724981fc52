from plantbuddy.domain.exceptions import ServerError
from plantbuddy.domain.models import EntityKey
from plantbuddy.enums.common import EntityKind, SessionState


def test_all_kinds_have_loaders(loaders, cache):
    assert set(cache._loaders) == {
        EntityKind.PLANT,
        EntityKind.PLANT_INDEX,
        EntityKind.READINGS,
        EntityKind.USER,
        EntityKind.USER_INDEX,
    }


def test_loader_uses_session_token(login_as, loaders, fake_transport, make_plant):
    login_as("alice")
    fake_transport.route("GET", "plant/7", make_plant("7"))

    plant = loaders.load_plant(EntityKey.plant("7"))

    assert plant.name == "Basil"
    assert fake_transport.calls_to("GET", "plant/7")[0].token == "tok-alice"


def test_rejected_token_during_refresh_ends_session(login_as, loaders, sessions, cache, fake_transport):
    login_as("alice")
    fake_transport.route("GET", "plants", ServerError(401))

    cache.get(EntityKey.plant_index())

    assert sessions.state is SessionState.LOGGED_OUT
    assert cache.stats()["refresh_failures"] == 1


def test_refresh_without_session_sends_nothing(loaders, cache, fake_transport):
    cache.get(EntityKey.plant_index())

    assert fake_transport.calls == []
    assert cache.peek(EntityKey.plant_index()) is None
