import pytest
from fastapi.testclient import TestClient

from fakes import FakeIdentity, FlakyDocumentStore, seed_catalog
from tarologist.auth_state import AuthState
from tarologist.cache import LocalCache
from tarologist.catalog import CardCatalog
from tarologist.config import Settings
from tarologist.container import build_container
from tarologist.interpretation import Interpreter
from tarologist.main import create_app
from tarologist.questions import QuestionManager
from tarologist.sessions import SessionManager
from tarologist.spreads import SpreadManager, read_default_spreads


@pytest.fixture
def cache():
    c = LocalCache(":memory:")
    yield c
    c.close()


@pytest.fixture
def store():
    return FlakyDocumentStore()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def auth(identity, cache):
    state = AuthState(identity, cache, email_domain="example.com")
    state.start()
    yield state
    state.stop()


@pytest.fixture
def catalog():
    return CardCatalog()


@pytest.fixture
def sessions(store, auth, catalog):
    return SessionManager(store, auth, catalog, Interpreter())


@pytest.fixture
def questions(store, cache):
    return QuestionManager(store, cache)


@pytest.fixture
def spreads(store, cache):
    return SpreadManager(store, cache)


@pytest.fixture
def three_card_spread():
    return next(s for s in read_default_spreads() if s.id == "three_cards")


@pytest.fixture
def signed_in(auth):
    auth.sign_up("reader", "secret1")
    return auth.current_user_id()


@pytest.fixture
def seeded_store(store):
    seed_catalog(store)
    return store


@pytest.fixture
def container(seeded_store, identity, cache, monkeypatch):
    monkeypatch.setenv("TAROLOGIST_STORE", "memory")
    monkeypatch.setenv("TAROLOGIST_CACHE_PATH", ":memory:")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    c = build_container(Settings(), store=seeded_store, identity=identity, cache=cache, interpreter=Interpreter())
    c.start()
    yield c
    c.questions.remove_listeners()
    c.sessions.stop_sessions_listener()
    c.auth.stop()


@pytest.fixture
def client(container):
    return TestClient(create_app(container))
