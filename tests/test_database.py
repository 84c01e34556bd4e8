"""Tests for the database handle and the app lifespan that owns it."""

import mongomock
import pytest
from fastapi.testclient import TestClient
from pymongo.errors import ServerSelectionTimeoutError

import main
from config import DatabaseConfig
from database import Database


class FakeAdmin:
    def __init__(self, reachable):
        self._reachable = reachable

    def command(self, name):
        if not self._reachable:
            raise ServerSelectionTimeoutError("no servers available")
        return {"ok": 1.0}


class FakeClient:
    """MongoClient stand-in backed by mongomock storage."""

    instances = []

    def __init__(self, uri, reachable=True, **kwargs):
        self.uri = uri
        self.kwargs = kwargs
        self.closed = False
        self.admin = FakeAdmin(reachable)
        self._storage = mongomock.MongoClient()
        FakeClient.instances.append(self)

    def __getitem__(self, name):
        return self._storage[name]

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def reset_instances():
    FakeClient.instances = []


@pytest.fixture
def db_config():
    return DatabaseConfig(uri="mongodb://example:27017", name="shop", collection="items", timeout_ms=1234)


class TestDatabase:
    def test_connect_passes_timeouts(self, db_config):
        database = Database(db_config, client_factory=FakeClient)
        database.connect()

        client = FakeClient.instances[0]
        assert client.uri == "mongodb://example:27017"
        assert client.kwargs == {"tz_aware": True, "serverSelectionTimeoutMS": 5000, "timeoutMS": 1234}
        assert database.products.name == "items"

    def test_unreachable_server(self, db_config):
        database = Database(db_config, client_factory=lambda uri, **kw: FakeClient(uri, reachable=False, **kw))

        with pytest.raises(ServerSelectionTimeoutError):
            database.connect()
        assert FakeClient.instances[0].closed is True

    def test_products_requires_connection(self, db_config):
        with pytest.raises(RuntimeError):
            Database(db_config).products

    def test_context_manager_closes(self, db_config):
        with Database(db_config, client_factory=FakeClient) as database:
            assert database.products is not None
        assert FakeClient.instances[0].closed is True


class TestLifespan:
    def test_startup_opens_and_shutdown_closes(self, app_config, monkeypatch):
        monkeypatch.setattr(main, "Database", lambda config: Database(config, client_factory=FakeClient))
        monkeypatch.setattr(main.ProductRepository, "ensure_indexes", lambda self: None)

        with TestClient(main.create_app(app_config)) as client:
            assert client.get("/featured-products").json() == {"success": True, "products": []}
            assert FakeClient.instances[0].closed is False

        assert FakeClient.instances[0].closed is True

    def test_unreachable_store_aborts_startup(self, app_config, monkeypatch):
        monkeypatch.setattr(
            main,
            "Database",
            lambda config: Database(config, client_factory=lambda uri, **kw: FakeClient(uri, reachable=False, **kw)),
        )

        with pytest.raises(ServerSelectionTimeoutError):
            with TestClient(main.create_app(app_config)):
                pass
