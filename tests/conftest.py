"""Shared fixtures: an in-memory products collection, a repository with a
deterministic clock, and a TestClient wired to both."""

import time
from datetime import datetime, timedelta, timezone

import jwt
import mongomock
import pytest
from fastapi.testclient import TestClient

from config import AppConfig, AuthConfig, CatalogConfig, DatabaseConfig
from main import create_app
from repository import ProductRepository
from schemas import ProductDraft

TEST_SECRET = "test-secret-key-long-enough-for-hs256-signing"


class TickingClock:
    """Returns a strictly increasing UTC time on every call."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self._now = start

    def __call__(self) -> datetime:
        value = self._now
        self._now += timedelta(seconds=1)
        return value


def make_token(secret: str = TEST_SECRET, expires_in: int = 600, **claims) -> str:
    now = int(time.time())
    payload = {"id": "user-1", "email": "user@example.com", "role": "admin", "iat": now, "exp": now + expires_in}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def draft_data(**overrides) -> dict:
    data = {
        "name": "Wireless Mouse",
        "description": "Ergonomic wireless mouse with silent clicks",
        "price": 19.99,
        "category": "electronics",
        "images": ["https://cdn.example.com/mouse-1.jpg", "https://cdn.example.com/mouse-2.jpg"],
        "mainImage": "https://cdn.example.com/mouse-1.jpg",
        "inStock": True,
        "quantity": 25,
        "features": ["2.4GHz receiver", "18 month battery"],
        "specifications": [{"name": "DPI", "value": "1600"}],
        "tags": ["mouse", "wireless"],
    }
    data.update(overrides)
    return data


def make_draft(**overrides) -> ProductDraft:
    return ProductDraft.model_validate(draft_data(**overrides))


@pytest.fixture
def collection():
    coll = mongomock.MongoClient().catalog.products
    coll.create_index("productId", unique=True)
    return coll


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def catalog_config():
    return CatalogConfig()


@pytest.fixture
def repository(collection, catalog_config, clock):
    return ProductRepository(collection, catalog_config, clock=clock)


@pytest.fixture
def app_config(catalog_config):
    return AppConfig(
        database=DatabaseConfig(uri="mongodb://localhost:27017"),
        auth=AuthConfig(jwt_secret=TEST_SECRET),
        catalog=catalog_config,
    )


@pytest.fixture
def client(app_config, repository):
    with TestClient(create_app(app_config, repository)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}
