"""
tests/conftest.py
"""
from __future__ import annotations

from typing import Callable, Generator

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import get_settings
from database import ensure_indexes, get_db
from main import app

TEST_SECRET = "blogify-test-secret-0123456789abcdef0123456789"


@pytest.fixture(autouse=True)
def _settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Every test signs tokens with the same known secret."""
    monkeypatch.setenv("JWT_SECRET", TEST_SECRET)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def db():
    """A fresh in-memory database per test, indexes included."""
    database = mongomock.MongoClient()["blogify_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register(client: TestClient) -> Callable[..., dict]:
    """Register a user; the returned body also carries ready-made headers."""

    def _register(username: str = "alice", email: str | None = None,
                  password: str = "secret1", name: str | None = None) -> dict:
        rv = client.post(
            "/api/auth/register",
            json={
                "email": email or f"{username}@blogify.dev",
                "password": password,
                "name": name or username.title(),
                "username": username,
            },
        )
        assert rv.status_code == 201, rv.text
        body = rv.json()
        body["headers"] = {"Authorization": f"Bearer {body['token']}"}
        return body

    return _register


@pytest.fixture
def make_collection(client: TestClient) -> Callable[..., dict]:
    def _make(headers: dict, name: str = "Tech Notes",
              description: str = "short notes on tech topics", **extra) -> dict:
        rv = client.post(
            "/api/blog-collections",
            json={"name": name, "description": description, **extra},
            headers=headers,
        )
        assert rv.status_code == 201, rv.text
        return rv.json()

    return _make


@pytest.fixture
def make_article(client: TestClient) -> Callable[..., dict]:
    def _make(headers: dict, collection_id: str, title: str = "Hello World",
              content: str = "Some words about the world.") -> dict:
        rv = client.post(
            f"/api/blogs/{collection_id}",
            json={"title": title, "content": content},
            headers=headers,
        )
        assert rv.status_code == 201, rv.text
        return rv.json()["article"]

    return _make
