"""
tests/test_errors.py
"""
from __future__ import annotations

from bson import ObjectId
from fastapi.testclient import TestClient

import store
from database import get_db
from errors import Conflict, Gone
from main import app


def test_root_and_db_status(client):
    assert client.get("/").json() == {"message": "Blogify API running"}
    status = client.get("/test").json()
    assert status["database"] == "✅ Connected"
    assert isinstance(status["collections"], list)


def test_validation_error_shape(client):
    rv = client.post("/api/auth/register", json={"email": "x@blogify.dev"})
    assert rv.status_code == 400
    body = rv.json()
    assert body["message"] == "Validation failed"
    assert body["error"]
    fields = {e["field"] for e in body["errors"]}
    assert {"password", "name", "username"} <= fields


def test_domain_error_shape(client):
    rv = client.get(f"/api/blog-collections/{ObjectId()}")
    assert rv.status_code == 404
    assert set(rv.json()) == {"message", "error"}


def test_api_error_carries_extra_fields():
    err = Gone("gone", "really gone", code="X", legacyId="1")
    assert err.status_code == 410
    assert err.to_dict() == {"code": "X", "legacyId": "1", "message": "gone", "error": "really gone"}


def test_api_error_defaults_error_to_message():
    assert Conflict("Subdomain already taken").to_dict()["error"] == "Subdomain already taken"


def test_unexpected_error_is_a_500(db, monkeypatch):
    def _broken(page, limit):
        raise RuntimeError("pager exploded")

    monkeypatch.setattr(store, "page_window", _broken)
    app.dependency_overrides[get_db] = lambda: db
    try:
        rv = TestClient(app, raise_server_exceptions=False).get("/api/blog-collections")
    finally:
        app.dependency_overrides.clear()
    assert rv.status_code == 500
    assert rv.json() == {"message": "Internal server error", "error": "pager exploded"}
