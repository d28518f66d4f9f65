from __future__ import annotations

from fastapi.testclient import TestClient

from receiptbox.api import main


def test_health():
    client = TestClient(main.app)
    assert client.get("/health").json() == {"status": "healthy"}


def test_db_debug_is_hidden_outside_development(monkeypatch):
    monkeypatch.setattr(main.settings, "ENVIRONMENT", "production")
    client = TestClient(main.app)
    resp = client.get("/debug/db")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found"}


def test_db_debug_in_development(monkeypatch):
    monkeypatch.setattr(main.settings, "ENVIRONMENT", "development")
    monkeypatch.setattr(main, "get_db_debug_info", lambda: {"dialect": "sqlite"})
    client = TestClient(main.app)
    resp = client.get("/debug/db")
    assert resp.status_code == 200
    assert resp.json() == {"dialect": "sqlite"}
