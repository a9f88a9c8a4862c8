"""Server-side caps applied to `/run` settings."""

import pytest
from fastapi.testclient import TestClient

from backend import db
from backend.app.main import app


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "pyplay_test.db")
    with TestClient(app) as c:
        yield c


def test_small_iteration_budget_through_run(client):
    payload = {"code": "while True:\n    pass\nprint('after')", "settings": {"max_iterations": 5}}
    body = client.post("/run", json=payload).json()
    assert body["errors"] is None
    assert body["output"] == ["⚠️ Infinite loop detected", "after"]
    assert body["stats"]["iterations"] == 5


def test_oversized_settings_are_capped(client):
    code = "def f(n):\n    return f(n + 1)\nf(0)"
    payload = {"code": code, "settings": {"max_call_depth": 10**6}}
    body = client.post("/run", json=payload).json()
    assert body["errors"]["message"] == "maximum recursion depth exceeded"


def test_subprocess_run_through_api(client):
    payload = {"code": "print(sum(range(5)))", "settings": {"use_subprocess": True, "timeout_s": 10}}
    body = client.post("/run", json=payload).json()
    assert body["errors"] is None
    assert body["output"] == ["10"]
    assert body["display"] == "10"
