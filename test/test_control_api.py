import os
import pytest
from fastapi.testclient import TestClient

from oo_keeper.core.control_api import app
from oo_keeper.core.config import settings
from oo_keeper.core.kill import KILL_SWITCH_FILE

AUTH = {"Authorization": "Bearer tok"}


@pytest.fixture(autouse=True)
def cleanup(monkeypatch):
    monkeypatch.setattr(settings, "CONTROL_API_TOKEN", "tok")
    if os.path.exists(KILL_SWITCH_FILE):
        os.remove(KILL_SWITCH_FILE)
    yield
    if os.path.exists(KILL_SWITCH_FILE):
        os.remove(KILL_SWITCH_FILE)


def test_halt_and_resume():
    client = TestClient(app)

    r = client.get("/status", headers=AUTH)
    assert r.status_code == 200 and r.json() == {"kill_switch_active": False, "reason": None}

    r = client.post("/kill", headers=AUTH, json={"reason": "bad feed"})
    assert r.status_code == 200
    assert r.json() == {"kill_switch_active": True, "reason": "bad feed"}
    assert os.path.exists(KILL_SWITCH_FILE)

    # Halting twice keeps the keeper halted.
    r = client.post("/kill", headers=AUTH, json={"reason": "still bad"})
    assert r.json()["kill_switch_active"] is True

    r = client.delete("/kill", headers=AUTH)
    assert r.status_code == 200 and r.json()["kill_switch_active"] is False
    assert not os.path.exists(KILL_SWITCH_FILE)


def test_rejects_bad_token():
    client = TestClient(app)
    r = client.post("/kill", headers={"Authorization": "Bearer nope"}, json={})
    assert r.status_code == 401
    assert not os.path.exists(KILL_SWITCH_FILE)


def test_unconfigured_token(monkeypatch):
    monkeypatch.setattr(settings, "CONTROL_API_TOKEN", None)
    client = TestClient(app)
    assert client.get("/status").status_code == 500
