import asyncio
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from carebell.config import Settings
from carebell.container import Container
from carebell.web.server import create_app

from conftest import CAREGIVER, RECIPIENT, Env


@pytest.fixture
def web():
    env = Env()
    container = Container(
        settings=Settings(),
        scheduler=None,
        timers=env.timers,
        store=env.store,
        dispatcher=env.dispatcher,
        engine=env.engine,
        alarm=env.alarm,
    )
    client = TestClient(create_app(container, configure_logging=False))
    return env, client


def _create(env, client, **kw):
    body = {
        "created_by": CAREGIVER,
        "for_user": RECIPIENT,
        "title": "Heart pill",
        "date_time": (env.clock() + timedelta(minutes=5)).isoformat(),
        "label": "medicine",
    }
    body.update(kw)
    return client.post("/reminders", json=body)


def test_health(web):
    _, client = web
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["x-request-id"]


def test_create_and_read(web):
    env, client = web
    r = _create(env, client)
    assert r.status_code == 201
    doc = r.json()
    assert doc["state"] == "scheduled"
    assert doc["ring_stage"] == 0

    r = client.get(f"/reminders/{doc['id']}")
    assert r.status_code == 200
    assert r.json()["title"] == "Heart pill"

    assert client.get("/reminders/unknown").status_code == 404


def test_create_rejects_bad_input(web):
    env, client = web
    r = _create(env, client, date_time=(env.clock() - timedelta(hours=1)).isoformat())
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"

    r = client.post("/reminders", json={"created_by": CAREGIVER})
    assert r.status_code == 422


def test_ringing_and_decision(web):
    env, client = web
    rid = _create(env, client).json()["id"]
    assert client.get(f"/reminders/{rid}/ringing").status_code == 204

    asyncio.run(env.timers.advance(minutes=5))
    r = client.get(f"/reminders/{rid}/ringing")
    assert r.status_code == 200
    assert r.json()["reminder"]["state"] == "ringing_1"
    assert r.json()["decisions"] == ["done", "snooze", "in_progress"]

    r = client.post(f"/reminders/{rid}/decision", json={"decision": "snooze", "minutes": 10})
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["state"] == "scheduled"

    r = client.post(f"/reminders/{rid}/decision", json={"decision": "snooze", "minutes": 10})
    assert r.status_code == 409
    assert r.json()["reason"] == "invalid_transition"

    r = client.post(f"/reminders/{rid}/decision", json={"decision": "nap"})
    assert r.status_code == 422

    assert client.post("/reminders/unknown/decision", json={"decision": "done"}).status_code == 404


def test_list_with_filters(web):
    env, client = web
    _create(env, client)
    _create(env, client, title="Soup", label="meal")

    r = client.get("/reminders", params={"user_id": CAREGIVER})
    assert [d["title"] for d in r.json()["items"]] == ["Heart pill", "Soup"]

    r = client.get("/reminders", params={"user_id": RECIPIENT, "view": "recipient", "label": "meal"})
    assert [d["title"] for d in r.json()["items"]] == ["Soup"]

    r = client.get("/reminders", params={"user_id": CAREGIVER, "q": "heart", "status": "pending"})
    assert [d["title"] for d in r.json()["items"]] == ["Heart pill"]


def test_patch_and_delete(web):
    env, client = web
    rid = _create(env, client).json()["id"]

    r = client.patch(f"/reminders/{rid}", json={"title": "Evening pill"})
    assert r.status_code == 200
    assert r.json()["reminder"]["title"] == "Evening pill"

    r = client.delete(f"/reminders/{rid}")
    assert r.status_code == 200
    assert env.timers.names() == []

    assert client.delete(f"/reminders/{rid}").status_code == 404
    assert client.get(f"/reminders/{rid}").status_code == 404


def test_patch_refuses_nulls_and_past_times(web):
    env, client = web
    rid = _create(env, client).json()["id"]

    for body in ({"date_time": None}, {"repeat": None}, {"date_time": (env.clock() - timedelta(hours=1)).isoformat()}):
        r = client.patch(f"/reminders/{rid}", json=body)
        assert r.status_code == 400, body

    doc = client.get(f"/reminders/{rid}").json()
    assert doc["date_time"] is not None
    assert doc["repeat"] == "none"
    assert env.engine.has_live_timer(rid)


def test_missed_tally_endpoints(web):
    env, client = web
    asyncio.run(env.store.bump_missed(RECIPIENT))

    assert client.get(f"/users/{RECIPIENT}/missed").json()["missed"] == 1
    assert client.delete(f"/users/{RECIPIENT}/missed").json()["missed"] == 0
    assert client.get(f"/users/{RECIPIENT}/missed").json()["missed"] == 0


def test_stream_sends_current_list(web):
    env, client = web
    _create(env, client)

    r = client.get(f"/users/{RECIPIENT}/reminders/stream", params={"limit": 1})
    assert r.status_code == 200
    lines = [json.loads(line) for line in r.text.splitlines() if line]
    assert len(lines) == 1
    assert [d["title"] for d in lines[0]["items"]] == ["Heart pill"]
