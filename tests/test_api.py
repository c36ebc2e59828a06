import pytest
from fastapi.testclient import TestClient

import main
from kcr import db
from kcr.aggregator import StatusAggregator
from kcr.controller import Controller
from kcr.errors import TransientStoreError


@pytest.fixture
def controller(store, engine, cfg, events):
    return Controller(store, engine, StatusAggregator(store, cfg), cfg, events)


@pytest.fixture
def api(controller, event_db):
    with TestClient(main.create_app(controller=controller, start=False)) as client:
        yield client


def test_healthz(api):
    r = api.get("/healthz")

    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_channels_lists_conditions(api, controller, store, make_channel):
    store.put_channel(make_channel())
    controller.process_channel("ns1", "chan-a")

    r = api.get("/channels")

    assert r.status_code == 200
    (view,) = r.json()
    assert (view["namespace"], view["name"], view["ready"]) == ("ns1", "chan-a", "True")
    assert [c["type"] for c in view["conditions"]] == ["Dispatcher", "Ready", "Service"]


def test_channels_store_failure_is_503(api, store):
    store.fail_next("list", "channel", TransientStoreError("apiserver unavailable"))

    r = api.get("/channels")

    assert r.status_code == 503
    assert "apiserver unavailable" in r.json()["detail"]


def test_reconcile_and_propagate_are_queued(api, controller):
    r = api.post("/channels/ns1/chan-a/reconcile")
    assert r.status_code == 202
    assert r.json() == {"queued": "channel ns1/chan-a"}

    r = api.post("/secrets/kafka-secret/propagate")
    assert r.status_code == 202

    assert controller.queue.get(timeout=0.1) == ("channel", "ns1", "chan-a")
    assert controller.queue.get(timeout=0.1) == ("secret", "kafka-secret")


def test_events_newest_first_and_filtered(api):
    db.record_event("ns1/chan-a", db.NORMAL, "DispatcherServiceCreated", "Created Dispatcher Service x")
    db.record_event("ns1/chan-b", db.WARNING, "DispatcherDeploymentReconciliationFailed", "boom")

    r = api.get("/events")
    assert r.status_code == 200
    assert [e["subject"] for e in r.json()] == ["ns1/chan-b", "ns1/chan-a"]

    r = api.get("/events", params={"subject": "ns1/chan-a", "limit": 5})
    (event,) = r.json()
    assert event["reason"] == "DispatcherServiceCreated"
    assert event["severity"] == "Normal"


def test_events_limit_is_validated(api):
    assert api.get("/events", params={"limit": 0}).status_code == 422
