#!/usr/bin/env python3
"""
Tests for the health and operator HTTP routes
"""

import logging
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from supportbot.services.supervisor.api import setup_routes
from supportbot.services.supervisor.health import ConnectionState, HealthRecord

logging.disable(logging.CRITICAL)

SENDER = "5215550001@c.us"


class FakeStore:
    def __init__(self):
        self.paused = set()
        self.handoff = set()

    def is_paused(self, sender_id):
        return sender_id in self.paused

    def is_handoff(self, sender_id):
        return sender_id in self.handoff

    def stats(self):
        return {"paused": len(self.paused), "handoff": len(self.handoff)}


class FakePipeline:
    queue_depth = 2
    oldest_wait = 1.5

    def __init__(self):
        self.store = FakeStore()
        self.frozen = []

    def freeze(self, sender_id, duration=None):
        self.frozen.append((sender_id, duration))
        self.store.paused.add(sender_id)
        self.store.handoff.discard(sender_id)

    def resume(self, sender_id):
        was_paused = sender_id in self.store.paused
        self.store.paused.discard(sender_id)
        self.store.handoff.discard(sender_id)
        return was_paused


@pytest.fixture
def record():
    record = HealthRecord.create()
    record.connection_state = ConnectionState.CONNECTED
    return record


@pytest.fixture
def pipeline():
    return FakePipeline()


@pytest.fixture
def gateway():
    return SimpleNamespace(last_qr=None)


@pytest.fixture
def client(record, pipeline, gateway):
    app = FastAPI()
    setup_routes(app, record, pipeline, gateway, on_gc=lambda: 7)
    with TestClient(app) as client:
        yield client


class TestHealthRoute:
    def test_health(self, client, record):
        record.record_error("session", "disconnected: CONNECTION_LOST")

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["connectionState"] == "connected"
        assert data["deploymentState"] == "stable"
        assert data["reconnectAttempts"] == 0
        assert data["queueDepth"] == 2
        assert data["queueWait"] == 1.5
        assert data["errorLog"][0]["message"] == "disconnected: CONNECTION_LOST"
        assert data["memory"]["rss"] > 0
        assert len(data["memory"]["gc_counts"]) == 3

    def test_unhealthy(self, client, record):
        record.is_healthy = False
        assert client.get("/health").json()["status"] == "unhealthy"


class TestAdminRoutes:
    def test_gc(self, client):
        response = client.post("/admin/gc")
        assert response.status_code == 200
        assert response.json()["collected"] == 7

    def test_freeze_and_resume(self, client, pipeline):
        response = client.post(f"/admin/senders/{SENDER}/freeze")
        assert response.status_code == 200
        assert response.json() == {"sender_id": SENDER, "paused": True, "handoff": False}
        assert pipeline.frozen == [(SENDER, None)]

        response = client.post(f"/admin/senders/{SENDER}/resume")
        assert response.status_code == 200
        assert response.json()["paused"] is False

    def test_freeze_with_duration(self, client, pipeline):
        response = client.post(f"/admin/senders/{SENDER}/freeze", json={"duration": 60})
        assert response.status_code == 200
        assert pipeline.frozen == [(SENDER, 60.0)]

    def test_freeze_rejects_bad_duration(self, client, pipeline):
        response = client.post(f"/admin/senders/{SENDER}/freeze", json={"duration": -1})
        assert response.status_code == 422
        assert pipeline.frozen == []

    def test_resume_unknown_sender(self, client):
        assert client.post(f"/admin/senders/{SENDER}/resume").status_code == 404


class TestQRRoute:
    def test_no_qr(self, client):
        assert client.get("/qr").status_code == 404

    def test_qr(self, client, gateway):
        gateway.last_qr = "2@abc,def"
        response = client.get("/qr")
        assert response.status_code == 200
        assert response.json() == {"qr": "2@abc,def"}
