"""Tests for the HTTP ingestion API."""

import pytest
from fastapi.testclient import TestClient

from biolog_router.api import main

from .samples import CTMS_SSN, ELN_DOWNLOAD


@pytest.fixture
def client(router, monkeypatch):
    monkeypatch.setattr(main, "log_router", router)
    with TestClient(main.app) as test_client:
        yield test_client


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["initialized"] is True
    assert "CTMS" in body["sources"]


def test_ingest_routes_record(client, memory_sinks):
    response = client.post("/ingest", json={"source_system": "CTMS", "raw_payload": CTMS_SSN})

    assert response.status_code == 200
    body = response.json()
    assert body["source_system"] == "CTMS"
    assert body["masked"] is True
    assert sorted(o["destination"] for o in body["outcomes"] if o["delivered"]) == [
        "central-security", "clinical"
    ]
    assert "123-45-6789" not in memory_sinks["clinical"].envelopes[0].payload


def test_ingest_unknown_source(client):
    response = client.post("/ingest", json={"source_system": "UNKNOWN_SYS", "raw_payload": "x"})
    assert response.status_code == 400
    assert "UNKNOWN_SYS" in response.json()["detail"]


def test_ingest_bad_timestamp(client):
    response = client.post(
        "/ingest",
        json={"source_system": "ELN", "raw_payload": ELN_DOWNLOAD, "timestamp": "soon"},
    )
    assert response.status_code == 400


def test_ingest_requires_payload(client):
    response = client.post("/ingest", json={"source_system": "ELN"})
    assert response.status_code == 422


def test_ingest_batch(client):
    response = client.post("/ingest/batch", json={
        "records": [
            {"source_system": "ELN", "raw_payload": ELN_DOWNLOAD},
            {"source_system": "UNKNOWN_SYS", "raw_payload": "x"},
        ],
    })

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert body["routed"] == 1
    assert body["rejected"] == 1
    assert body["results"][0]["result"]["source_system"] == "ELN"
    assert body["results"][1]["success"] is False


def test_ingest_empty_batch(client):
    assert client.post("/ingest/batch", json={"records": []}).status_code == 400


def test_stats_and_sources(client):
    client.post("/ingest", json={"source_system": "ELN", "raw_payload": ELN_DOWNLOAD})

    stats = client.get("/stats").json()
    assert stats["counters"]["records_routed"] == 1

    sources = client.get("/sources").json()
    assert {entry["source_system"] for entry in sources} >= {"ELN", "CTMS", "MES"}
