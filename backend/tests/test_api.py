"""API integration tests."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from docgraph.api import dependencies as deps
from docgraph.app import app


@pytest.fixture
def client(scripted_adapter) -> TestClient:
    deps._ADAPTER = scripted_adapter()
    with TestClient(app) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


def test_metrics_exposed(client: TestClient) -> None:
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "docg_budget_decisions" in resp.text


def test_chunk_endpoint(client: TestClient, sample_text: str) -> None:
    resp = client.post(
        "/chunk",
        json={"text": sample_text, "max_chunk_size": 1000, "overlap_size": 100, "min_chunk_size": 200},
    )
    assert resp.status_code == 200
    payload = resp.json()
    assert len(payload["chunks"]) == 3
    assert payload["statistics"]["total_chunks"] == 3
    assert payload["chunks"][1]["overlap_with_previous"] == 100


def test_chunk_errors_map_to_422(client: TestClient, sample_text: str) -> None:
    resp = client.post("/chunk", json={"text": "tiny"})
    assert resp.status_code == 422
    assert resp.json()["code"] == "document-too-short"

    resp = client.post("/chunk", json={"text": sample_text, "max_chunk_size": 100, "min_chunk_size": 200})
    assert resp.status_code == 422
    assert resp.json()["code"] == "config-error"


def test_estimate_endpoint(client: TestClient) -> None:
    resp = client.post("/estimate", json={"text_length": 10_000, "model": "claude-sonnet-4"})
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["estimated_cost"] == pytest.approx(0.039)
    assert payload["formatted_cost"] == "$0.04"
    assert payload["breakdown"]["image_processing"] == 0
    assert payload["estimated_tokens"] == {"input": 3000, "output": 2000}

    resp = client.post("/estimate", json={"text_length": 10, "model": "mystery-model"})
    assert resp.status_code == 422
    assert resp.json()["code"] == "unknown-model"


def test_budget_check_endpoint(client: TestClient) -> None:
    resp = client.post("/budget/check", json={"user_id": "u1", "estimate": {"text_length": 10_000}})
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["allowed"] is True
    assert payload["reason"] is None
    assert payload["current_usage"] == {"today": 0.0, "this_month": 0.0}


def test_budget_check_holds_funds_until_released(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCG_LIMITS__PER_USER_PER_DAY", "0.05")
    body = {"user_id": "u1", "estimate": {"text_length": 10_000}}
    with TestClient(app) as client:
        first = client.post("/budget/check", json=body).json()
        second = client.post("/budget/check", json=body).json()
        url = f"/budget/reservations/{first['reservation_id']}"
        released = client.delete(url).json()
        released_again = client.delete(url).json()
        after_release = client.post("/budget/check", json=body).json()

    assert first["allowed"] is True
    assert first["reservation_id"].startswith("rsv_")
    assert second["allowed"] is False
    assert second["reason"] == "daily-limit-exceeded"
    assert second["reservation_id"] is None
    assert released == {"reservation_id": first["reservation_id"], "released": True}
    assert released_again["released"] is False
    assert after_release["allowed"] is True


def test_generate_fetch_and_usage_flow(client: TestClient, sample_text: str) -> None:
    resp = client.post("/graphs", json={"user_id": "u1", "text": sample_text, "title": "Plants"})
    assert resp.status_code == 200
    graph = resp.json()
    assert graph["is_partial"] is False
    assert {node["title"] for node in graph["nodes"]} == {"Light reactions", "Photosynthesis"}
    assert graph["mermaid_code"].startswith("flowchart TD")
    assert graph["statistics"]["chunks_processed"] == 1

    fetched = client.get(f"/graphs/{graph['graph_id']}")
    assert fetched.status_code == 200
    assert [node["id"] for node in fetched.json()["nodes"]] == [node["id"] for node in graph["nodes"]]

    usage = client.get("/budget/usage/u1", params={"period": "day"})
    assert usage.status_code == 200
    summary = usage.json()
    assert summary["operation_count"] == 1
    assert summary["total_cost"] == pytest.approx(0.0105)
    assert summary["by_operation"][0]["operation"] == "graph-generation"


def test_generate_from_registered_document(client: TestClient, sample_text: str) -> None:
    created = client.post("/documents", json={"text": sample_text, "title": "Plant biology"})
    assert created.status_code == 200
    document = created.json()
    assert document["status"] == "ready"
    assert document["length"] == len(sample_text)

    resp = client.post("/graphs", json={"user_id": "u1", "document_id": document["id"]})
    assert resp.status_code == 200
    assert resp.json()["document_id"] == document["id"]
    assert resp.json()["title"] == "Plant biology"


def test_document_errors(client: TestClient, sample_text: str) -> None:
    assert client.get("/documents/doc_missing").status_code == 404

    pending = client.post("/documents", json={"text": sample_text, "status": "processing"}).json()
    resp = client.post("/graphs", json={"user_id": "u1", "document_id": pending["id"]})
    assert resp.status_code == 409
    assert resp.json()["code"] == "document-not-ready"

    assert client.get("/graphs/graph_missing").status_code == 404


def test_graph_request_needs_one_source(client: TestClient, sample_text: str) -> None:
    assert client.post("/graphs", json={"user_id": "u1"}).status_code == 422
    both = {"user_id": "u1", "text": sample_text, "document_id": "doc_1"}
    assert client.post("/graphs", json=both).status_code == 422


def test_budget_denial_maps_to_402(monkeypatch: pytest.MonkeyPatch, scripted_adapter, sample_text: str) -> None:
    monkeypatch.setenv("DOCG_LIMITS__PER_USER_PER_DAY", "0.0001")
    adapter = scripted_adapter()
    deps._ADAPTER = adapter
    with TestClient(app) as client:
        resp = client.post("/graphs", json={"user_id": "u1", "text": sample_text})
    assert resp.status_code == 402
    payload = resp.json()
    assert payload["code"] == "budget-exceeded"
    assert payload["details"]["reason"] == "daily-limit-exceeded"
    assert payload["details"]["reset_at"] is not None
    assert adapter.calls == []
