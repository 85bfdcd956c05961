"""CLI tests against a stubbed HTTP layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from docgraph.cli import main

runner = CliRunner()


class FakeResponse:
    def __init__(self, payload: dict, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = json.dumps(payload)

    def json(self) -> dict:
        return self._payload


@pytest.fixture
def http(monkeypatch: pytest.MonkeyPatch):
    calls: list[tuple[str, str, dict]] = []
    responses: list[FakeResponse] = []

    def fake_request(method: str, url: str, timeout: int, **kwargs) -> FakeResponse:
        calls.append((method, url, kwargs))
        return responses.pop(0)

    monkeypatch.setattr(main.requests, "request", fake_request)
    monkeypatch.delenv("DOCG_HOST", raising=False)
    return calls, responses


def test_estimate_posts_length(http) -> None:
    calls, responses = http
    responses.append(FakeResponse({"estimated_cost": 0.039, "formatted_cost": "$0.04"}))
    result = runner.invoke(main.app, ["estimate", "--length", "10000"])
    assert result.exit_code == 0
    method, url, kwargs = calls[0]
    assert (method, url) == ("POST", "http://127.0.0.1:8000/estimate")
    assert kwargs["json"]["text_length"] == 10000
    assert "$0.04" in result.output


def test_generate_prints_mermaid(http, tmp_path: Path) -> None:
    calls, responses = http
    doc = tmp_path / "plants.md"
    doc.write_text("# Plants\n\nPhotosynthesis turns light into sugar.", encoding="utf-8")
    responses.append(FakeResponse({"mermaid_code": "flowchart TD", "statistics": {"warnings": []}}))
    result = runner.invoke(main.app, ["generate", str(doc), "--user", "u1", "--mermaid", "--host", "http://api:9000/"])
    assert result.exit_code == 0
    assert result.output.strip() == "flowchart TD"
    method, url, kwargs = calls[0]
    assert url == "http://api:9000/graphs"
    assert kwargs["json"]["title"] == "plants"
    assert kwargs["json"]["user_id"] == "u1"


def test_generate_requires_exactly_one_source(http) -> None:
    calls, _ = http
    result = runner.invoke(main.app, ["generate", "--user", "u1"])
    assert result.exit_code == 2
    assert calls == []


def test_failed_request_exits_non_zero(http) -> None:
    _, responses = http
    responses.append(FakeResponse({"code": "budget-exceeded"}, status_code=402))
    result = runner.invoke(main.app, ["usage", "u1"])
    assert result.exit_code == 1
