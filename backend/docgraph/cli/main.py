"""CLI entrypoint for docgraph."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="docgraph", help="docgraph command-line interface")

DEFAULT_HOST = "http://127.0.0.1:8000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("DOCG_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=600, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _read(path: Path) -> str:
    return path.expanduser().read_text(encoding="utf-8")


@app.command()
def chunk(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Document to split"),
    max_chunk_size: Optional[int] = typer.Option(None, "--max-chunk-size"),
    overlap_size: Optional[int] = typer.Option(None, "--overlap-size"),
    min_chunk_size: Optional[int] = typer.Option(None, "--min-chunk-size"),
    full: bool = typer.Option(False, "--full", help="Print chunk contents too"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Split a document and print chunk boundaries and statistics."""
    body: dict[str, object] = {"text": _read(path), "title": path.stem}
    for key, value in (
        ("max_chunk_size", max_chunk_size),
        ("overlap_size", overlap_size),
        ("min_chunk_size", min_chunk_size),
    ):
        if value is not None:
            body[key] = value
    payload = _request("POST", "/chunk", host=host, json=body).json()
    if not full:
        for item in payload["chunks"]:
            item.pop("content", None)
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def estimate(
    path: Optional[Path] = typer.Argument(None, help="Document whose length is priced"),
    length: int = typer.Option(0, "--length", help="Character count when no file is given"),
    images: int = typer.Option(0, "--images", help="Number of images"),
    operation: str = typer.Option("graph-generation", "--operation"),
    model: Optional[str] = typer.Option(None, "--model"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Estimate the cost of an AI operation."""
    body: dict[str, object] = {
        "text_length": len(_read(path)) if path else length,
        "image_count": images,
        "operation_type": operation,
    }
    if model:
        body["model"] = model
    resp = _request("POST", "/estimate", host=host, json=body)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def usage(
    user_id: str = typer.Argument(..., help="User identifier"),
    period: str = typer.Option("day", "--period", help="day or month"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show a user's spend for the current day or month."""
    resp = _request("GET", f"/budget/usage/{user_id}", host=host, params={"period": period})
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def generate(
    path: Optional[Path] = typer.Argument(None, help="Document to turn into a graph"),
    user: str = typer.Option(..., "--user", help="User the spend is charged to"),
    document_id: Optional[str] = typer.Option(None, "--document-id", help="Use a registered document"),
    max_nodes: Optional[int] = typer.Option(None, "--max-nodes"),
    mermaid: bool = typer.Option(False, "--mermaid", help="Print only the Mermaid diagram"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Generate a knowledge graph from a file or a registered document."""
    if (path is None) == (document_id is None):
        typer.echo("Provide either a file path or --document-id", err=True)
        raise typer.Exit(code=2)
    body: dict[str, object] = {"user_id": user}
    if path is not None:
        body["text"] = _read(path)
        body["title"] = path.stem
    else:
        body["document_id"] = document_id
    if max_nodes is not None:
        body["max_nodes"] = max_nodes
    payload = _request("POST", "/graphs", host=host, json=body).json()
    if mermaid:
        typer.echo(payload["mermaid_code"])
        return
    typer.echo(json.dumps(payload, indent=2))
    for warning in payload["statistics"].get("warnings", []):
        typer.echo(f"warning: {warning}", err=True)


if __name__ == "__main__":
    app()
