"""Persistence for finished graphs."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Protocol

import orjson

from docgraph.core.logging import ctx, get_logger
from docgraph.db.sqlite import SQLiteDatabase
from docgraph.synthesis.types import GraphResult
from docgraph.utils.time import now_ms

logger = get_logger(__name__)


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


class GraphRepository(Protocol):
    def save(self, result: GraphResult) -> None:
        """Persist graph, nodes and edges together or not at all."""
        ...


class SQLiteGraphRepository:
    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database

    def save(self, result: GraphResult) -> None:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO graphs (id, document_id, mermaid_code, statistics_json, metadata_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    result.graph_id,
                    result.document_id,
                    result.mermaid_code,
                    _dumps(asdict(result.statistics)),
                    _dumps(asdict(result.metadata)),
                    now_ms(),
                ],
            )
            cursor.executemany(
                """
                INSERT INTO graph_nodes (graph_id, node_id, title, summary, node_type, confidence, meta_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    [
                        result.graph_id,
                        node.id,
                        node.title,
                        node.summary,
                        node.node_type,
                        node.confidence,
                        _dumps(
                            {
                                "description": node.description,
                                "document_refs": [asdict(ref) for ref in node.document_refs],
                                "source_chunks": node.source_chunks,
                            }
                        ),
                    ]
                    for node in result.nodes
                ],
            )
            cursor.executemany(
                """
                INSERT INTO graph_edges (graph_id, edge_id, source, target, relationship, strength)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    [result.graph_id, edge.id, edge.source, edge.target, edge.relationship, edge.strength]
                    for edge in result.edges
                ],
            )
        logger.info(
            "Graph saved",
            extra=ctx(graph_id=result.graph_id, nodes=len(result.nodes), edges=len(result.edges)),
        )

    def load(self, graph_id: str) -> dict[str, Any] | None:
        rows = self.db.query("SELECT * FROM graphs WHERE id = ?", [graph_id])
        if not rows:
            return None
        graph = rows[0]
        nodes = self.db.query("SELECT * FROM graph_nodes WHERE graph_id = ? ORDER BY rowid", [graph_id])
        edges = self.db.query("SELECT * FROM graph_edges WHERE graph_id = ? ORDER BY rowid", [graph_id])
        return {
            "graph_id": graph["id"],
            "document_id": graph["document_id"],
            "mermaid_code": graph["mermaid_code"],
            "statistics": orjson.loads(graph["statistics_json"]),
            "metadata": orjson.loads(graph["metadata_json"]),
            "nodes": [
                {
                    "id": row["node_id"],
                    "title": row["title"],
                    "summary": row["summary"],
                    "node_type": row["node_type"],
                    "confidence": row["confidence"],
                    **orjson.loads(row["meta_json"]),
                }
                for row in nodes
            ],
            "edges": [
                {
                    "id": row["edge_id"],
                    "source": row["source"],
                    "target": row["target"],
                    "relationship": row["relationship"],
                    "strength": row["strength"],
                }
                for row in edges
            ],
        }


__all__ = ["GraphRepository", "SQLiteGraphRepository"]
