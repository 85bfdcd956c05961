"""Document store collaborators."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Literal, Protocol

from docgraph.core.errors import DocumentNotFound
from docgraph.db.sqlite import SQLiteDatabase
from docgraph.utils.ids import new_id
from docgraph.utils.time import now_ms

DocumentStatus = Literal["uploading", "processing", "ready", "failed"]


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    id: str
    text: str
    title: str | None = None
    status: DocumentStatus = "ready"


class DocumentStore(Protocol):
    def read(self, document_id: str) -> DocumentRecord:
        """Return the document or raise DocumentNotFound."""
        ...


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, DocumentRecord] = {}

    def add(
        self,
        text: str,
        title: str | None = None,
        status: DocumentStatus = "ready",
        document_id: str | None = None,
    ) -> DocumentRecord:
        record = DocumentRecord(id=document_id or new_id("doc"), text=text, title=title, status=status)
        with self._lock:
            self._documents[record.id] = record
        return record

    def read(self, document_id: str) -> DocumentRecord:
        with self._lock:
            record = self._documents.get(document_id)
        if record is None:
            raise DocumentNotFound(f"Document {document_id} not found", details={"document_id": document_id})
        return record


class SQLiteDocumentStore:
    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database

    def add(
        self,
        text: str,
        title: str | None = None,
        status: DocumentStatus = "ready",
        document_id: str | None = None,
    ) -> DocumentRecord:
        record = DocumentRecord(id=document_id or new_id("doc"), text=text, title=title, status=status)
        timestamp = now_ms()
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO documents (id, title, text, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  title = excluded.title,
                  text = excluded.text,
                  status = excluded.status,
                  updated_at = excluded.updated_at
                """,
                [record.id, record.title, record.text, record.status, timestamp, timestamp],
            )
        return record

    def read(self, document_id: str) -> DocumentRecord:
        rows = self.db.query("SELECT id, title, text, status FROM documents WHERE id = ?", [document_id])
        if not rows:
            raise DocumentNotFound(f"Document {document_id} not found", details={"document_id": document_id})
        row = rows[0]
        return DocumentRecord(id=row["id"], text=row["text"], title=row["title"], status=row["status"])


__all__ = ["DocumentRecord", "DocumentStatus", "DocumentStore", "InMemoryDocumentStore", "SQLiteDocumentStore"]
