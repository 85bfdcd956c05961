"""Document and graph generation routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from docgraph.api.dependencies import get_database, get_document_store, get_pipeline
from docgraph.db.documents import SQLiteDocumentStore
from docgraph.db.graphs import SQLiteGraphRepository
from docgraph.db.sqlite import SQLiteDatabase
from docgraph.models.dto import DocumentCreateRequest, DocumentResponse, GraphRequest, GraphResponse
from docgraph.pipeline.orchestrator import GraphPipeline

router = APIRouter()


@router.post("/documents", response_model=DocumentResponse, summary="Register a document")
async def create_document(
    request: DocumentCreateRequest,
    store: SQLiteDocumentStore = Depends(get_document_store),
) -> DocumentResponse:
    record = store.add(request.text, title=request.title, status=request.status)
    return DocumentResponse(id=record.id, title=record.title, status=record.status, length=len(record.text))


@router.get("/documents/{document_id}", response_model=DocumentResponse, summary="Fetch document status")
async def get_document(
    document_id: str,
    store: SQLiteDocumentStore = Depends(get_document_store),
) -> DocumentResponse:
    record = store.read(document_id)
    return DocumentResponse(id=record.id, title=record.title, status=record.status, length=len(record.text))


# sync handler: generation blocks on LLM calls, so let FastAPI run it in its threadpool
@router.post("/graphs", response_model=GraphResponse, summary="Generate a knowledge graph")
def create_graph(request: GraphRequest, pipeline: GraphPipeline = Depends(get_pipeline)) -> GraphResponse:
    if request.document_id is not None:
        result = pipeline.generate(request.document_id, request.user_id, max_nodes=request.max_nodes)
    else:
        result = pipeline.generate_from_text(
            request.text or "",
            request.user_id,
            title=request.title,
            max_nodes=request.max_nodes,
        )
    return GraphResponse(**result.to_dict())


@router.get("/graphs/{graph_id}", response_model=GraphResponse, summary="Fetch a stored graph")
async def get_graph(graph_id: str, db: SQLiteDatabase = Depends(get_database)) -> GraphResponse:
    payload = SQLiteGraphRepository(db).load(graph_id)
    if payload is None:
        raise HTTPException(status_code=404, detail="Graph not found")
    return GraphResponse(
        **payload,
        title=None,
        is_partial=payload["statistics"].get("chunks_failed", 0) > 0,
    )
