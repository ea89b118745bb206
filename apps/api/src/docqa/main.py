from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
import json
from pathlib import Path
import re
from typing import Annotated, Any
import uuid

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from docqa.config import get_settings
from docqa.db import get_engine
from docqa.llm import LLMClient, LLMClientError, OllamaChatClient
from docqa.models import DocumentRecord, JobRecord
from docqa.services.rag import RetrievalEngine, assemble
from docqa.services.rag.binary_store import BinaryStoreError, LocalBinaryStore
from docqa.services.rag.embedding_client import (
    EmbeddingClient,
    EmbeddingClientError,
    OllamaEmbeddingClient,
)
from docqa.services.rag.extractors import can_handle
from docqa.services.rag.section_store import (
    SearchBackend,
    SearchBackendError,
    SqlDocumentStore,
    SqlSearchBackend,
)
from docqa.services.rag.types import DOCUMENT_STATUS_QUEUED

DOCUMENT_INGEST_JOB = "document_ingest"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    get_engine()
    yield


app = FastAPI(title="Document Q&A API", version="0.1.0", lifespan=lifespan)


class AskRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    question: str = Field(min_length=1)


@lru_cache
def get_llm_client() -> LLMClient:
    settings = get_settings()
    return OllamaChatClient(
        base_url=settings.ollama_base_url,
        default_model=settings.ollama_model,
        fallback_model=settings.ollama_fallback_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


@lru_cache
def get_embedding_client() -> EmbeddingClient:
    settings = get_settings()
    return OllamaEmbeddingClient(
        base_url=settings.ollama_embed_base_url,
        model=settings.ollama_embed_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


def get_search_backend() -> SearchBackend:
    return SqlSearchBackend(get_engine())


def get_binary_store() -> LocalBinaryStore:
    return LocalBinaryStore(Path(get_settings().storage_dir))


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _job_summary(job: JobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "type": job.type,
        "status": job.status,
    }


def _parse_json_object(value: Any) -> dict[str, Any] | None:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    return value if isinstance(value, dict) else None


def _job_detail(job: JobRecord) -> dict[str, Any]:
    return {
        "id": job.id,
        "type": job.type,
        "status": job.status,
        "payload_json": _parse_json_object(job.payload_json),
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "created_at": _to_iso(job.created_at),
        "updated_at": _to_iso(job.updated_at),
        "started_at": _to_iso(job.started_at),
        "finished_at": _to_iso(job.finished_at),
        "error": job.error,
        "result_json": _parse_json_object(job.result_json),
    }


def _document_detail(document: DocumentRecord, section_count: int) -> dict[str, Any]:
    return {
        "id": document.id,
        "title": document.title,
        "filename": document.filename,
        "mimetype": document.mimetype,
        "bytes": document.bytes,
        "storage_path": document.storage_path,
        "metadata": document.metadata_json or {},
        "status": document.status,
        "error_message": document.error_message,
        "section_count": section_count,
        "created_at": _to_iso(document.created_at),
        "updated_at": _to_iso(document.updated_at),
    }


def _extract_numeric_suffix(value: str) -> int | None:
    match = re.search(r"(\d+)$", value)
    if match is None:
        return None
    return int(match.group(1))


def _next_job_id(session: Session) -> str:
    next_id = 1
    for existing_id in session.scalars(select(JobRecord.id)).all():
        parsed = _extract_numeric_suffix(str(existing_id))
        if parsed is None:
            continue
        next_id = max(next_id, parsed + 1)
    return str(next_id)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/documents")
def upload_document(
    binary_store: Annotated[LocalBinaryStore, Depends(get_binary_store)],
    file: UploadFile = File(...),
    title: str = Form(default=""),
    metadata: str | None = Form(default=None),
) -> JSONResponse:
    if not title.strip():
        raise HTTPException(status_code=400, detail="title must not be empty")

    mimetype = file.content_type or ""
    if not can_handle(mimetype):
        raise HTTPException(status_code=415, detail=f"unsupported document type: {mimetype or '<none>'}")

    metadata_json: dict[str, Any] = {}
    if metadata is not None and metadata.strip():
        parsed = _parse_json_object(metadata)
        if parsed is None:
            raise HTTPException(status_code=400, detail="metadata must be a JSON object")
        metadata_json = parsed

    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="file must not be empty")
    if len(content) > get_settings().max_upload_bytes:
        raise HTTPException(status_code=413, detail="file too large")

    filename = file.filename or "file"
    try:
        storage_path = binary_store.save(filename, content)
    except BinaryStoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    document_id = uuid.uuid4().hex
    SqlDocumentStore(get_engine()).create_document(
        document_id=document_id,
        title=title.strip(),
        filename=Path(storage_path).name,
        mimetype=mimetype,
        size_bytes=len(content),
        storage_path=storage_path,
        metadata=metadata_json,
        status=DOCUMENT_STATUS_QUEUED,
    )

    with Session(get_engine()) as session:
        job = JobRecord(
            id=_next_job_id(session),
            type=DOCUMENT_INGEST_JOB,
            status="queued",
            payload_json={"document_id": document_id},
            attempts=0,
            max_attempts=3,
            updated_at=datetime.now(timezone.utc),
        )
        session.add(job)
        session.commit()
        job_id = job.id

    return JSONResponse(
        status_code=202,
        content={"document_id": document_id, "status": DOCUMENT_STATUS_QUEUED, "job_id": job_id},
    )


@app.get("/documents/{document_id}")
def get_document(document_id: str) -> dict[str, Any]:
    store = SqlDocumentStore(get_engine())
    document = store.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="document not found")
    return _document_detail(document, store.count_sections(document_id))


@app.get("/jobs")
def list_jobs(
    type: str | None = Query(default=None),
    status: str | None = Query(default=None),
) -> list[dict[str, Any]]:
    with Session(get_engine()) as session:
        stmt = select(JobRecord)
        if type is not None:
            stmt = stmt.where(JobRecord.type == type)
        if status is not None:
            stmt = stmt.where(JobRecord.status == status)

        jobs = session.scalars(
            stmt.order_by(JobRecord.created_at.asc(), JobRecord.id.asc())
        ).all()

    return [_job_summary(job) for job in jobs]


@app.get("/jobs/{job_id}")
def get_job(job_id: str) -> dict[str, Any]:
    with Session(get_engine()) as session:
        job = session.get(JobRecord, job_id)

    if job is None:
        raise HTTPException(status_code=404, detail="job not found")
    return _job_detail(job)


@app.post("/ask")
def ask(
    request: AskRequest,
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
    search_backend: Annotated[SearchBackend, Depends(get_search_backend)],
) -> dict[str, Any]:
    question = request.question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="question must not be empty")

    try:
        query_embedding = embedding_client.embed_text(question)
    except EmbeddingClientError as exc:
        raise HTTPException(status_code=502, detail=f"Embedding request failed: {exc}") from exc
    if not query_embedding:
        raise HTTPException(status_code=502, detail="Embedding request returned no vector")

    try:
        matches = RetrievalEngine(search_backend).retrieve(query_embedding)
    except SearchBackendError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    completion_request = assemble(matches, question)

    try:
        chat_result = llm_client.generate_answer(completion_request)
    except LLMClientError as exc:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    return {
        "answer": chat_result.answer,
        "sources": [
            {
                "id": match.id,
                "document_id": match.document_id,
                "similarity": round(match.similarity, 6),
                "section_content": match.section_content,
            }
            for match in matches
        ],
        "meta": {
            "model": chat_result.model,
            "used_fallback": chat_result.used_fallback,
            "retrieved_count": len(matches),
        },
    }


def run() -> None:
    import uvicorn

    uvicorn.run("docqa.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
