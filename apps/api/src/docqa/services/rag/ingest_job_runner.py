from __future__ import annotations

import argparse
from dataclasses import asdict
import json
from pathlib import Path
import sys
from time import perf_counter
from typing import TypedDict

from sqlalchemy.engine import Engine

from docqa.config import Settings, get_settings
from docqa.db import get_engine
from docqa.services.rag.binary_store import LocalBinaryStore
from docqa.services.rag.embedding_client import EmbeddingClient, OllamaEmbeddingClient
from docqa.services.rag.ingest import IngestionOrchestrator
from docqa.services.rag.section_store import SqlDocumentStore, SqlSectionStore


class IngestJobResult(TypedDict):
    document_id: str
    status: str
    chunk_count: int
    section_count: int
    skipped_count: int
    error_message: str | None
    duration_ms: int
    embed_model: str


class IngestJobError(RuntimeError):
    pass


def build_orchestrator(
    settings: Settings,
    engine: Engine,
    *,
    embedding_client: EmbeddingClient | None = None,
) -> IngestionOrchestrator:
    if embedding_client is None:
        embedding_client = OllamaEmbeddingClient(
            base_url=settings.ollama_embed_base_url,
            model=settings.ollama_embed_model,
            timeout_seconds=settings.ollama_timeout_seconds,
        )

    return IngestionOrchestrator(
        binary_store=LocalBinaryStore(Path(settings.storage_dir)),
        embedding_client=embedding_client,
        document_store=SqlDocumentStore(engine),
        section_store=SqlSectionStore(engine),
        max_chunk_size=settings.max_chunk_size,
    )


def run_ingest_job(
    *,
    document_id: str,
    engine: Engine | None = None,
    embedding_client: EmbeddingClient | None = None,
) -> IngestJobResult:
    settings = get_settings()
    engine = engine or get_engine()
    start = perf_counter()

    document = SqlDocumentStore(engine).get_document(document_id)
    if document is None:
        raise IngestJobError(f"document not found: {document_id}")

    orchestrator = build_orchestrator(settings, engine, embedding_client=embedding_client)
    outcome = orchestrator.ingest(document.id, document.storage_path, document.mimetype)

    result: IngestJobResult = {
        **asdict(outcome),
        "duration_ms": int((perf_counter() - start) * 1000),
        "embed_model": settings.ollama_embed_model,
    }
    return result


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docqa-ingest-runner",
        description="Ingest one queued document (extract, chunk, embed, store sections)",
    )
    parser.add_argument(
        "--payload-json",
        required=True,
        help='JSON object payload, e.g. {"document_id": "..."}',
    )
    return parser


def _resolve_document_id(payload_json_raw: str) -> str:
    parsed = json.loads(payload_json_raw)
    if not isinstance(parsed, dict):
        raise ValueError("payload_json must be a JSON object")
    document_id = parsed.get("document_id")
    if not isinstance(document_id, str) or not document_id.strip():
        raise ValueError("payload_json.document_id must be a non-empty string")
    return document_id.strip()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    try:
        document_id = _resolve_document_id(args.payload_json)
        result = run_ingest_job(document_id=document_id)
    except Exception as exc:
        print(f"[docqa-ingest-runner] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(json.dumps(result), flush=True)
    if result["status"] != "ready":
        # non-zero exit lets the worker requeue the job
        print(
            f"[docqa-ingest-runner] document ended in error: {result['error_message']}",
            file=sys.stderr,
            flush=True,
        )
        raise SystemExit(2)


if __name__ == "__main__":
    main()
