from __future__ import annotations

import argparse
from dataclasses import replace
import mimetypes
from pathlib import Path
import sys
import uuid

from docqa.config import get_settings
from docqa.db import Base, get_engine
from docqa.services.rag.binary_store import LocalBinaryStore
from docqa.services.rag.extractors import DOCX_MIME_TYPE, PDF_MIME_TYPE
from docqa.services.rag.ingest_job_runner import build_orchestrator
from docqa.services.rag.section_store import SqlDocumentStore
from docqa.services.rag.types import DOCUMENT_STATUS_QUEUED

_SUFFIX_MIME_TYPES = {".pdf": PDF_MIME_TYPE, ".docx": DOCX_MIME_TYPE}


def _guess_mime_type(path: Path) -> str:
    known = _SUFFIX_MIME_TYPES.get(path.suffix.lower())
    if known is not None:
        return known
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="docqa-ingest",
        description="Register a local PDF/DOCX document and ingest it synchronously",
    )
    parser.add_argument("path", help="Path to the document to ingest")
    parser.add_argument("--title", default=None, help="Document title (defaults to the file stem)")
    parser.add_argument(
        "--mime-type",
        default=None,
        help="MIME type override (guessed from the file suffix otherwise)",
    )
    parser.add_argument(
        "--max-chunk-size",
        type=int,
        default=settings.max_chunk_size,
        help="Maximum chunk size in characters",
    )
    return parser


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    path = Path(args.path)

    try:
        content = path.read_bytes()
        mime_type = args.mime_type or _guess_mime_type(path)
        settings = get_settings()
        engine = get_engine()
        Base.metadata.create_all(bind=engine)

        storage_path = LocalBinaryStore(Path(settings.storage_dir)).save(path.name, content)
        document_id = SqlDocumentStore(engine).create_document(
            document_id=uuid.uuid4().hex,
            title=args.title or path.stem,
            filename=path.name,
            mimetype=mime_type,
            size_bytes=len(content),
            storage_path=storage_path,
            metadata={"source_path": str(path)},
            status=DOCUMENT_STATUS_QUEUED,
        )

        orchestrator = build_orchestrator(
            replace(settings, max_chunk_size=args.max_chunk_size),
            engine,
        )
        outcome = orchestrator.ingest(document_id, storage_path, mime_type)
    except Exception as exc:
        print(f"[docqa-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    if not outcome.succeeded:
        print(
            f"[docqa-ingest] failed document_id={outcome.document_id} error={outcome.error_message}",
            file=sys.stderr,
            flush=True,
        )
        raise SystemExit(1)

    print(
        "[docqa-ingest] completed "
        f"document_id={outcome.document_id} "
        f"chunks={outcome.chunk_count} "
        f"sections={outcome.section_count} "
        f"skipped={outcome.skipped_count}",
        flush=True,
    )


if __name__ == "__main__":
    main()
