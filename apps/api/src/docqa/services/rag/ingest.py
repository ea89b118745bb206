from __future__ import annotations

from docqa.services.rag.binary_store import BinaryStore, BinaryStoreError
from docqa.services.rag.chunker import DEFAULT_MAX_CHUNK_SIZE, chunk_text
from docqa.services.rag.embedding_client import EmbeddingClient, EmbeddingClientError
from docqa.services.rag.extractors import extract
from docqa.services.rag.section_store import DocumentStore, SectionStore, SectionStoreError
from docqa.services.rag.types import (
    DOCUMENT_STATUS_ERROR,
    DOCUMENT_STATUS_READY,
    NO_EMBEDDED_SECTIONS,
    NO_EXTRACTABLE_TEXT,
    IngestionOutcome,
)

SECTION_META = {"source": "upload"}


class IngestionOrchestrator:
    """Drives one document from ``queued`` to ``ready`` or ``error``.

    Chunks are embedded and stored one at a time, in order. A chunk that gets
    no embedding is skipped, which leaves a gap in ``section_order``. A storage
    failure stops the run and marks the document ``error``; sections stored
    before the failure are kept. Every run starts by clearing the sections an
    earlier run of the same document left behind, so re-running after
    ``error`` needs no manual cleanup and never mixes old and new sections.
    """

    def __init__(
        self,
        *,
        binary_store: BinaryStore,
        embedding_client: EmbeddingClient,
        document_store: DocumentStore,
        section_store: SectionStore,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    ) -> None:
        self._binary_store = binary_store
        self._embedding_client = embedding_client
        self._document_store = document_store
        self._section_store = section_store
        self._max_chunk_size = max_chunk_size

    def _fail(
        self,
        document_id: str,
        message: str,
        *,
        chunk_count: int = 0,
        section_count: int = 0,
        skipped_count: int = 0,
    ) -> IngestionOutcome:
        self._document_store.update_status(document_id, DOCUMENT_STATUS_ERROR, message)
        print(f"[ingest] document failed document_id={document_id} error={message}", flush=True)
        return IngestionOutcome(
            document_id=document_id,
            status=DOCUMENT_STATUS_ERROR,
            chunk_count=chunk_count,
            section_count=section_count,
            skipped_count=skipped_count,
            error_message=message,
        )

    def _extract(self, binary: bytes, mime_type: str, document_id: str) -> str:
        try:
            return extract(binary, mime_type)
        except Exception as exc:
            print(
                f"[ingest] extraction failed document_id={document_id} "
                f"mimetype={mime_type} error={exc!r}",
                flush=True,
            )
            return ""

    def ingest(self, document_id: str, storage_path: str, mime_type: str) -> IngestionOutcome:
        try:
            cleared = self._section_store.delete_sections(document_id)
        except SectionStoreError as exc:
            return self._fail(document_id, str(exc))
        if cleared:
            print(
                f"[ingest] cleared stale sections document_id={document_id} count={cleared}",
                flush=True,
            )

        try:
            binary = self._binary_store.fetch(storage_path)
        except BinaryStoreError as exc:
            return self._fail(document_id, str(exc))

        text = self._extract(binary, mime_type, document_id)
        if not text.strip():
            return self._fail(document_id, NO_EXTRACTABLE_TEXT)

        chunks = chunk_text(text, self._max_chunk_size)

        section_count = 0
        skipped_count = 0
        for section_order, chunk in enumerate(chunks, start=1):
            try:
                embedding = self._embedding_client.embed_text(chunk)
            except EmbeddingClientError as exc:
                return self._fail(
                    document_id,
                    f"embedding request failed: {exc}",
                    chunk_count=len(chunks),
                    section_count=section_count,
                    skipped_count=skipped_count,
                )

            if not embedding:
                skipped_count += 1
                print(
                    f"[ingest] no embedding, skipping section "
                    f"document_id={document_id} section_order={section_order}",
                    flush=True,
                )
                continue

            try:
                self._section_store.insert_section(
                    document_id=document_id,
                    section_order=section_order,
                    section_content=chunk,
                    embedding=embedding,
                    meta=dict(SECTION_META),
                )
            except SectionStoreError as exc:
                return self._fail(
                    document_id,
                    str(exc),
                    chunk_count=len(chunks),
                    section_count=section_count,
                    skipped_count=skipped_count,
                )
            section_count += 1

        if section_count == 0:
            return self._fail(
                document_id,
                NO_EMBEDDED_SECTIONS,
                chunk_count=len(chunks),
                skipped_count=skipped_count,
            )

        self._document_store.update_status(document_id, DOCUMENT_STATUS_READY)
        print(
            f"[ingest] document ready document_id={document_id} "
            f"chunks={len(chunks)} sections={section_count} skipped={skipped_count}",
            flush=True,
        )
        return IngestionOutcome(
            document_id=document_id,
            status=DOCUMENT_STATUS_READY,
            chunk_count=len(chunks),
            section_count=section_count,
            skipped_count=skipped_count,
        )
