from __future__ import annotations

from array import array
from datetime import datetime, timezone
import math
from typing import Any, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docqa.models import DocumentRecord, DocumentSectionRecord
from docqa.services.rag.types import DOCUMENT_STATUS_READY, QueryMatch


class SectionStoreError(RuntimeError):
    pass


class SearchBackendError(RuntimeError):
    pass


class DocumentStore(Protocol):
    def update_status(
        self,
        document_id: str,
        status: str,
        error_message: str | None = None,
    ) -> None: ...


class SectionStore(Protocol):
    def insert_section(
        self,
        *,
        document_id: str,
        section_order: int,
        section_content: str,
        embedding: list[float],
        meta: dict[str, Any],
    ) -> None: ...

    def delete_sections(self, document_id: str) -> int: ...


class SearchBackend(Protocol):
    def match_top_k(self, query_embedding: list[float], top_k: int) -> list[QueryMatch]: ...

    def match_filtered(
        self,
        query_embedding: list[float],
        threshold: float,
        match_count: int,
    ) -> list[QueryMatch]: ...


def _encode_embedding(values: list[float]) -> bytes:
    vector = array("f", values)
    return vector.tobytes()


def _decode_embedding(blob: bytes) -> list[float]:
    vector = array("f")
    vector.frombytes(blob)
    return vector.tolist()


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class SqlDocumentStore:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_document(
        self,
        *,
        document_id: str,
        title: str,
        filename: str,
        mimetype: str,
        size_bytes: int,
        storage_path: str,
        metadata: dict[str, Any] | None = None,
        status: str = "queued",
    ) -> str:
        with Session(self._engine) as session:
            session.add(
                DocumentRecord(
                    id=document_id,
                    title=title,
                    filename=filename,
                    mimetype=mimetype,
                    bytes=size_bytes,
                    storage_path=storage_path,
                    source="upload",
                    metadata_json=metadata or {},
                    status=status,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            session.commit()
        return document_id

    def get_document(self, document_id: str) -> DocumentRecord | None:
        with Session(self._engine) as session:
            return session.get(DocumentRecord, document_id)

    def count_sections(self, document_id: str) -> int:
        with Session(self._engine) as session:
            count = session.scalar(
                select(func.count())
                .select_from(DocumentSectionRecord)
                .where(DocumentSectionRecord.document_id == document_id)
            )
        return int(count or 0)

    def update_status(
        self,
        document_id: str,
        status: str,
        error_message: str | None = None,
    ) -> None:
        with Session(self._engine) as session:
            result = session.execute(
                update(DocumentRecord)
                .where(DocumentRecord.id == document_id)
                .values(
                    status=status,
                    error_message=error_message,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            session.commit()

        if result.rowcount != 1:
            raise LookupError(f"document not found: {document_id}")


class SqlSectionStore:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def insert_section(
        self,
        *,
        document_id: str,
        section_order: int,
        section_content: str,
        embedding: list[float],
        meta: dict[str, Any],
    ) -> None:
        try:
            with Session(self._engine) as session:
                session.add(
                    DocumentSectionRecord(
                        document_id=document_id,
                        section_order=section_order,
                        section_content=section_content,
                        embedding=_encode_embedding(embedding),
                        embedding_dim=len(embedding),
                        meta=meta,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise SectionStoreError(
                f"could not store section {section_order} of document {document_id}: {exc}"
            ) from exc

    def delete_sections(self, document_id: str) -> int:
        try:
            with Session(self._engine) as session:
                result = session.execute(
                    delete(DocumentSectionRecord).where(
                        DocumentSectionRecord.document_id == document_id
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise SectionStoreError(
                f"could not clear sections of document {document_id}: {exc}"
            ) from exc
        return int(result.rowcount or 0)


class SqlSearchBackend:
    """Cosine-similarity search over sections of ``ready`` documents."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def _scored(self, query_embedding: list[float]) -> list[QueryMatch]:
        try:
            with Session(self._engine) as session:
                rows = session.execute(
                    select(
                        DocumentSectionRecord.id,
                        DocumentSectionRecord.document_id,
                        DocumentSectionRecord.section_content,
                        DocumentSectionRecord.embedding,
                        DocumentSectionRecord.embedding_dim,
                        DocumentSectionRecord.meta,
                    )
                    .join(DocumentRecord, DocumentRecord.id == DocumentSectionRecord.document_id)
                    .where(DocumentRecord.status == DOCUMENT_STATUS_READY)
                    .order_by(DocumentSectionRecord.document_id, DocumentSectionRecord.section_order)
                ).all()
        except SQLAlchemyError as exc:
            raise SearchBackendError(f"section search failed: {exc}") from exc

        matches: list[QueryMatch] = []
        for section_id, document_id, content, embedding_blob, embedding_dim, meta in rows:
            embedding = _decode_embedding(embedding_blob)
            if len(embedding) != embedding_dim or embedding_dim != len(query_embedding):
                continue
            matches.append(
                QueryMatch(
                    id=section_id,
                    document_id=document_id,
                    section_content=content,
                    similarity=_cosine(query_embedding, embedding),
                    meta=meta if isinstance(meta, dict) else {},
                )
            )

        matches.sort(key=lambda match: match.similarity, reverse=True)
        return matches

    def match_top_k(self, query_embedding: list[float], top_k: int) -> list[QueryMatch]:
        return self._scored(query_embedding)[: max(0, top_k)]

    def match_filtered(
        self,
        query_embedding: list[float],
        threshold: float,
        match_count: int,
    ) -> list[QueryMatch]:
        matches = [
            match for match in self._scored(query_embedding) if match.similarity > threshold
        ]
        return matches[: max(0, match_count)]
