from dataclasses import dataclass, field
from typing import Any

DOCUMENT_STATUS_QUEUED = "queued"
DOCUMENT_STATUS_READY = "ready"
DOCUMENT_STATUS_ERROR = "error"

NO_EXTRACTABLE_TEXT = "no extractable text"
NO_EMBEDDED_SECTIONS = "no sections could be embedded"


@dataclass(frozen=True)
class PositionedText:
    x: float
    y: float
    text: str


@dataclass(frozen=True)
class QueryMatch:
    id: int
    document_id: str
    section_content: str
    similarity: float
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetrievalTier:
    top_k: int
    threshold: float | None = None


@dataclass(frozen=True)
class IngestionOutcome:
    document_id: str
    status: str
    chunk_count: int = 0
    section_count: int = 0
    skipped_count: int = 0
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == DOCUMENT_STATUS_READY


@dataclass(frozen=True)
class CompletionRequest:
    question: str
    context: str
