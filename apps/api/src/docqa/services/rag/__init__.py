from docqa.services.rag.answer import assemble
from docqa.services.rag.chunker import chunk_text
from docqa.services.rag.extractors import extract
from docqa.services.rag.ingest import IngestionOrchestrator
from docqa.services.rag.normalizer import normalize
from docqa.services.rag.query import DEFAULT_TIERS, RetrievalEngine
from docqa.services.rag.types import CompletionRequest, IngestionOutcome, QueryMatch, RetrievalTier

__all__ = [
    "DEFAULT_TIERS",
    "CompletionRequest",
    "IngestionOrchestrator",
    "IngestionOutcome",
    "QueryMatch",
    "RetrievalEngine",
    "RetrievalTier",
    "assemble",
    "chunk_text",
    "extract",
    "normalize",
]
