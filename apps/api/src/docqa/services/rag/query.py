from __future__ import annotations

from collections.abc import Sequence

from docqa.services.rag.section_store import SearchBackend
from docqa.services.rag.types import QueryMatch, RetrievalTier

DEFAULT_TIERS: tuple[RetrievalTier, ...] = (
    RetrievalTier(top_k=8, threshold=None),
    RetrievalTier(top_k=12, threshold=0.3),
    RetrievalTier(top_k=20, threshold=0.2),
)


class RetrievalEngine:
    """Similarity search that loosens its net until something comes back.

    Tiers are tried in order and the first non-empty result is returned as is;
    later tiers are never consulted once one has matched. Backend errors are
    not caught here, so "search failed" stays distinct from "nothing found".
    """

    def __init__(
        self,
        search_backend: SearchBackend,
        *,
        tiers: Sequence[RetrievalTier] = DEFAULT_TIERS,
    ) -> None:
        self._search_backend = search_backend
        self._tiers = tuple(tiers)

    def _search(self, query_embedding: list[float], tier: RetrievalTier) -> list[QueryMatch]:
        if tier.threshold is None:
            return self._search_backend.match_top_k(query_embedding, tier.top_k)
        return self._search_backend.match_filtered(query_embedding, tier.threshold, tier.top_k)

    def retrieve(
        self,
        query_embedding: list[float],
        tiers: Sequence[RetrievalTier] | None = None,
    ) -> list[QueryMatch]:
        for tier in self._tiers if tiers is None else tiers:
            matches = self._search(query_embedding, tier)
            if matches:
                return list(matches)
        return []
