from __future__ import annotations

from collections.abc import Sequence

from docqa.services.rag.types import CompletionRequest, QueryMatch


def assemble(matches: Sequence[QueryMatch], question: str) -> CompletionRequest:
    context = "\n\n".join(match.section_content for match in matches)
    return CompletionRequest(question=question, context=context)
