from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from docqa.services.rag.types import CompletionRequest

SYSTEM_PROMPT = (
    "Please use the context to improve your ability to answer the question. "
    "If the context is empty or unrelated, say so briefly."
)


class LLMClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


class LLMClient(Protocol):
    def generate_answer(self, request: CompletionRequest) -> ChatResult: ...


def build_messages(request: CompletionRequest) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                "Using the following information please answer the question.\n"
                f"Context:\n{request.context}\n\n"
                f"Question: {request.question}"
            ),
        },
    ]


class OllamaChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._timeout_seconds = timeout_seconds

    def generate_answer(self, request: CompletionRequest) -> ChatResult:
        messages = build_messages(request)
        for model, used_fallback in self._model_candidates():
            try:
                content = self._chat_completion(model=model, messages=messages)
            except (httpx.HTTPError, ValueError) as exc:
                if used_fallback or not self._has_fallback():
                    raise LLMClientError(str(exc)) from exc
                continue

            return ChatResult(answer=content, model=model, used_fallback=used_fallback)

        raise LLMClientError("No model candidates configured")

    def _has_fallback(self) -> bool:
        return bool(self._fallback_model) and self._fallback_model != self._default_model

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._has_fallback():
            candidates.append((self._fallback_model, True))
        return candidates

    def _chat_completion(self, *, model: str, messages: list[dict[str, str]]) -> str:
        response = httpx.post(
            f"{self._base_url}/chat/completions",
            json={"model": model, "messages": messages, "temperature": 0},
            timeout=self._timeout_seconds,
        )
        response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()
