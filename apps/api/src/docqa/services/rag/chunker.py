from __future__ import annotations

import re

DEFAULT_MAX_CHUNK_SIZE = 300

_LINE_ENDINGS = re.compile(r"\r\n?")
_PARAGRAPH_BREAK = re.compile(r"\n+")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


def split_sentences(text: str) -> list[str]:
    paragraphs = _PARAGRAPH_BREAK.split(_LINE_ENDINGS.sub("\n", text))

    sentences: list[str] = []
    for paragraph in paragraphs:
        for fragment in _SENTENCE_BREAK.split(paragraph):
            sentence = fragment.strip()
            if sentence:
                sentences.append(sentence)
    return sentences


def chunk_text(text: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> list[str]:
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be > 0")

    chunks: list[str] = []
    current = ""

    for sentence in split_sentences(text):
        if not current:
            current = sentence
            continue

        # a sentence longer than the budget is kept whole in its own chunk
        if len(current) + 1 + len(sentence) <= max_chunk_size:
            current = f"{current} {sentence}"
        else:
            chunks.append(current)
            current = sentence

    if current.strip():
        chunks.append(current)

    return chunks
