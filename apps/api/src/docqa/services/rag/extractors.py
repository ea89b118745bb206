"""Binary document -> normalized text.

Exactly three variants exist: PDF, DOCX and unsupported. Unsupported MIME
types extract to an empty string rather than raising.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
import io
from typing import Any

from docx import Document as load_docx
import fitz  # PyMuPDF

from docqa.services.rag.normalizer import normalize
from docqa.services.rag.types import PositionedText

PDF_MIME_TYPE = "application/pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

LINE_TOLERANCE = 2.5


def reading_order(
    items: Iterable[PositionedText],
    *,
    line_tolerance: float = LINE_TOLERANCE,
) -> str:
    """Rebuild top-to-bottom, left-to-right text from positioned fragments.

    PDF coordinates grow upwards, so the top of the page is the largest ``y``.
    Lines are discovered in a single pass over the sorted items; an item joins
    the first line whose anchor ``y`` (taken from the item that opened it) is
    within ``line_tolerance``.
    """
    ordered = sorted(items, key=lambda item: (-item.y, item.x))

    lines: list[tuple[float, list[PositionedText]]] = []
    for item in ordered:
        for anchor_y, members in lines:
            if abs(anchor_y - item.y) <= line_tolerance:
                members.append(item)
                break
        else:
            lines.append((item.y, [item]))

    return "\n".join(
        " ".join(member.text for member in sorted(members, key=lambda member: member.x))
        for _, members in lines
    )


def _page_items(page: Any) -> list[PositionedText]:
    """One item per word, placed at its lower-left corner in PDF space."""
    # PyMuPDF measures y downwards from the top edge of the page
    page_height = page.rect.height

    items: list[PositionedText] = []
    for x0, _y0, _x1, y1, word, *_ in page.get_text("words"):
        stripped = word.strip()
        if not stripped:
            continue
        items.append(PositionedText(x=float(x0), y=float(page_height - y1), text=stripped))
    return items


def _open_pdf(binary: bytes) -> Any:
    return fitz.open(stream=binary, filetype="pdf")


def extract_pdf_text(binary: bytes) -> str:
    try:
        document = _open_pdf(binary)
    except Exception as exc:
        print(f"[extract] pdf could not be opened error={exc!r}", flush=True)
        return ""

    page_texts: list[str] = []
    try:
        for page_index in range(document.page_count):
            try:
                page_texts.append(reading_order(_page_items(document.load_page(page_index))))
            except Exception as exc:
                print(f"[extract] pdf page failed page={page_index + 1} error={exc!r}", flush=True)
                page_texts.append("")
    finally:
        document.close()

    return normalize("\n\n".join(page_texts))


def extract_docx_text(binary: bytes) -> str:
    document = load_docx(io.BytesIO(binary))
    raw_text = "\n".join(paragraph.text for paragraph in document.paragraphs)
    return normalize(raw_text)


def _extract_nothing(binary: bytes) -> str:
    del binary
    return ""


_EXTRACTORS: dict[str, Callable[[bytes], str]] = {
    PDF_MIME_TYPE: extract_pdf_text,
    DOCX_MIME_TYPE: extract_docx_text,
}


def can_handle(mime_type: str) -> bool:
    return mime_type in _EXTRACTORS


def extractor_for(mime_type: str) -> Callable[[bytes], str]:
    return _EXTRACTORS.get(mime_type, _extract_nothing)


def extract(binary: bytes, mime_type: str) -> str:
    return extractor_for(mime_type)(binary)
