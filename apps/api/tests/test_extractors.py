import io

import pytest
from docx import Document

from docqa.services.rag import extractors
from docqa.services.rag.extractors import (
    DOCX_MIME_TYPE,
    PDF_MIME_TYPE,
    can_handle,
    extract,
    extract_pdf_text,
    reading_order,
)
from docqa.services.rag.types import PositionedText


def _build_pdf(content_stream: bytes) -> bytes:
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        (
            b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
            b"/Resources << /Font << /F1 5 0 R >> >> >>"
        ),
        b"<< /Length %d >>\nstream\n" % len(content_stream) + content_stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    pdf = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(pdf))
        pdf += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_offset = len(pdf)
    pdf += b"xref\n0 %d\n" % (len(objects) + 1)
    pdf += b"0000000000 65535 f \n"
    for offset in offsets:
        pdf += b"%010d 00000 n \n" % offset
    pdf += b"trailer\n<< /Size %d /Root 1 0 R >>\n" % (len(objects) + 1)
    pdf += b"startxref\n%d\n%%%%EOF\n" % xref_offset
    return bytes(pdf)


def _build_docx(paragraphs: list[str]) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


class _FakeRect:
    height = 792.0


class _FakePage:
    rect = _FakeRect()

    def __init__(self, words: list[tuple[float, float, str]]) -> None:
        # (x0, distance of the word's bottom edge from the page top, text)
        self._words = words

    def get_text(self, option: str) -> list[tuple]:
        assert option == "words"
        return [
            (x0, bottom - 10.0, x0 + 5.0 * len(text), bottom, text, 0, line_no, 0)
            for line_no, (x0, bottom, text) in enumerate(self._words)
        ]


class _BrokenPage:
    rect = _FakeRect()

    def get_text(self, option: str) -> list[tuple]:
        raise RuntimeError("cannot parse content stream")


class _FakeDocument:
    def __init__(self, pages: list) -> None:
        self._pages = pages
        self.closed = False

    @property
    def page_count(self) -> int:
        return len(self._pages)

    def load_page(self, page_index: int):
        return self._pages[page_index]

    def close(self) -> None:
        self.closed = True


def test_reading_order_joins_same_line_left_to_right() -> None:
    items = [
        PositionedText(x=50, y=100, text="World"),
        PositionedText(x=0, y=100, text="Hello"),
        PositionedText(x=0, y=50, text="Second"),
    ]

    assert reading_order(items) == "Hello World\nSecond"


def test_reading_order_compares_against_line_anchor() -> None:
    items = [
        PositionedText(x=30, y=198.0, text="b"),
        PositionedText(x=10, y=200.0, text="a"),
        PositionedText(x=60, y=202.0, text="c"),
        PositionedText(x=0, y=196.0, text="next"),
    ]

    # 202 opens the first line, so 198 is out of tolerance and opens its own
    assert reading_order(items) == "a c\nnext b"


def test_reading_order_empty_page() -> None:
    assert reading_order([]) == ""


def test_extract_pdf_text_orders_words_by_position(monkeypatch: pytest.MonkeyPatch) -> None:
    pages = [
        _FakePage(
            [
                (72.0, 752.0, "Footer"),
                (300.0, 92.0, "right"),
                (72.0, 91.0, "Title"),
                (72.0, 120.0, "\n"),
            ]
        ),
        _FakePage([(10.0, 292.0, "Page"), (40.0, 292.0, "two")]),
    ]
    document = _FakeDocument(pages)
    monkeypatch.setattr(extractors, "_open_pdf", lambda binary: document)

    assert extract_pdf_text(b"%PDF-fake") == "Title right\nFooter\n\nPage two"
    assert document.closed


def test_extract_pdf_text_skips_failing_pages(monkeypatch: pytest.MonkeyPatch) -> None:
    document = _FakeDocument([_BrokenPage(), _FakePage([(0.0, 700.0, "Survivor\x07 text")])])
    monkeypatch.setattr(extractors, "_open_pdf", lambda binary: document)

    assert extract_pdf_text(b"%PDF-fake") == "Survivor text"
    assert document.closed


def test_extract_pdf_text_unreadable_document_returns_empty() -> None:
    assert extract_pdf_text(b"this is not a pdf") == ""


def test_extract_pdf_text_reads_real_pdf() -> None:
    pdf = _build_pdf(b"BT /F1 12 Tf 72 700 Td (Hello reading order) Tj ET")

    assert extract(pdf, PDF_MIME_TYPE) == "Hello reading order"


def test_extract_pdf_text_reorders_runs_sharing_one_text_block() -> None:
    pdf = _build_pdf(
        b"BT /F1 12 Tf 300 700 Td (World) Tj -228 0 Td (Hello) Tj 0 -100 Td (Second) Tj ET"
    )

    assert extract(pdf, PDF_MIME_TYPE) == "Hello World\nSecond"


def test_extract_pdf_text_reorders_runs_placed_with_text_matrix() -> None:
    pdf = _build_pdf(
        b"BT /F1 12 Tf "
        b"1 0 0 1 200 650 Tm (tail) Tj "
        b"1 0 0 1 72 650 Tm (head) Tj "
        b"1 0 0 1 72 720 Tm (Top) Tj "
        b"ET"
    )

    assert extract(pdf, PDF_MIME_TYPE) == "Top\nhead tail"


def test_extract_pdf_text_reads_two_columns_row_by_row() -> None:
    pdf = _build_pdf(
        b"BT /F1 12 Tf "
        b"320 700 Td (right one) Tj "
        b"0 -20 Td (right two) Tj "
        b"-248 20 Td (left one) Tj "
        b"0 -20 Td (left two) Tj "
        b"ET"
    )

    assert extract(pdf, PDF_MIME_TYPE) == "left one right one\nleft two right two"


def test_extract_docx_text_joins_paragraphs_and_normalizes() -> None:
    docx_bytes = _build_docx(["  First paragraph.", "Second paragraph.", ""])

    text = extract(docx_bytes, DOCX_MIME_TYPE)

    assert text == "First paragraph.\nSecond paragraph."


def test_extract_unsupported_mime_type_returns_empty() -> None:
    assert extract(b"plain text", "text/plain") == ""
    assert not can_handle("text/plain")
    assert can_handle(PDF_MIME_TYPE)
    assert can_handle(DOCX_MIME_TYPE)
