from datetime import datetime

import pytest
from reportlab.lib.pagesizes import A4

from app.core.config import settings
from app.schemas.study import ResultMode
from app.services.export_service import (
    ACCENT,
    DEFAULT_AUTHOR,
    FOOTER_BAND,
    MARGIN,
    TOP_MARGIN,
    export_filename,
    export_pdf,
    export_text,
    layout_pdf,
)

PAGE_W, PAGE_H = A4


def _long_text(lines=120):
    return "\n".join(f"Line {i} of the **solution** text." for i in range(lines))


def test_long_result_spans_pages_with_footer_on_each():
    pages = layout_pdf(_long_text(), mode=ResultMode.SOLVE, source_name="exam2023.pdf", author="Ada")
    assert len(pages) > 1
    for page in pages:
        footer = [r.text for r in page.footer]
        assert footer[0] == settings.export_attribution
        assert "Author: Ada" in footer
        assert f"Page {page.number}" in footer
        # 正文不进入页脚区
        assert all(r.y >= FOOTER_BAND - 1e-6 for r in page.runs)
    assert [p.number for p in pages] == list(range(1, len(pages) + 1))


def test_title_block_only_on_first_page():
    when = datetime(2024, 5, 1, 9, 30, 0)
    pages = layout_pdf(
        "TOPIC: Cells\n1.1 Nucleus", mode=ResultMode.SUMMARY, source_name="ch1.pdf", generated_at=when
    )
    texts = [r.text for r in pages[0].runs]
    assert texts[0] == f"{settings.product_name}: Knowledge Synthesis"
    assert texts[1] == "Detailed Summary"
    assert texts[2] == f"Author: {DEFAULT_AUTHOR} | Source: ch1.pdf"
    assert texts[3] == "Generated: 2024-05-01 09:30:00"


def test_continuation_page_starts_at_top_margin():
    pages = layout_pdf(_long_text(), mode=ResultMode.SOLVE, source_name="a.pdf")
    first = pages[1].runs[0]
    assert first.y == pytest.approx(PAGE_H - TOP_MARGIN)
    assert first.x == pytest.approx(MARGIN)
    assert not any(r.text.startswith(settings.product_name) for r in pages[1].runs)


def test_overlong_word_is_not_split():
    word = "x" * 400
    pages = layout_pdf(f"short {word} tail", mode=ResultMode.REVIEW, source_name="a.pdf")
    runs = [r for r in pages[0].runs if r.text == word]
    assert len(runs) == 1
    assert runs[0].x == pytest.approx(MARGIN)
    assert runs[0].width > PAGE_W - 2 * MARGIN


def test_bold_in_paragraph_uses_accent_and_highlight_flag():
    pages = layout_pdf("The **nucleus** holds ==DNA==", mode=ResultMode.REVIEW, source_name="a.pdf")
    runs = {r.text: r for r in pages[0].runs}
    assert runs["nucleus"].color == ACCENT
    assert runs["nucleus"].font == "Helvetica-Bold"
    assert runs["DNA"].highlight is True


def test_export_pdf_bytes():
    data = export_pdf(_long_text(60), mode=ResultMode.SOLVE, source_name="exam2023.pdf", author="")
    assert data.startswith(b"%PDF")


def test_export_text_is_verbatim():
    text = "TOPIC: A\n1.1 **b** ==c== # d\n"
    assert export_text(text) == text.encode("utf-8")


@pytest.mark.parametrize(
    "source,mode,ext,expected",
    [
        ("exam2023.pdf", ResultMode.SOLVE, "pdf", "exam2023_Solutions.pdf"),
        ("notes.v2.pdf", ResultMode.REVIEW, "txt", "notes_FlashDoc.txt"),
        ("my chapter.pdf", ResultMode.SUMMARY, ".pdf", "my_chapter_Summary.pdf"),
        ("", ResultMode.SOLVE, "pdf", "AIEngine_Output_Solutions.pdf"),
        ("", ResultMode.REVIEW, "pdf", "FlashDoc_FlashDoc.pdf"),
    ],
)
def test_export_filename(source, mode, ext, expected):
    assert export_filename(source, mode, ext) == expected
