import io

import pytest

from app.core.config import Settings
from app.core.errors import RequestValidationError, UnsupportedFileError
from app.schemas.study import ResultMode
from app.services.prompt_service import (
    FORMATTING_RULES,
    MODE_TEMPLATES,
    build_generation_request,
    file_to_part,
    validate_request,
)
from app.services.upload_service import DOCX_TYPE, encode_upload
from conftest import make_file


def test_every_mode_has_a_template():
    assert set(MODE_TEMPLATES) == set(ResultMode)


def test_validate_solve_requires_both_sets():
    notes = make_file("notes.pdf")
    with pytest.raises(RequestValidationError, match="past questions"):
        validate_request(ResultMode.SOLVE, [notes], [])
    with pytest.raises(RequestValidationError):
        validate_request(ResultMode.SOLVE, [], [make_file("exam.pdf")])
    validate_request(ResultMode.SOLVE, [notes], [make_file("exam.pdf")])


def test_validate_review_and_summary():
    with pytest.raises(RequestValidationError, match="FlashDoc"):
        validate_request(ResultMode.REVIEW, [], [])
    validate_request(ResultMode.REVIEW, [make_file("notes.pdf")], [make_file("exam.pdf")])

    with pytest.raises(RequestValidationError, match="summarize"):
        validate_request(ResultMode.SUMMARY, [], [])
    with pytest.raises(RequestValidationError):
        validate_request(ResultMode.SUMMARY, [make_file("a.pdf")], [make_file("b.pdf")])
    validate_request(ResultMode.SUMMARY, [make_file("a.pdf")], [])


def test_solve_request_orders_sections():
    req = build_generation_request(
        ResultMode.SOLVE,
        [make_file("notes.pdf"), make_file("slides.pdf")],
        [make_file("exam2023.pdf")],
        Settings(api_key="k"),
    )
    kinds = [p["type"] for p in req.parts]
    assert kinds == ["text", "file", "file", "text", "file", "text"]
    assert req.parts[0]["text"] == "--- COURSE MATERIAL ---"
    assert req.parts[3]["text"] == "--- PAST QUESTIONS ---"
    assert req.parts[4]["file"]["filename"] == "exam2023.pdf"
    assert req.parts[-1]["text"].startswith("Solve all questions")
    assert req.temperature == pytest.approx(0.1)


def test_review_request_has_single_section():
    req = build_generation_request(
        ResultMode.REVIEW, [make_file("notes.pdf")], [], Settings(api_key="k")
    )
    assert [p.get("text") for p in req.parts if p["type"] == "text"] == [
        "--- SOURCE MATERIAL ---",
        MODE_TEMPLATES[ResultMode.REVIEW].directive,
    ]


def test_system_instruction_combines_rules_and_role():
    req = build_generation_request(
        ResultMode.SUMMARY, [make_file("ch1.pdf")], [], Settings(api_key="k")
    )
    assert req.system_instruction.startswith(FORMATTING_RULES)
    assert "Expert Academic Simplifier" in req.system_instruction
    messages = req.messages()
    assert messages[0] == {"role": "system", "content": req.system_instruction}
    assert messages[1]["role"] == "user" and messages[1]["content"] is req.parts


def test_model_may_vary_by_mode():
    cfg = Settings(api_key="k", llm_model="base-model", solve_model="solver-model")
    solve = build_generation_request(ResultMode.SOLVE, [make_file("a.pdf")], [make_file("b.pdf")], cfg)
    review = build_generation_request(ResultMode.REVIEW, [make_file("a.pdf")], [], cfg)
    assert solve.model == "solver-model"
    assert review.model == "base-model"


def test_file_to_part_by_media_type():
    image = make_file("diagram.png", "image/png", b"\x89PNG")
    assert file_to_part(image) == {"type": "image_url", "image_url": {"url": image.data}}

    text = make_file("q.txt", "text/plain", "Question 1: café".encode("utf-8"))
    part = file_to_part(text)
    assert part["type"] == "text"
    assert part["text"] == "[q.txt]\nQuestion 1: café"

    gbk = make_file("cn.txt", "text/plain", "第一题".encode("gbk"))
    assert "第一题" in file_to_part(gbk)["text"]

    pdf = make_file("notes.pdf")
    assert file_to_part(pdf) == {"type": "file", "file": {"filename": "notes.pdf", "file_data": pdf.data}}


def test_docx_is_sent_as_text():
    docx = pytest.importorskip("docx")
    document = docx.Document()
    document.add_paragraph("Photosynthesis converts light energy.")
    buf = io.BytesIO()
    document.save(buf)
    f = encode_upload("bio.docx", DOCX_TYPE, buf.getvalue())
    part = file_to_part(f)
    assert part["type"] == "text"
    assert "Photosynthesis converts light energy." in part["text"]


def test_corrupt_document_raises_unsupported_file():
    broken = make_file("notes.docx", DOCX_TYPE, b"not a zip")
    with pytest.raises(UnsupportedFileError, match="notes.docx"):
        file_to_part(broken)
