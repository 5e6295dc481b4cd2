import pytest

from litreview.errors import ValidationError
from litreview.services.documents import (
    append_paragraphs,
    build_document,
    default_heading,
    dump_document,
    extract_citation_keys,
    extract_heading,
    extract_primary_paragraph,
    parse_document,
    truncate,
)


def test_build_document_shape():
    doc = dump_document(build_document("Methods", ["First [A1].", "Second."], ["Scope", " ", "Limits"]))
    assert doc["type"] == "doc"
    heading, p1, p2, bullets = doc["content"]
    assert heading == {"type": "heading", "attrs": {"level": 2}, "content": [{"type": "text", "text": "Methods"}]}
    assert p1 == {"type": "paragraph", "content": [{"type": "text", "text": "First [A1]."}]}
    assert p2["content"][0]["text"] == "Second."
    assert bullets["type"] == "bulletList"
    assert [item["content"][0]["content"][0]["text"] for item in bullets["content"]] == ["Scope", "Limits"]


def test_parse_rejects_malformed_tree():
    with pytest.raises(ValidationError):
        parse_document({"type": "doc", "content": "not a list"})
    with pytest.raises(ValidationError):
        parse_document({"type": "doc", "unexpected": 1})
    with pytest.raises(ValidationError):
        parse_document(None)


def test_extractors():
    doc = parse_document({
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": []},
            {"type": "heading", "attrs": {"level": 2}, "content": [{"type": "text", "text": "Discussion"}]},
            {"type": "paragraph", "content": [{"type": "text", "text": "Main point [Smith2020]."}]},
            {"type": "paragraph", "content": [{"type": "text", "text": "Later [Lee-2021] and [Ng:3]."}]},
        ],
    })
    assert extract_heading(doc) == "Discussion"
    assert extract_primary_paragraph(doc) == "Main point [Smith2020]."
    assert extract_citation_keys(doc) == {"Smith2020", "Lee-2021", "Ng:3"}


def test_empty_document_extractors():
    doc = parse_document({"type": "doc"})
    assert extract_primary_paragraph(doc) == ""
    assert extract_heading(doc) == ""


def test_append_paragraphs_keeps_original():
    doc = build_document("Results", ["One."])
    extended = append_paragraphs(doc, ["Two.", "  "])
    assert len(doc.content) == 2
    assert len(extended.content) == 3
    assert extended.content[-1].content[0].text == "Two."


def test_default_heading():
    assert default_heading("literature_review") == "Literature Review"
    assert default_heading("custom") == "Draft Section"


def test_truncate():
    assert truncate("short", 10) == "short"
    assert truncate("x" * 20, 10) == "xxxxxxx..."
