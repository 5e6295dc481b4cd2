# litreview/services/documents.py
"""
Helpers over the draft document tree (``{"type": "doc", "content": [...]}``).

Content coming out of the database is parsed with ``parse_document`` before
anything walks it; a malformed tree raises ValidationError instead of
silently producing an empty excerpt.
"""
from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from litreview.errors import ValidationError
from litreview.schemas import DocumentNode

CITATION_KEY_RE = re.compile(r"\[([A-Za-z0-9][A-Za-z0-9_:.\-]*)\]")

DEFAULT_HEADINGS = {
    "literature_review": "Literature Review",
    "introduction": "Introduction",
    "methods": "Methods",
    "results": "Results",
    "discussion": "Discussion",
    "conclusion": "Conclusion",
}


def default_heading(section_type: str) -> str:
    return DEFAULT_HEADINGS.get(section_type, "Draft Section")


def parse_document(raw: Any) -> DocumentNode:
    if isinstance(raw, DocumentNode):
        return raw
    try:
        return DocumentNode.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError("Draft content is not a valid document tree", details=e.errors(include_url=False)) from e


def dump_document(doc: DocumentNode) -> dict:
    return doc.model_dump(mode="json", exclude_none=True)


def paragraph_node(text: str) -> DocumentNode:
    return DocumentNode(type="paragraph", content=[DocumentNode(type="text", text=text.strip())])


def heading_node(text: str, level: int = 2) -> DocumentNode:
    return DocumentNode(type="heading", attrs={"level": level}, content=[DocumentNode(type="text", text=text)])


def build_document(heading: str, paragraphs: Sequence[str], outline: Optional[Sequence[str]] = None) -> DocumentNode:
    nodes = [heading_node(heading)]
    nodes.extend(paragraph_node(p) for p in paragraphs)
    items = [o.strip() for o in (outline or []) if isinstance(o, str) and o.strip()]
    if items:
        nodes.append(DocumentNode(
            type="bulletList",
            content=[DocumentNode(type="listItem", content=[paragraph_node(i)]) for i in items],
        ))
    return DocumentNode(type="doc", content=nodes)


def node_text(node: DocumentNode) -> str:
    """Concatenated text of a node's direct text children."""
    if node.text is not None:
        return node.text
    return " ".join(child.text or "" for child in (node.content or [])).strip()


def _top_level(doc: DocumentNode) -> Iterable[DocumentNode]:
    return doc.content or []


def extract_primary_paragraph(doc: DocumentNode) -> str:
    for node in _top_level(doc):
        if node.type == "paragraph":
            text = node_text(node)
            if text:
                return text
    return ""


def extract_heading(doc: DocumentNode) -> str:
    for node in _top_level(doc):
        if node.type == "heading":
            text = node_text(node)
            if text:
                return text
    return ""


def append_paragraphs(doc: DocumentNode, paragraphs: Sequence[str]) -> DocumentNode:
    extra = [paragraph_node(p) for p in paragraphs if p.strip()]
    return doc.model_copy(update={"content": [*(doc.content or []), *extra]})


def extract_citation_keys(doc: DocumentNode) -> set[str]:
    keys: set[str] = set()
    stack = [doc]
    while stack:
        node = stack.pop()
        if node.text:
            keys.update(CITATION_KEY_RE.findall(node.text))
        stack.extend(node.content or [])
    return keys


def cited_keys_in(texts: Iterable[str]) -> set[str]:
    keys: set[str] = set()
    for t in texts:
        keys.update(CITATION_KEY_RE.findall(t or ""))
    return keys


def truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 3] + "..."
