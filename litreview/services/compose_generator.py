# litreview/services/compose_generator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import httpx

from litreview.llm_client import OllamaError, RateLimiter, ask_llm_json, llm_configured
from litreview.schemas import ComposeSectionInput, DocumentNode
from litreview.services.documents import build_document, cited_keys_in, default_heading, truncate
from litreview.services.readiness import as_locator_list
from litreview.settings.config import settings

logger = logging.getLogger(__name__)
limiter = RateLimiter(settings.LLM_MIN_INTERVAL_MS)

SYSTEM_PROMPT = (
    "You are a medical literature review assistant. Write concise academic prose using the provided sources. "
    "Respond strictly in JSON matching the schema {\"heading\": string, \"paragraphs\": string[]}. "
    "Each paragraph must cite at least one source using the exact bracket notation [citationKey]."
)


@dataclass(slots=True)
class GeneratorLedgerEntry:
    id: str
    citation_key: str
    metadata: dict = field(default_factory=dict)
    locators: Any = None
    verified_by_human: bool = False

    @classmethod
    def from_row(cls, row) -> "GeneratorLedgerEntry":
        return cls(
            id=row.id,
            citation_key=row.citation_key,
            metadata=row.source_metadata if isinstance(row.source_metadata, dict) else {},
            locators=row.locators,
            verified_by_human=bool(row.verified_by_human),
        )


@dataclass(slots=True)
class ComposeGenerationRequest:
    project_id: str
    section: ComposeSectionInput
    ledger_entries: List[GeneratorLedgerEntry]
    research_question: Optional[str] = None
    narrative_voice: Optional[str] = None


# ---------- voice ----------

def describe_narrative_voice(voice: Optional[str]) -> str:
    if voice == "confident":
        return "Confident, assertive tone"
    if voice == "cautious":
        return "Cautious, nuanced tone"
    return "Neutral, objective tone"


def narrative_voice_prefix(voice: Optional[str]) -> str:
    if voice == "confident":
        return "The evidence strongly suggests that"
    if voice == "cautious":
        return "The available evidence indicates that"
    return ""


# ---------- prompt ----------

def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_heading(section: ComposeSectionInput) -> str:
    return _text(section.title) or default_heading(section.section_type)


def summarize_locator(locators: Any) -> Optional[str]:
    items = as_locator_list(locators)
    if not items:
        return None
    primary = items[0]
    pointer = []
    for key, label in (("page", "Page"), ("paragraph", "Paragraph"), ("sentence", "Sentence")):
        if isinstance(primary.get(key), int) and not isinstance(primary.get(key), bool):
            pointer.append(f"{label} {primary[key]}")
    note = _text(primary.get("note"))
    quote = _text(primary.get("quote"))
    parts = [", ".join(pointer) or None, note, f'"{truncate(quote, 240)}"' if quote else None]
    details = " - ".join(p for p in parts if p)
    return details or None


def _publication(metadata: dict) -> Optional[str]:
    bits = [b for b in (_text(metadata.get("journal")), _text(metadata.get("publishedAt"))) if b]
    return ", ".join(bits) if bits else None


def format_ledger_entry(entry: GeneratorLedgerEntry, index: int) -> str:
    meta = entry.metadata or {}
    title = _text(meta.get("title")) or f"Source {index + 1}"
    lines = [f"{index + 1}. [{entry.citation_key}] {title}"]
    raw_authors = meta.get("authors")
    authors = [a for a in raw_authors if isinstance(a, str)] if isinstance(raw_authors, list) else []
    if authors:
        lines.append(f"Authors: {', '.join(authors)}")
    publication = _publication(meta)
    if publication:
        lines.append(f"Publication: {publication}")
    locator = summarize_locator(entry.locators)
    if locator:
        lines.append(f"Locator: {locator}")
    abstract = _text(meta.get("abstract"))
    if abstract:
        lines.append(f"Abstract: {truncate(abstract, 480)}")
    return "\n".join(lines)


def build_prompt(req: ComposeGenerationRequest) -> str:
    section = req.section
    parts = [
        f"Project ID: {req.project_id}",
        f"Section type: {section.section_type}",
        f"Section heading: {resolve_heading(section)}",
        f"Narrative voice: {describe_narrative_voice(req.narrative_voice)}",
    ]
    if _text(req.research_question):
        parts.append(f"Research question: {req.research_question.strip()}")
    if _text(section.instructions):
        parts.append(f"Instructions: {section.instructions.strip()}")
    outline = [o.strip() for o in (section.outline or []) if o.strip()]
    if outline:
        parts.append("Outline items:")
        parts.extend(f"{i + 1}. {item}" for i, item in enumerate(outline))
    if section.target_word_count:
        parts.append(f"Approximate target word count: {section.target_word_count}")
    parts.append(
        "Always cite sources using [citationKey]. Blend sources when appropriate and maintain the requested narrative tone."
    )
    parts.append("Sources:")
    parts.extend(format_ledger_entry(e, i) for i, e in enumerate(req.ledger_entries))
    return "\n".join(parts)


# ---------- fallback ----------

def build_fallback_document(req: ComposeGenerationRequest) -> DocumentNode:
    section = req.section
    prefix = narrative_voice_prefix(req.narrative_voice)
    research = _text(req.research_question)
    research_suffix = f" This evidence relates to the research question: {research}." if research else ""

    paragraphs: list[str] = []
    if _text(section.instructions):
        paragraphs.append(f"Instruction: {section.instructions.strip()}")

    for i, entry in enumerate(req.ledger_entries):
        meta = entry.metadata or {}
        title = _text(meta.get("title")) or f"Source {i + 1}"
        publication = _publication(meta)
        hint = f" ({publication})" if publication else ""
        lead = f"{prefix} {title}{hint}" if prefix else f"{title}{hint}"
        paragraphs.append(f"{lead} contributes relevant findings to this section.{research_suffix} [{entry.citation_key}]")

    if not paragraphs:
        paragraphs.append("No vetted sources were provided for this section. Add verified ledger entries before composing prose.")

    return build_document(resolve_heading(section), paragraphs, section.outline)


# ---------- model call ----------

def _model_paragraphs(data: Optional[dict]) -> Optional[tuple[Optional[str], list[str]]]:
    if not data:
        return None
    paragraphs = data.get("paragraphs")
    heading = data.get("heading")
    if not isinstance(paragraphs, list) or any(not isinstance(p, str) for p in paragraphs):
        return None
    if heading is not None and not isinstance(heading, str):
        return None
    cleaned = [p.strip() for p in paragraphs if p.strip()]
    if not cleaned:
        return None
    return (heading.strip() if heading else None), cleaned


async def generate_compose_document(
    req: ComposeGenerationRequest,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> DocumentNode:
    """
    Draft one section from validated ledger entries. Never raises for model
    problems: an unreachable/misbehaving model yields the deterministic
    fallback document instead.
    """
    fallback = build_fallback_document(req)
    if not llm_configured():
        return fallback

    await limiter.wait()
    try:
        data = await ask_llm_json(SYSTEM_PROMPT, build_prompt(req), model=settings.compose_model, client=client)
    except OllamaError as e:
        logger.warning("Compose generation fell back for project %s: %s", req.project_id, e)
        return fallback

    parsed = _model_paragraphs(data)
    if parsed is None:
        logger.info("Compose model response unusable; using fallback (project=%s)", req.project_id)
        return fallback
    heading, paragraphs = parsed

    allowed = {e.citation_key for e in req.ledger_entries}
    unknown = cited_keys_in(paragraphs) - allowed
    if unknown:
        logger.warning("Compose model cited unknown keys %s; using fallback", sorted(unknown))
        return fallback

    return build_document(heading or resolve_heading(req.section), paragraphs, req.section.outline)


def entries_for_generation(rows: Sequence[Any]) -> list[GeneratorLedgerEntry]:
    return [GeneratorLedgerEntry.from_row(r) for r in rows]
