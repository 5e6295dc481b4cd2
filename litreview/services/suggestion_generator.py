# litreview/services/suggestion_generator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from litreview.llm_client import OllamaError, RateLimiter, ask_llm_json, llm_configured
from litreview.services.documents import cited_keys_in, truncate
from litreview.settings.config import settings

logger = logging.getLogger(__name__)
limiter = RateLimiter(settings.LLM_MIN_INTERVAL_MS)

SYSTEM_PROMPT = (
    "You revise sections of a medical literature review. Respond strictly in JSON with keys "
    "summary (string) and paragraphs (string[]). Each paragraph must cite at least one source "
    "using [citationKey] and align with the requested tone."
)

FALLBACK_SUMMARY = "Provide clearer linkage between cited evidence and the section narrative."


@dataclass(slots=True)
class SuggestionRequest:
    project_id: str
    section_id: str
    suggestion_type: str
    current_text: str
    heading: str
    verified_citations: List[str] = field(default_factory=list)
    narrative_voice: Optional[str] = None


@dataclass(slots=True)
class SuggestionResult:
    summary: str
    paragraphs: List[str]


def _describe_voice(voice: Optional[str]) -> str:
    if voice == "confident":
        return "confident and assertive"
    if voice == "cautious":
        return "cautious and nuanced"
    return "neutral and objective"


def _fallback_prefix(voice: Optional[str]) -> str:
    if voice == "confident":
        return "The evidence strongly suggests that"
    if voice == "cautious":
        return "The available evidence indicates that"
    return "This section should clarify how"


def build_prompt(req: SuggestionRequest) -> str:
    parts = [
        f"Project ID: {req.project_id}",
        f"Draft section ID: {req.section_id}",
        f"Section heading: {req.heading}",
        f"Suggestion type: {req.suggestion_type}",
        f"Narrative voice: {_describe_voice(req.narrative_voice)}",
        f"Current section excerpt: {truncate(req.current_text or '', 800)}",
    ]
    if req.verified_citations:
        parts.append(f"Verified citations available: {', '.join(req.verified_citations)}")
    parts.append(
        'Provide JSON: { "summary": string, "paragraphs": string[] }. Keep paragraphs concise, '
        "cite only the verified citations like [Smith2020], and highlight concrete improvements."
    )
    return "\n".join(parts)


def build_fallback(req: SuggestionRequest) -> SuggestionResult:
    sources = ", ".join(req.verified_citations) if req.verified_citations else "the verified sources"
    paragraph = (
        f"{_fallback_prefix(req.narrative_voice)} the review should integrate stronger context "
        f"from {sources} to explain nuanced findings."
    )
    return SuggestionResult(summary=FALLBACK_SUMMARY, paragraphs=[paragraph])


async def generate_suggestion(
    req: SuggestionRequest,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> SuggestionResult:
    """Same contract as the compose generator: model trouble degrades to the fallback."""
    fallback = build_fallback(req)
    if not llm_configured():
        return fallback

    await limiter.wait()
    try:
        data = await ask_llm_json(SYSTEM_PROMPT, build_prompt(req), model=settings.suggestion_model, client=client)
    except OllamaError as e:
        logger.warning("Suggestion generation fell back for section %s: %s", req.section_id, e)
        return fallback

    if not data or not isinstance(data.get("summary"), str) or not isinstance(data.get("paragraphs"), list):
        return fallback
    paragraphs = [p.strip() for p in data["paragraphs"] if isinstance(p, str) and p.strip()]
    if not paragraphs:
        return fallback

    unknown = cited_keys_in(paragraphs) - set(req.verified_citations)
    if unknown:
        logger.warning("Suggestion cited unverified keys %s; using fallback", sorted(unknown))
        return fallback

    return SuggestionResult(summary=data["summary"].strip() or FALLBACK_SUMMARY, paragraphs=paragraphs)
