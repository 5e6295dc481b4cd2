# litreview/services/citations.py
"""Citation gate run by the compose processor before any generation."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Optional, Sequence

from litreview.errors import CitationValidationError
from litreview.services.readiness import ReadinessPolicy, evaluate_locator_readiness, meets_policy
from litreview.settings.config import settings

CitationErrorCode = Literal["MISSING_LEDGER_ENTRY", "UNVERIFIED_LOCATOR"]


@dataclass(frozen=True, slots=True)
class CitationReference:
    id: str
    ledger_entry_id: str


@dataclass(frozen=True, slots=True)
class LedgerCitationRecord:
    id: str
    verified_by_human: bool
    locators: Any


@dataclass(frozen=True, slots=True)
class CitationValidationIssue:
    code: CitationErrorCode
    citation_id: str
    ledger_entry_id: str

    def to_dict(self) -> dict:
        return {"code": self.code, "citation_id": self.citation_id, "ledger_entry_id": self.ledger_entry_id}


@dataclass(slots=True)
class CitationValidationResult:
    valid: bool
    errors: list[CitationValidationIssue] = field(default_factory=list)


def _default_policy() -> ReadinessPolicy:
    return ReadinessPolicy(settings.CITATION_READINESS_POLICY)


def validate_citations(
    citations: Sequence[CitationReference],
    ledger_records: Iterable[LedgerCitationRecord],
    *,
    policy: Optional[ReadinessPolicy] = None,
) -> CitationValidationResult:
    """Errors come back in citation input order."""
    if not citations:
        return CitationValidationResult(valid=True, errors=[])

    policy = policy or _default_policy()
    ledger = {r.id: r for r in ledger_records}
    errors: list[CitationValidationIssue] = []

    for citation in citations:
        record = ledger.get(citation.ledger_entry_id)
        if record is None:
            errors.append(CitationValidationIssue("MISSING_LEDGER_ENTRY", citation.id, citation.ledger_entry_id))
            continue
        readiness = evaluate_locator_readiness(record.locators, record.verified_by_human)
        if not meets_policy(readiness, policy):
            errors.append(CitationValidationIssue("UNVERIFIED_LOCATOR", citation.id, record.id))

    return CitationValidationResult(valid=not errors, errors=errors)


def assert_citations_valid(
    citations: Sequence[CitationReference],
    ledger_records: Iterable[LedgerCitationRecord],
    *,
    policy: Optional[ReadinessPolicy] = None,
) -> None:
    result = validate_citations(citations, ledger_records, policy=policy)
    if result.valid:
        return
    summary = ", ".join(f"{e.code}:{e.ledger_entry_id}" for e in result.errors)
    raise CitationValidationError(
        f"Compose blocked by citation validation errors: {summary}",
        [e.to_dict() for e in result.errors],
    )


def section_citation_references(section_key: str, ledger_entry_ids: Sequence[str]) -> list[CitationReference]:
    return [
        CitationReference(id=f"{section_key}-citation-{i + 1}", ledger_entry_id=ledger_id)
        for i, ledger_id in enumerate(ledger_entry_ids)
    ]


def ledger_citation_records(entries: Iterable[Any]) -> list[LedgerCitationRecord]:
    """Project LedgerEntry rows (or anything with the same attributes) onto the validator input."""
    return [
        LedgerCitationRecord(id=e.id, verified_by_human=bool(e.verified_by_human), locators=e.locators)
        for e in entries
    ]
