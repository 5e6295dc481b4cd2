import pytest

from litreview.errors import CitationValidationError
from litreview.services.citations import (
    CitationReference,
    LedgerCitationRecord,
    assert_citations_valid,
    section_citation_references,
    validate_citations,
)
from litreview.services.readiness import ReadinessPolicy

VERIFIED = LedgerCitationRecord(id="L1", verified_by_human=True, locators=[{"page": 3}])
UNVERIFIED = LedgerCitationRecord(id="L2", verified_by_human=False, locators=[{"page": 3, "note": "n"}])
NO_LOCATORS = LedgerCitationRecord(id="L3", verified_by_human=True, locators=[])


def test_empty_citations_are_valid():
    result = validate_citations([], [UNVERIFIED])
    assert result.valid is True
    assert result.errors == []


def test_valid_citation():
    result = validate_citations([CitationReference("c1", "L1")], [VERIFIED])
    assert result.valid


def test_errors_in_input_order():
    citations = [
        CitationReference("c1", "L2"),
        CitationReference("c2", "missing"),
        CitationReference("c3", "L1"),
        CitationReference("c4", "L3"),
    ]
    result = validate_citations(citations, [VERIFIED, UNVERIFIED, NO_LOCATORS])
    assert not result.valid
    assert [(e.code, e.citation_id, e.ledger_entry_id) for e in result.errors] == [
        ("UNVERIFIED_LOCATOR", "c1", "L2"),
        ("MISSING_LEDGER_ENTRY", "c2", "missing"),
        ("UNVERIFIED_LOCATOR", "c4", "L3"),
    ]
    assert sum(1 for e in result.errors if e.code == "MISSING_LEDGER_ENTRY") == 1


def test_export_policy_is_stricter():
    citations = [CitationReference("c1", "L1")]
    assert validate_citations(citations, [VERIFIED], policy=ReadinessPolicy.COMPOSE).valid
    result = validate_citations(citations, [VERIFIED], policy=ReadinessPolicy.EXPORT)
    assert [e.code for e in result.errors] == ["UNVERIFIED_LOCATOR"]


def test_assert_raises_aggregated_error():
    with pytest.raises(CitationValidationError) as exc_info:
        assert_citations_valid(
            [CitationReference("c1", "L2"), CitationReference("c2", "gone")],
            [UNVERIFIED],
        )
    err = exc_info.value
    assert err.code == "CITATION_VALIDATION_FAILED"
    assert "UNVERIFIED_LOCATOR:L2" in err.message
    assert "MISSING_LEDGER_ENTRY:gone" in err.message
    assert err.errors == [
        {"code": "UNVERIFIED_LOCATOR", "citation_id": "c1", "ledger_entry_id": "L2"},
        {"code": "MISSING_LEDGER_ENTRY", "citation_id": "c2", "ledger_entry_id": "gone"},
    ]


def test_assert_passes_silently():
    assert assert_citations_valid([CitationReference("c1", "L1")], [VERIFIED]) is None


def test_section_citation_references():
    refs = section_citation_references("introduction-2", ["A", "B"])
    assert refs == [
        CitationReference("introduction-2-citation-1", "A"),
        CitationReference("introduction-2-citation-2", "B"),
    ]
