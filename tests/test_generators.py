import json

import httpx
import pytest

from litreview.llm_client import OllamaError, ask_llm, parse_json_object
from litreview.schemas import ComposeSectionInput
from litreview.services.compose_generator import (
    ComposeGenerationRequest,
    GeneratorLedgerEntry,
    build_fallback_document,
    build_prompt,
    generate_compose_document,
)
from litreview.services.documents import dump_document, extract_citation_keys
from litreview.services.suggestion_generator import FALLBACK_SUMMARY, SuggestionRequest, generate_suggestion
from litreview.settings.config import settings


def _ollama(response_body=None, *, status=200, raw=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        if raw is not None:
            return httpx.Response(status, json={"response": raw})
        return httpx.Response(status, json={"response": json.dumps(response_body)})
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def online(monkeypatch):
    monkeypatch.setattr(settings, "OLLAMA_BASE_URL", "http://ollama.test")


def _compose_request(**section):
    return ComposeGenerationRequest(
        project_id="p1",
        section=ComposeSectionInput(section_type="literature_review", ledger_entry_ids=["L1", "L2"], **section),
        ledger_entries=[
            GeneratorLedgerEntry(
                id="L1",
                citation_key="Smith2020",
                metadata={"title": "Sleep and memory", "journal": "Nature", "publishedAt": "2020",
                          "authors": ["A. Smith"], "abstract": "x" * 600},
                locators=[{"page": 4, "note": "primary outcome", "quote": "memory improved"}],
                verified_by_human=True,
            ),
            GeneratorLedgerEntry(id="L2", citation_key="Lee2021", locators=[{"page": 1}], verified_by_human=True),
        ],
        research_question="Does sleep improve recall?",
    )


def test_fallback_document():
    doc = dump_document(build_fallback_document(_compose_request(instructions="Compare cohorts", outline=["Cohorts"])))
    texts = [n["content"][0]["text"] for n in doc["content"] if n["type"] == "paragraph"]
    assert texts == [
        "Instruction: Compare cohorts",
        "Sleep and memory (Nature, 2020) contributes relevant findings to this section. "
        "This evidence relates to the research question: Does sleep improve recall?. [Smith2020]",
        "Source 2 contributes relevant findings to this section. "
        "This evidence relates to the research question: Does sleep improve recall?. [Lee2021]",
    ]
    assert doc["content"][0]["content"][0]["text"] == "Literature Review"
    assert doc["content"][-1]["type"] == "bulletList"


def test_fallback_without_entries():
    req = _compose_request()
    req.ledger_entries = []
    doc = build_fallback_document(req)
    assert "No vetted sources" in doc.content[1].content[0].text


def test_prompt_lists_sources():
    prompt = build_prompt(_compose_request(target_word_count=400))
    assert "1. [Smith2020] Sleep and memory" in prompt
    assert "Locator: Page 4 - primary outcome - \"memory improved\"" in prompt
    assert "Approximate target word count: 400" in prompt
    assert "Abstract: " + "x" * 477 + "..." in prompt
    assert "2. [Lee2021] Source 2" in prompt


async def test_unconfigured_model_uses_fallback():
    doc = await generate_compose_document(_compose_request())
    assert doc == build_fallback_document(_compose_request())


async def test_model_output_is_used(online):
    seen = []
    client = _ollama({"heading": "Sleep", "paragraphs": ["Sleep helps [Smith2020].", "Also [Lee2021]."]}, seen=seen)
    doc = await generate_compose_document(_compose_request(), client=client)
    assert doc.content[0].content[0].text == "Sleep"
    assert extract_citation_keys(doc) == {"Smith2020", "Lee2021"}
    assert seen[0]["format"] == "json"
    assert seen[0]["stream"] is False


@pytest.mark.parametrize(
    "client_kwargs",
    [
        {"response_body": {"heading": "X", "paragraphs": ["Invented [Ghost1999]."]}},
        {"response_body": {"heading": "X", "paragraphs": []}},
        {"response_body": {"heading": "X", "paragraphs": "not a list"}},
        {"raw": "I cannot help with that."},
        {"response_body": {}, "status": 503},
    ],
)
async def test_bad_model_output_falls_back(online, client_kwargs):
    doc = await generate_compose_document(_compose_request(), client=_ollama(**client_kwargs))
    assert doc == build_fallback_document(_compose_request())


def _suggestion_request(**kw):
    return SuggestionRequest(
        project_id="p1",
        section_id="s1",
        suggestion_type="expansion",
        current_text="Current text.",
        heading="Discussion",
        verified_citations=kw.pop("verified", ["Smith2020"]),
        **kw,
    )


async def test_suggestion_fallback_names_verified_keys():
    result = await generate_suggestion(_suggestion_request(verified=["A1", "B2"]))
    assert result.summary == FALLBACK_SUMMARY
    assert result.paragraphs == [
        "This section should clarify how the review should integrate stronger context from A1, B2 to explain nuanced findings."
    ]


async def test_suggestion_from_model(online):
    client = _ollama({"summary": "Add nuance", "paragraphs": ["More detail [Smith2020]."]})
    result = await generate_suggestion(_suggestion_request(), client=client)
    assert result.summary == "Add nuance"
    assert result.paragraphs == ["More detail [Smith2020]."]


async def test_suggestion_rejects_unverified_keys(online):
    client = _ollama({"summary": "Add", "paragraphs": ["Unverified [Doe2019]."]})
    result = await generate_suggestion(_suggestion_request(), client=client)
    assert result.summary == FALLBACK_SUMMARY


def test_parse_json_object_unwraps_fences():
    assert parse_json_object('Here is the JSON:\n```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_object('noise {"b": [2]} trailing') == {"b": [2]}
    assert parse_json_object("[1, 2]") is None
    assert parse_json_object("") is None


async def test_ask_llm_requires_base_url():
    with pytest.raises(OllamaError):
        await ask_llm("hello")


async def test_ask_llm_empty_response(online):
    with pytest.raises(OllamaError, match="Empty response"):
        await ask_llm("hello", client=_ollama(raw=""))
