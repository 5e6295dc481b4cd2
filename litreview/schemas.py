from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SectionTypeName = Literal[
    "literature_review",
    "introduction",
    "methods",
    "results",
    "discussion",
    "conclusion",
    "custom",
]
SectionStateStatus = Literal["pending", "running", "completed", "failed"]
NarrativeVoice = Literal["neutral", "confident", "cautious"]
SuggestionType = Literal["improvement", "clarity", "expansion"]
SuggestionAction = Literal["accept", "dismiss"]


# =========================
# DOCUMENT CONTENT
# =========================
class DocumentNode(BaseModel):
    """Recursive node tree stored as DraftSection.content (doc > heading/paragraph > text)."""
    model_config = ConfigDict(extra="forbid")

    type: str = Field(min_length=1)
    attrs: Optional[Dict[str, Any]] = None
    content: Optional[List["DocumentNode"]] = None
    text: Optional[str] = None


DocumentNode.model_rebuild()


# =========================
# LEDGER
# =========================
class LedgerEntryRead(BaseModel):
    id: str
    citation_key: str
    verified_by_human: bool

    class Config:
        from_attributes = True


# =========================
# COMPOSE JOBS
# =========================
def _unique_ids(cls, v):
    # each entry is cited once per section; first occurrence keeps its position
    return list(dict.fromkeys(v))


class ComposeSectionInput(BaseModel):
    section_id: Optional[str] = None
    section_type: SectionTypeName
    title: Optional[str] = Field(default=None, min_length=1)
    instructions: Optional[str] = None
    outline: Optional[List[str]] = Field(default=None, max_length=12)
    ledger_entry_ids: List[str] = Field(min_length=1)
    target_word_count: Optional[int] = Field(default=None, ge=100, le=4000)

    @field_validator("outline")
    @classmethod
    def _outline_items_non_empty(cls, v):
        if v is not None and any(not item for item in v):
            raise ValueError("outline items must be non-empty")
        return v

    _dedupe_ledger_ids = field_validator("ledger_entry_ids")(_unique_ids)


class ComposeJobInput(BaseModel):
    project_id: str
    mode: Literal["literature_review"]
    sections: List[ComposeSectionInput] = Field(min_length=1)
    research_question: Optional[str] = None
    narrative_voice: Optional[NarrativeVoice] = None
    request_id: Optional[str] = None


class ComposeSectionState(BaseModel):
    key: str
    section_type: SectionTypeName
    ledger_entry_ids: List[str] = Field(min_length=1)
    status: SectionStateStatus
    attempts: int = Field(ge=0)
    draft_section_id: Optional[str] = None
    last_updated_at: Optional[datetime] = None
    last_error: Optional[str] = None

    _dedupe_ledger_ids = field_validator("ledger_entry_ids")(_unique_ids)


class ComposeJobState(BaseModel):
    current_section_index: int = Field(default=0, ge=0)
    sections: List[ComposeSectionState]


class ComposeJobQueuePayload(ComposeJobInput):
    job_id: str
    state: ComposeJobState


class ComposeJobResult(BaseModel):
    completed_sections: int
    total_sections: int


# =========================
# DRAFT SECTIONS / VERSIONS
# =========================
class DraftSectionVersionSummary(BaseModel):
    id: str
    version: int
    status: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DraftSectionVersionRead(DraftSectionVersionSummary):
    draft_section_id: str
    content: Dict[str, Any]


class DraftSectionRead(BaseModel):
    id: str
    project_id: str
    section_type: str
    content: Dict[str, Any]
    status: str
    version: int
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    ledger_entries: List[LedgerEntryRead] = []
    version_history: List[DraftSectionVersionSummary] = []


# =========================
# SUGGESTIONS
# =========================
class AppendParagraphDiff(BaseModel):
    type: Literal["append_paragraph"] = "append_paragraph"
    before: str
    after: str


class CreateSuggestionInput(BaseModel):
    project_id: str
    draft_section_id: str
    suggestion_type: SuggestionType = "improvement"
    narrative_voice: Optional[NarrativeVoice] = None
