from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, func,
    UniqueConstraint, Index, JSON, Float
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime, timezone
import enum
import uuid

from .database import Base

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SectionType(str, enum.Enum):
    literature_review = "literature_review"
    introduction = "introduction"
    methods = "methods"
    results = "results"
    discussion = "discussion"
    conclusion = "conclusion"
    custom = "custom"

class DraftStatus(str, enum.Enum):
    draft = "draft"
    approved = "approved"

class SuggestionStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    dismissed = "dismissed"

class JobStatus(str, enum.Enum):
    pending = "pending"
    queued = "queued"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"

class QueueMessageStatus(str, enum.Enum):
    queued = "queued"
    active = "active"
    completed = "completed"
    failed = "failed"


# ---------------------------
# EVIDENCE LEDGER (read-only here; curated elsewhere)
# ---------------------------
class LedgerEntry(Base):
    __tablename__ = "ledger_entry"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), nullable=False, index=True)
    citation_key = Column(String(200), nullable=False)
    # {"title", "authors", "journal", "publishedAt", "abstract"}
    source_metadata = Column("metadata", JSONType, nullable=True)
    # ordered list of {"page","paragraph","sentence","note","quote","source"}
    locators = Column(JSONType, nullable=False, default=list)
    verified_by_human = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_ledger_entry_project_citation_key", "project_id", "citation_key"),
    )


# ---------------------------
# DRAFT SECTIONS + VERSION LEDGER
# ---------------------------
class DraftSection(Base):
    __tablename__ = "draft_section"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), nullable=False, index=True)
    section_type = Column(String(32), nullable=False, default=SectionType.literature_review.value)
    content = Column(JSONType, nullable=False)                          # document node tree
    status = Column(String(16), nullable=False, default=DraftStatus.draft.value)  # draft|approved
    version = Column(Integer, nullable=False, default=1)                # +1 per content mutation, never decreases
    approved_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now())

    versions = relationship(
        "DraftSectionVersion",
        back_populates="section",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DraftSectionVersion.version.desc()",
    )
    citations = relationship(
        "DraftSectionCitation",
        back_populates="section",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class DraftSectionVersion(Base):
    __tablename__ = "draft_section_version"

    id = Column(String(64), primary_key=True, default=_new_id)
    draft_section_id = Column(String(64), ForeignKey("draft_section.id", ondelete="CASCADE"), nullable=False, index=True)
    version = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False)
    content = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    section = relationship("DraftSection", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("draft_section_id", "version", name="uq_draft_section_version"),
    )


class DraftSectionCitation(Base):
    __tablename__ = "draft_section_citation"

    draft_section_id = Column(String(64), ForeignKey("draft_section.id", ondelete="CASCADE"), primary_key=True)
    ledger_entry_id = Column(String(64), ForeignKey("ledger_entry.id", ondelete="CASCADE"), primary_key=True)
    locator = Column(JSONType, nullable=True)  # primary locator at generation time

    section = relationship("DraftSection", back_populates="citations")
    ledger_entry = relationship("LedgerEntry", lazy="joined")


class DraftSuggestion(Base):
    __tablename__ = "draft_suggestion"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), nullable=False, index=True)
    draft_section_id = Column(String(64), ForeignKey("draft_section.id", ondelete="CASCADE"), nullable=False, index=True)
    suggestion_type = Column(String(16), nullable=False, default="improvement")  # improvement|clarity|expansion
    summary = Column(Text, nullable=True)
    diff = Column(JSONType, nullable=False)             # {"type": "append_paragraph", "before", "after"}
    content = Column(JSONType, nullable=True)           # full proposed document
    status = Column(String(16), nullable=False, default=SuggestionStatus.pending.value)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_draft_suggestion_project_created", "project_id", "created_at"),
    )


# ---------------------------
# JOBS + ACTIVITY
# ---------------------------
class Job(Base):
    __tablename__ = "job"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), nullable=False, index=True)
    job_type = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=JobStatus.queued.value)
    progress = Column(Float, nullable=False, default=0.0)
    resumable_state = Column(JSONType, nullable=True)
    logs = Column(JSONType, nullable=True)
    worker_id = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)


class ActivityLog(Base):
    __tablename__ = "activity_log"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), nullable=False, index=True)
    actor = Column(String(120), nullable=False, default="system")
    action = Column(String(64), nullable=False)  # e.g. "draft.section_generated"
    payload = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


# ---------------------------
# DURABLE WORK QUEUE
# ---------------------------
class QueueMessage(Base):
    __tablename__ = "queue_message"

    id = Column(String(64), primary_key=True, default=_new_id)
    name = Column(String(64), nullable=False)                   # handler key, e.g. "compose:literature-review"
    job_key = Column(String(64), nullable=False, unique=True)   # idempotency hint (job id)
    payload = Column(JSONType, nullable=False)
    status = Column(String(16), nullable=False, default=QueueMessageStatus.queued.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=2)
    backoff_ms = Column(Integer, nullable=False, default=1000)
    available_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    locked_by = Column(String(120), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_queue_message_status_available", "status", "available_at"),
    )
