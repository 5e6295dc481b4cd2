"""baseline schema

Revision ID: 3f9a1c2d7e40
Revises:
Create Date: 2026-10-18 09:12:44.120331

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2d7e40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps(*names: str) -> list:
    return [sa.Column(n, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True) for n in names]


def upgrade() -> None:
    op.create_table(
        "ledger_entry",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("citation_key", sa.String(200), nullable=False),
        sa.Column("metadata", JSONType, nullable=True),
        sa.Column("locators", JSONType, nullable=False),
        sa.Column("verified_by_human", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps("created_at"),
    )
    op.create_index("ix_ledger_entry_project_id", "ledger_entry", ["project_id"])
    op.create_index("ix_ledger_entry_project_citation_key", "ledger_entry", ["project_id", "citation_key"])

    op.create_table(
        "draft_section",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("section_type", sa.String(32), nullable=False),
        sa.Column("content", JSONType, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="draft"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps("created_at", "updated_at"),
    )
    op.create_index("ix_draft_section_project_id", "draft_section", ["project_id"])

    op.create_table(
        "draft_section_version",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("draft_section_id", sa.String(64), sa.ForeignKey("draft_section.id", ondelete="CASCADE"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("content", JSONType, nullable=False),
        *_timestamps("created_at"),
        sa.UniqueConstraint("draft_section_id", "version", name="uq_draft_section_version"),
    )
    op.create_index("ix_draft_section_version_draft_section_id", "draft_section_version", ["draft_section_id"])

    op.create_table(
        "draft_section_citation",
        sa.Column("draft_section_id", sa.String(64), sa.ForeignKey("draft_section.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("ledger_entry_id", sa.String(64), sa.ForeignKey("ledger_entry.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("locator", JSONType, nullable=True),
    )

    op.create_table(
        "draft_suggestion",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("draft_section_id", sa.String(64), sa.ForeignKey("draft_section.id", ondelete="CASCADE"), nullable=False),
        sa.Column("suggestion_type", sa.String(16), nullable=False, server_default="improvement"),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("diff", JSONType, nullable=False),
        sa.Column("content", JSONType, nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(120), nullable=True),
        *_timestamps("created_at", "updated_at"),
    )
    op.create_index("ix_draft_suggestion_project_id", "draft_suggestion", ["project_id"])
    op.create_index("ix_draft_suggestion_draft_section_id", "draft_suggestion", ["draft_section_id"])
    op.create_index("ix_draft_suggestion_project_created", "draft_suggestion", ["project_id", "created_at"])

    op.create_table(
        "job",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="queued"),
        sa.Column("progress", sa.Float(), nullable=False, server_default="0"),
        sa.Column("resumable_state", JSONType, nullable=True),
        sa.Column("logs", JSONType, nullable=True),
        sa.Column("worker_id", sa.String(120), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_job_project_id", "job", ["project_id"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("actor", sa.String(120), nullable=False, server_default="system"),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("payload", JSONType, nullable=True),
        *_timestamps("created_at"),
    )
    op.create_index("ix_activity_log_project_id", "activity_log", ["project_id"])

    op.create_table(
        "queue_message",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False),
        sa.Column("job_key", sa.String(64), nullable=False, unique=True),
        sa.Column("payload", JSONType, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("backoff_ms", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("locked_by", sa.String(120), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
    )
    op.create_index("ix_queue_message_status_available", "queue_message", ["status", "available_at"])


def downgrade() -> None:
    for table in (
        "queue_message",
        "activity_log",
        "job",
        "draft_suggestion",
        "draft_section_citation",
        "draft_section_version",
        "draft_section",
        "ledger_entry",
    ):
        op.drop_table(table)
