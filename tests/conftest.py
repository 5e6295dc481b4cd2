import os

# must be set before anything imports litreview.settings / litreview.database
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["OLLAMA_BASE_URL"] = ""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from litreview.database import Base
from litreview import models  # noqa: F401  registers tables on Base
from litreview.jobs import WorkQueue
from litreview.models import DraftSection, DraftSectionCitation, LedgerEntry
from litreview.services.documents import build_document, dump_document
from litreview.settings.config import settings


@pytest.fixture(autouse=True)
def _offline_llm(monkeypatch):
    monkeypatch.setattr(settings, "OLLAMA_BASE_URL", None)
    monkeypatch.setattr(settings, "LLM_MIN_INTERVAL_MS", 0)
    monkeypatch.setattr(settings, "CITATION_READINESS_POLICY", "compose")


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'litreview.db'}", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def queue(session_factory):
    return WorkQueue(session_factory, worker_id="test-worker")


@pytest.fixture
def make_entry(db):
    async def _make(
        entry_id,
        *,
        project_id="p1",
        citation_key=None,
        locators=None,
        verified=True,
        metadata=None,
    ):
        entry = LedgerEntry(
            id=entry_id,
            project_id=project_id,
            citation_key=citation_key or f"Key{entry_id}",
            locators=[{"page": 3}] if locators is None else locators,
            verified_by_human=verified,
            source_metadata=metadata or {"title": f"Study {entry_id}"},
        )
        db.add(entry)
        await db.commit()
        return entry
    return _make


@pytest.fixture
def make_section(db):
    async def _make(
        section_id="s1",
        *,
        project_id="p1",
        section_type="literature_review",
        paragraphs=("Existing synthesis of the evidence.",),
        version=1,
        status="draft",
        cite=(),
    ):
        section = DraftSection(
            id=section_id,
            project_id=project_id,
            section_type=section_type,
            content=dump_document(build_document("Literature Review", list(paragraphs))),
            status=status,
            version=version,
        )
        db.add(section)
        await db.flush()
        for entry_id in cite:
            db.add(DraftSectionCitation(draft_section_id=section_id, ledger_entry_id=entry_id, locator={"page": 3}))
        await db.commit()
        return section
    return _make


def compose_input(*sections, project_id="p1", **extra):
    return {
        "project_id": project_id,
        "mode": "literature_review",
        "sections": list(sections),
        **extra,
    }
