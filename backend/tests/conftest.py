"""
Shared fixtures: a small known-term store and help corpus built in memory, plus
a throwaway SQLite database for the store and API tests.
"""
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.db.models import Base
from app.db.schema import DocumentRecord
from app.services.chat.known_terms import KnownTerm, TermKind, build_snapshot, load
from app.services.chat.telemetry import InMemoryTelemetrySink
from app.services.doc_store import chunk_document
from app.services.retrieval import DocumentChunk, DocumentCorpus, load_alias_table

TERMS = [
    KnownTerm(term="recent", kind=TermKind.PANEL, panel_id="recent"),
    KnownTerm(term="navigator", kind=TermKind.PANEL, panel_id="navigator"),
    KnownTerm(term="quick links", kind=TermKind.PANEL, panel_id="quick-links"),
    KnownTerm(term="links panel", kind=TermKind.PANEL, panel_id="links-panel-d", badge="D"),
    KnownTerm(term="links panel", kind=TermKind.PANEL, panel_id="links-panel-e", badge="E"),
    KnownTerm(term="widget manager", kind=TermKind.PANEL, panel_id="widget-manager"),
    KnownTerm(term="launch settings", kind=TermKind.PANEL, panel_id="launch-settings"),
    KnownTerm(term="settings", kind=TermKind.PANEL, panel_id="settings"),
    KnownTerm(term="create workspace", kind=TermKind.ACTION),
    KnownTerm(term="add widget", kind=TermKind.ACTION),
    KnownTerm(term="workspace", kind=TermKind.CONCEPT),
    KnownTerm(term="notes", kind=TermKind.CONCEPT),
    KnownTerm(term="dashboard", kind=TermKind.CONCEPT),
    KnownTerm(term="widget", kind=TermKind.CONCEPT),
    KnownTerm(term="home", kind=TermKind.CONCEPT),
    KnownTerm(term="sharing", kind=TermKind.CONCEPT),
]

RECORDS = [
    DocumentRecord(
        slug="workspace",
        category="concepts",
        title="Workspace",
        keywords=["project"],
        content=(
            "# Workspace\n\n"
            "A workspace is the container for everything you work on. "
            "Each workspace has its own dashboard, notes and panels.\n\n"
            "## Creating a workspace\n\n"
            "Open the navigator and choose New workspace. New workspaces start "
            "with an empty dashboard that you can fill with widgets.\n"
        ),
    ),
    DocumentRecord(
        slug="dashboard",
        category="concepts",
        title="Dashboard",
        keywords=["home"],
        content=(
            "# Dashboard\n\n"
            "The dashboard is the home screen of a workspace. It is a grid of "
            "widgets that you can rearrange, resize and remove.\n\n"
            "## Arranging widgets\n\n"
            "Drag a widget by its header to move it. Drag the lower right corner "
            "to resize it. The layout is saved automatically.\n"
        ),
    ),
    DocumentRecord(
        slug="sharing-notes",
        category="guides",
        title="Sharing Notes",
        content=(
            "Invite people by email from the note menu. Invited people can read "
            "the note and leave comments, but only editors can change it.\n"
        ),
    ),
    DocumentRecord(
        slug="sharing-workspaces",
        category="guides",
        title="Sharing Workspaces",
        content=(
            "Invite people by email from the workspace menu. Everyone invited "
            "sees the same dashboard and panels as the owner does.\n"
        ),
    ),
    DocumentRecord(
        slug="tiny",
        category="guides",
        title="Tiny Tips",
        content="Short.",
    ),
]

ALIASES = {
    "aliases": {
        "home screen": {"canonical": "dashboard", "target_slug": "dashboard"},
        "space": {"canonical": "workspace", "target_slug": "workspace"},
    }
}


def make_store(terms=TERMS, generated_at=None, version="test"):
    snapshot = build_snapshot(
        version=version,
        terms=terms,
        generated_at=generated_at or datetime.now(timezone.utc),
    )
    return load(snapshot)


def make_corpus(records=RECORDS):
    chunks = []
    for record in records:
        for index, (header_path, body, _) in enumerate(chunk_document(record)):
            chunks.append(DocumentChunk.build(
                slug=record.slug,
                chunk_index=index,
                category=record.category,
                title=record.title,
                header_path=header_path,
                content=body,
                keywords=record.keywords,
            ))
    return DocumentCorpus.from_chunks(chunks)


@pytest.fixture
def store():
    return make_store()


@pytest.fixture
def corpus():
    return make_corpus()


@pytest.fixture
def aliases():
    return load_alias_table(ALIASES)


@pytest.fixture
def sink():
    return InMemoryTelemetrySink()


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'router.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
