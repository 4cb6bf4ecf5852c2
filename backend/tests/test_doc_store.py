"""
Tests for document ingestion, the corpus cache and the seed loader.
"""
from pathlib import Path

from app.db.crud_docs import document_crud
from app.services.chat.known_terms import TermKind
from app.services.doc_store import (
    CorpusRegistry,
    build_corpus,
    ingest_documents,
    load_alias_file,
    load_seed_documents,
    make_known_terms_loader,
    refresh_known_terms,
)

from conftest import RECORDS, make_store

DATA_DIR = Path(__file__).resolve().parents[1] / "data"


def test_ingest_is_idempotent(db):
    first = ingest_documents(db, RECORDS)
    assert first.inserted == len(RECORDS)

    second = ingest_documents(db, RECORDS)
    assert second.inserted == 0
    assert second.updated == 0
    assert second.unchanged == len(RECORDS)
    assert document_crud.get_by_slug(db, "workspace").version == "1"


def test_changed_document_gets_new_version_and_chunks(db):
    ingest_documents(db, RECORDS)
    changed = RECORDS[0].model_copy(update={"content": "# Workspace\n\nA workspace holds your dashboard, notes and panels in one place for a project.\n"})

    report = ingest_documents(db, [changed])
    assert report.updated == 1
    assert report.slugs == ["workspace"]

    document = document_crud.get_by_slug(db, "workspace")
    assert document.version == "2"
    assert len(document.chunks) == 1


def test_build_corpus_orders_chunks(db):
    ingest_documents(db, RECORDS)
    corpus = build_corpus(db)
    keys = [(c.slug, c.chunk_index) for c in corpus.chunks]
    assert keys == sorted(keys)
    assert corpus.title_for("dashboard") == "Dashboard"
    assert corpus.chunks_for("dashboard")[0].keywords == ("home",)


def test_corpus_registry_rebuilds_only_on_change(db):
    registry = CorpusRegistry()
    ingest_documents(db, RECORDS)
    first = registry.get(db)
    assert registry.get(db) is first

    changed = RECORDS[1].model_copy(update={"title": "Home Dashboard"})
    ingest_documents(db, [changed])
    assert registry.get(db) is not first
    assert registry.corpus.title_for("dashboard") == "Home Dashboard"


def test_document_vocabulary_feeds_known_terms(db):
    ingest_documents(db, RECORDS)
    store = refresh_known_terms(db, make_store())
    assert store.lookup("sharing notes")
    assert store.lookup("project")[0].kind == TermKind.CONCEPT
    # Panel instances survive the merge
    assert len(store.lookup("links panel")) == 2


def test_known_terms_loader(session_factory, tmp_path):
    db = session_factory()
    try:
        ingest_documents(db, RECORDS)
    finally:
        db.close()

    loader = make_known_terms_loader(session_factory, str(DATA_DIR / "known_terms.json"), 7)
    store = loader()
    assert not store.is_bootstrap
    assert store.lookup("tiny tips")
    assert store.lookup("launch settings")


def test_seed_documents_from_front_matter(tmp_path):
    (tmp_path / "guide.md").write_text(
        "---\ntitle: Quick Guide\ncategory: guides\nkeywords: start, tour\n---\n# Quick Guide\n\nBody text.\n",
        encoding="utf-8",
    )
    records = load_seed_documents(str(tmp_path))
    assert len(records) == 1
    record = records[0]
    assert record.slug == "guide"
    assert record.title == "Quick Guide"
    assert record.keywords == ["start", "tour"]
    assert record.content.startswith("# Quick Guide")


def test_bundled_documents_load():
    records = load_seed_documents(str(DATA_DIR / "docs"))
    slugs = {record.slug for record in records}
    assert {"workspace", "dashboard", "links-panel", "recent"} <= slugs
    assert all(record.keywords for record in records)


def test_alias_file(tmp_path):
    aliases = load_alias_file(str(DATA_DIR / "aliases.json"))
    assert aliases["home screen"].target_slug == "dashboard"
    assert load_alias_file(str(tmp_path / "missing.json")) == {}
