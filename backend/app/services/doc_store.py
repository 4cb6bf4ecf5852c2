"""
Document store service.
Idempotent ingestion of help documents and the in-memory corpus built from them.
"""
import hashlib
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import InfrastructureError
from app.core.logging import get_logger
from app.db import crud_docs
from app.db.crud_docs import document_crud
from app.db.schema import DocumentRecord, IngestReport
from app.services.chat.known_terms import KnownTerm, KnownTermStore, TermKind, build_snapshot, load, load_file
from app.services.retrieval import AliasTable, DocumentChunk, DocumentCorpus, load_alias_table
from app.utils.text_cleaning import clean_doc_text, parse_front_matter, split_markdown_sections

logger = get_logger("services.doc_store")


def compute_content_hash(record: DocumentRecord) -> str:
    """sha256 over the fields that change what retrieval sees."""
    payload = json.dumps(
        {
            "category": record.category,
            "title": record.title,
            "content": clean_doc_text(record.content),
            "keywords": sorted(record.keywords),
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def chunk_document(record: DocumentRecord) -> List[Tuple[str, str, str]]:
    """Split a document into (header_path, content, chunk_hash) triples."""
    sections = split_markdown_sections(record.title, record.content)
    if not sections:
        sections = [(record.title, clean_doc_text(record.content))]
    return [
        (header_path, body, hashlib.sha256(f"{header_path}\n{body}".encode("utf-8")).hexdigest())
        for header_path, body in sections
    ]


def ingest_documents(db: Session, records: Iterable[DocumentRecord]) -> IngestReport:
    """
    Upsert documents by slug.

    An identical content hash is a no-op: version and chunks stay as they are.
    A changed hash bumps the version and rebuilds the chunks. Safe to re-run.

    Raises:
        InfrastructureError: If the database is unavailable.
    """
    report = IngestReport()
    try:
        for record in records:
            content_hash = compute_content_hash(record)
            existing = document_crud.get_by_slug(db, record.slug)

            if existing is None:
                document_crud.create_with_chunks(db, record, content_hash, chunk_document(record))
                report.inserted += 1
                logger.info(f"Inserted doc '{record.slug}'")
            elif existing.content_hash == content_hash:
                report.unchanged += 1
                logger.debug(f"Doc '{record.slug}' unchanged")
                continue
            else:
                document = document_crud.replace_with_chunks(
                    db, existing, record, content_hash, chunk_document(record)
                )
                report.updated += 1
                logger.info(f"Updated doc '{record.slug}' to version {document.version}")

            report.slugs.append(record.slug)
    except SQLAlchemyError as e:
        db.rollback()
        raise InfrastructureError("Document store unavailable", cause=e) from e

    return report


def build_corpus(db: Session) -> DocumentCorpus:
    """Read every chunk into an immutable corpus."""
    try:
        documents = document_crud.list_ordered(db)
        chunks = crud_docs.get_all_chunks(db)
    except SQLAlchemyError as e:
        raise InfrastructureError("Document store unavailable", cause=e) from e

    by_slug = {doc.slug: doc for doc in documents}
    built = []
    for chunk in chunks:
        doc = by_slug.get(chunk.doc_slug)
        if doc is None:
            continue
        built.append(DocumentChunk.build(
            slug=doc.slug,
            chunk_index=chunk.chunk_index,
            category=doc.category,
            title=doc.title,
            header_path=chunk.header_path,
            content=chunk.content,
            keywords=crud_docs.get_document_keywords(doc),
        ))
    return DocumentCorpus.from_chunks(built, content_hash=combined_hash(documents))


def combined_hash(documents) -> str:
    """Hash of every (slug, content_hash) pair, in slug order."""
    digest = hashlib.sha256()
    for doc in sorted(documents, key=lambda d: d.slug):
        digest.update(f"{doc.slug}:{doc.content_hash};".encode("utf-8"))
    return digest.hexdigest()


class CorpusRegistry:
    """
    Caches the corpus keyed by the combined content hash.
    Unchanged documents never trigger a rebuild.
    """

    def __init__(self):
        self._corpus: DocumentCorpus = DocumentCorpus()
        self._lock = threading.Lock()

    @property
    def corpus(self) -> DocumentCorpus:
        return self._corpus

    def get(self, db: Session) -> DocumentCorpus:
        try:
            documents = document_crud.list_ordered(db)
        except SQLAlchemyError as e:
            raise InfrastructureError("Document store unavailable", cause=e) from e

        current_hash = combined_hash(documents)
        if self._corpus.content_hash == current_hash and not self._corpus.is_empty:
            return self._corpus

        with self._lock:
            if self._corpus.content_hash != current_hash or self._corpus.is_empty:
                self._corpus = build_corpus(db)
                logger.info(f"Corpus rebuilt: {len(self._corpus.slugs)} docs, {len(self._corpus.chunks)} chunks")
        return self._corpus

    def invalidate(self) -> None:
        self._corpus = DocumentCorpus()


def load_alias_file(path: str) -> AliasTable:
    """Load the alias table; a missing or malformed file yields an empty table."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return load_alias_table(json.load(f))
    except (OSError, json.JSONDecodeError, KeyError, AttributeError) as e:
        logger.warning(f"Alias table unavailable ({e}); continuing without aliases")
        return {}


def document_terms(db: Session) -> List[KnownTerm]:
    """Concept terms taken from document titles and keywords."""
    try:
        documents = document_crud.list_ordered(db)
    except SQLAlchemyError as e:
        raise InfrastructureError("Document store unavailable", cause=e) from e

    terms: List[KnownTerm] = []
    for doc in documents:
        terms.append(KnownTerm(term=doc.title.lower(), kind=TermKind.CONCEPT))
        for keyword in crud_docs.get_document_keywords(doc):
            terms.append(KnownTerm(term=keyword.lower(), kind=TermKind.CONCEPT))
    return terms


def refresh_known_terms(db: Session, base: KnownTermStore, now: Optional[datetime] = None) -> KnownTermStore:
    """
    Build a fresh store from the panel/action terms of the base snapshot plus the
    current document vocabulary.
    """
    now = now or datetime.now(timezone.utc)
    panel_terms = [t for t in base.terms if t.kind != TermKind.CONCEPT]
    concept_terms = [t for t in base.terms if t.kind == TermKind.CONCEPT]
    snapshot = build_snapshot(
        version=now.strftime("%Y.%m.%d.%H%M%S"),
        terms=panel_terms + concept_terms + document_terms(db),
        generated_at=now,
        ttl_days=base.ttl_days,
    )
    return load(snapshot)


# Global instances
_corpus_registry: Optional[CorpusRegistry] = None
_alias_table: Optional[AliasTable] = None


def get_corpus_registry() -> CorpusRegistry:
    """Get or create the global corpus registry."""
    global _corpus_registry
    if _corpus_registry is None:
        _corpus_registry = CorpusRegistry()
    return _corpus_registry


def get_alias_table() -> AliasTable:
    """Alias table from the configured file, loaded once."""
    global _alias_table
    if _alias_table is None:
        from app.core.config import get_settings

        _alias_table = load_alias_file(get_settings().alias_table_path)
    return _alias_table


def set_alias_table(table: Optional[AliasTable]) -> None:
    global _alias_table
    _alias_table = table


def load_seed_documents(directory: str) -> List[DocumentRecord]:
    """
    Read markdown documents with front matter (title, category, keywords).
    The slug is the front matter slug or the file name.
    """
    records: List[DocumentRecord] = []
    for path in sorted(Path(directory).glob("*.md")):
        metadata, body = parse_front_matter(path.read_text(encoding="utf-8"))
        keywords = metadata.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [k.strip() for k in keywords.split(",") if k.strip()]
        records.append(DocumentRecord(
            slug=str(metadata.get("slug") or path.stem),
            category=str(metadata.get("category") or "general"),
            title=str(metadata.get("title") or path.stem.replace("-", " ").title()),
            content=body.strip(),
            keywords=keywords,
        ))
    return records


def make_known_terms_loader(session_factory: Callable[[], Session], snapshot_path: str, ttl_days: int):
    """Loader for the known-term registry: bundled snapshot plus current document vocabulary."""
    def loader() -> KnownTermStore:
        base = load_file(snapshot_path, ttl_days=ttl_days)
        db = session_factory()
        try:
            return refresh_known_terms(db, base)
        finally:
            db.close()
    return loader
