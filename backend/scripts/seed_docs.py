#!/usr/bin/env python3
"""
Seed script for loading the bundled help documents into the docs store.
Safe to re-run: unchanged documents are left alone.
"""
import sys
import json
import logging
import argparse
from pathlib import Path

# Add backend to path
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))

from app.core.config import get_settings
from app.core.errors import InfrastructureError
from app.db.session import SessionLocal, engine, init_db
from app.db.models import Base
from app.services.chat.known_terms import load_file
from app.services.doc_store import ingest_documents, load_seed_documents, refresh_known_terms

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def write_known_terms(db, snapshot_path: str, ttl_days: int) -> None:
    """Merge document vocabulary into the bundled snapshot and write it back."""
    base = load_file(snapshot_path, ttl_days=ttl_days)
    store = refresh_known_terms(db, base)
    snapshot = {
        "version": store.version,
        "generated_at": store.generated_at.isoformat(),
        "ttl_days": store.ttl_days,
        "hash": store.hash,
        "terms": [term.model_dump(mode="json", exclude_none=True) for term in store.terms],
    }
    with open(snapshot_path, "w", encoding="utf-8") as f:
        json.dump(snapshot, f, indent=2)
        f.write("\n")
    logger.info(f"Wrote known-term snapshot {store.version} ({len(store)} terms, hash {store.hash[:12]})")


def main(docs_dir: str = None, reset: bool = False, known_terms: bool = False):
    """
    Load markdown documents and upsert them by slug.
    """
    settings = get_settings()
    docs_dir = docs_dir or settings.docs_seed_dir

    if reset:
        logger.info("Resetting SQL Database...")
        Base.metadata.drop_all(bind=engine)
    init_db()

    records = load_seed_documents(docs_dir)
    if not records:
        logger.error(f"No documents found in {docs_dir}")
        return 1
    logger.info(f"Loaded {len(records)} documents from {docs_dir}")

    db = SessionLocal()
    try:
        report = ingest_documents(db, records)
        logger.info(
            f"Ingestion complete: {report.inserted} inserted, "
            f"{report.updated} updated, {report.unchanged} unchanged"
        )
        if known_terms:
            write_known_terms(db, settings.known_terms_snapshot_path, settings.known_terms_ttl_days)
    except InfrastructureError as e:
        logger.error(f"Fatal error: {e}")
        return 1
    finally:
        db.close()

    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed help documents into the docs store")
    parser.add_argument("--docs-dir", default=None, help="Directory of markdown documents")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables first")
    parser.add_argument("--write-known-terms", action="store_true",
                        help="Regenerate the known-term snapshot with document vocabulary")
    args = parser.parse_args()

    sys.exit(main(docs_dir=args.docs_dir, reset=args.reset, known_terms=args.write_known_terms))
