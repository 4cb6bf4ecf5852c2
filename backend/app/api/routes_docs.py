"""
API routes for the help-document store.
"""
from fastapi import APIRouter, Depends, HTTPException
from typing import List
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.crud_docs import document_crud, get_document_keywords
from app.db.session import get_db
from app.db.schema import Document, DocumentSummary, IngestReport, IngestRequest
from app.services.chat.known_terms import get_known_term_registry
from app.services.doc_store import ingest_documents

logger = get_logger("api.routes_docs")

router = APIRouter(prefix="/docs", tags=["docs"])


@router.post("/ingest", response_model=IngestReport)
async def ingest(
    request: IngestRequest,
    db: Session = Depends(get_db)
):
    """
    Upsert documents by slug.

    Documents whose content hash is unchanged are left alone, so the call is
    safe to repeat. Changed documents get a new version and fresh chunks.
    """
    report = ingest_documents(db, request.documents)
    if report.inserted or report.updated:
        # Document titles and keywords feed the known-term vocabulary
        get_known_term_registry().refresh()
    logger.info(f"Ingest: {report.inserted} inserted, {report.updated} updated, {report.unchanged} unchanged")
    return report


@router.get("", response_model=List[DocumentSummary])
async def list_documents(db: Session = Depends(get_db)):
    """List every document in corpus order."""
    return document_crud.list_ordered(db)


@router.get("/{slug}", response_model=Document)
async def get_document(slug: str, db: Session = Depends(get_db)):
    """Get one document by slug."""
    document = document_crud.get_by_slug(db, slug)
    if not document:
        raise HTTPException(status_code=404, detail=f"Document '{slug}' not found")
    return Document(
        id=document.id,
        slug=document.slug,
        category=document.category,
        title=document.title,
        content=document.content,
        keywords=get_document_keywords(document),
        content_hash=document.content_hash,
        version=document.version,
        updated_at=document.updated_at,
    )
