"""
CRUD operations for help documents and their chunks.
"""
from typing import List, Optional, Sequence, Tuple
from sqlalchemy.orm import Session
import json

from app.db.models import DocumentModel, DocumentChunkModel, utcnow
from app.db.base_crud import CRUDBase
from app.db.schema import DocumentRecord


class CRUDDocument(CRUDBase[DocumentModel, DocumentRecord, DocumentRecord]):
    def get_by_slug(self, db: Session, slug: str) -> Optional[DocumentModel]:
        return db.query(DocumentModel).filter(DocumentModel.slug == slug).first()

    def list_ordered(self, db: Session) -> List[DocumentModel]:
        """All documents in corpus order (by slug)."""
        return db.query(DocumentModel).order_by(DocumentModel.slug).all()

    def create_with_chunks(
        self,
        db: Session,
        record: DocumentRecord,
        content_hash: str,
        chunks: Sequence[Tuple[str, str, str]],
    ) -> DocumentModel:
        """
        Insert a new document at version 1 together with its chunks.

        Args:
            db: Database session
            record: Incoming document
            content_hash: Hash of the record contents
            chunks: (header_path, content, chunk_hash) in document order
        """
        document = DocumentModel(
            slug=record.slug,
            category=record.category,
            title=record.title,
            content=record.content,
            keywords=json.dumps(record.keywords),
            content_hash=content_hash,
            version="1",
            updated_at=utcnow(),
        )
        document.chunks = _build_chunks(record.slug, chunks)
        db.add(document)
        db.commit()
        db.refresh(document)
        return document

    def replace_with_chunks(
        self,
        db: Session,
        document: DocumentModel,
        record: DocumentRecord,
        content_hash: str,
        chunks: Sequence[Tuple[str, str, str]],
    ) -> DocumentModel:
        """Overwrite a changed document, bump its version and rebuild its chunks."""
        document.category = record.category
        document.title = record.title
        document.content = record.content
        document.keywords = json.dumps(record.keywords)
        document.content_hash = content_hash
        document.version = str(int(document.version or "0") + 1)
        document.updated_at = utcnow()

        # delete-orphan cascade removes the old rows
        document.chunks.clear()
        db.flush()
        document.chunks.extend(_build_chunks(record.slug, chunks))

        db.commit()
        db.refresh(document)
        return document


document_crud = CRUDDocument(DocumentModel)


def _build_chunks(slug: str, chunks: Sequence[Tuple[str, str, str]]) -> List[DocumentChunkModel]:
    return [
        DocumentChunkModel(
            doc_slug=slug,
            chunk_index=index,
            header_path=header_path,
            content=content,
            chunk_hash=chunk_hash,
        )
        for index, (header_path, content, chunk_hash) in enumerate(chunks)
    ]


def get_all_chunks(db: Session) -> List[DocumentChunkModel]:
    """
    Get every chunk in corpus order: slug, then chunk index.

    Args:
        db: Database session

    Returns:
        List of DocumentChunkModel instances
    """
    return (
        db.query(DocumentChunkModel)
        .order_by(DocumentChunkModel.doc_slug, DocumentChunkModel.chunk_index)
        .all()
    )


def get_document_keywords(document: DocumentModel) -> List[str]:
    """Decode the JSON keyword list stored on a document."""
    if not document.keywords:
        return []
    try:
        keywords = json.loads(document.keywords)
    except (json.JSONDecodeError, TypeError):
        return []
    return [str(keyword) for keyword in keywords] if isinstance(keywords, list) else []
