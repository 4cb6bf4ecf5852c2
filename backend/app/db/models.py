"""
SQLAlchemy database models.
These define the database schema and relationships.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import relationship, declarative_base
from datetime import datetime, timezone

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentModel(Base):
    """Help document keyed by slug."""
    __tablename__ = "docs_knowledge"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    category = Column(String(100), nullable=False)  # "concepts", "widgets", "actions"
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    keywords = Column(Text, nullable=True)  # JSON list
    content_hash = Column(String(64), nullable=False)
    version = Column(String(20), nullable=False, default="1")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    chunks = relationship(
        "DocumentChunkModel",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentChunkModel.chunk_index",
    )


class DocumentChunkModel(Base):
    """Heading-delimited section of a document."""
    __tablename__ = "docs_knowledge_chunks"
    __table_args__ = (UniqueConstraint("doc_slug", "chunk_index", name="uq_chunk_slug_index"),)

    id = Column(Integer, primary_key=True, index=True)
    doc_slug = Column(String(255), ForeignKey("docs_knowledge.slug"), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    header_path = Column(String(500), nullable=False)  # "Title > Section"
    content = Column(Text, nullable=False)
    chunk_hash = Column(String(64), nullable=False)

    # Relationships
    document = relationship("DocumentModel", back_populates="chunks")


class ChatSessionModel(Base):
    """Chat session with its serialized conversation state."""
    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(255), unique=True, nullable=False, index=True)
    state_json = Column(Text, nullable=True)  # ConversationState, replaced wholesale each turn
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    messages = relationship("ChatMessageModel", back_populates="session", cascade="all, delete-orphan")


class ChatMessageModel(Base):
    """Individual chat turn in a session."""
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(255), ForeignKey("chat_sessions.session_id"), nullable=False)
    role = Column(String(20), nullable=False)  # "user" or "assistant"
    content = Column(Text, nullable=False)
    action = Column(String(50), nullable=True)  # Routing action for assistant turns
    tier = Column(String(50), nullable=True)  # Tier that claimed the turn
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    session = relationship("ChatSessionModel", back_populates="messages")
