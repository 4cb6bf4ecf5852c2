"""
Pydantic schemas for API request/response models.
These define the structure of data flowing through the API.
"""
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict


class DocumentRecord(BaseModel):
    """Document as accepted by the ingestion path."""
    slug: str = Field(..., min_length=1)
    category: str
    title: str
    content: str
    keywords: List[str] = []


class Document(DocumentRecord):
    """Stored document with hash and version."""
    id: int
    content_hash: str
    version: str
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DocumentSummary(BaseModel):
    """Document listing entry."""
    slug: str
    category: str
    title: str
    version: str
    content_hash: str

    model_config = ConfigDict(from_attributes=True)


class IngestRequest(BaseModel):
    """Request schema for document ingestion."""
    documents: List[DocumentRecord]


class IngestReport(BaseModel):
    """Outcome of an ingestion run."""
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    slugs: List[str] = []


class VisibleWidget(BaseModel):
    """A widget currently rendered on the dashboard."""
    widget_id: str
    title: str
    panel_id: Optional[str] = None
    badge: Optional[str] = None
    items: List[str] = []


class UIContext(BaseModel):
    """Snapshot of what the user can see when the turn was sent."""
    visible_widgets: List[VisibleWidget] = []
    # None means the caller did not report visibility; every panel is treated as available
    visible_panel_ids: Optional[List[str]] = None
    focused_widget_id: Optional[str] = None


class ChatRouteRequest(BaseModel):
    """Request schema for the routing endpoint."""
    session_id: str
    message: str
    ui_context: Optional[UIContext] = None


class ChatRouteResponse(BaseModel):
    """Routing decision returned to the executor."""
    handled: bool
    action: str
    payload: Dict[str, Any] = {}
    tier: Optional[str] = None


class SuggestionOffer(BaseModel):
    """Candidates to offer as a suggestion."""
    candidates: List[Dict[str, Any]]
    alternatives: List[Dict[str, Any]] = []
    message: Optional[str] = None


class SessionSummary(BaseModel):
    """Session state plus recent turns."""
    session_id: str
    state: Dict[str, Any]
    message_count: int
    recent_messages: List[Dict[str, Any]] = []
