"""
API routes for chat routing and session state.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db.session import get_db
from app.db.schema import ChatRouteRequest, ChatRouteResponse, SessionSummary, SuggestionOffer
from app.services.chat.router import offer_suggestion, route_message
from app.services.chat.state import ClarificationOption
from app.services.conversation_memory import ConversationMemory

logger = get_logger("api.routes_chat")

router = APIRouter()


@router.post("/chat/route", response_model=ChatRouteResponse)
async def route_chat_message(
    request: ChatRouteRequest,
    db: Session = Depends(get_db)
):
    """
    Route one chat turn to a single decision.

    - **session_id**: Unique session identifier
    - **message**: What the user typed
    - **ui_context**: Optional visible widgets and panels

    The response says whether the router handled the turn and which action the
    executor should take: execute_panel, disambiguate, clarify,
    retrieve_doc_response, affirm_suggestion, reject_suggestion or passthrough.
    """
    if not request.message.strip():
        raise HTTPException(status_code=422, detail="Message must not be empty")
    return await route_message(db, request)


@router.get("/chat/session/{session_id}", response_model=SessionSummary)
async def get_session_summary(
    session_id: str,
    db: Session = Depends(get_db)
):
    """
    Get the stored routing state and recent turns for a session.
    Useful for debugging or for restoring pills in the UI.
    """
    memory = ConversationMemory(db, session_id)
    summary = await memory.get_summary()
    return summary


@router.delete("/chat/session/{session_id}")
async def delete_session(
    session_id: str,
    db: Session = Depends(get_db)
):
    """Forget a session's state and turn log."""
    memory = ConversationMemory(db, session_id)
    deleted = await memory.clear()
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return {"deleted": True, "session_id": session_id}


@router.post("/chat/session/{session_id}/suggestion")
async def create_suggestion(
    session_id: str,
    offer: SuggestionOffer,
    db: Session = Depends(get_db)
):
    """
    Offer candidates to the user as a suggestion awaiting yes/no.
    Candidates the user already rejected in this session are dropped.
    """
    try:
        candidates = [ClarificationOption.model_validate(c) for c in offer.candidates]
        alternatives = [ClarificationOption.model_validate(a) for a in offer.alternatives]
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False)) from e

    state = await offer_suggestion(db, session_id, candidates, alternatives, offer.message)
    suggestion = state.last_suggestion
    return {
        "session_id": session_id,
        "offered": suggestion is not None,
        "suggestion": suggestion.model_dump(mode="json") if suggestion else None,
    }
