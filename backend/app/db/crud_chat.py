"""
Session state and turn log storage for the chat router.

The routing state is one JSON document per session, replaced wholesale on
every save; there is no per-field update path.
"""
import json
from typing import Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.base_crud import CRUDBase
from app.db.models import ChatMessageModel, ChatSessionModel, utcnow

PREVIEW_CHARS = 100
RECENT_TURNS = 5


class ChatSessionCreate(BaseModel):
    session_id: str
    state_json: Optional[str] = None


class CRUDChatSession(CRUDBase[ChatSessionModel, ChatSessionCreate, ChatSessionCreate]):
    def get_by_session_id(self, db: Session, session_id: str) -> Optional[ChatSessionModel]:
        return db.query(ChatSessionModel).filter(ChatSessionModel.session_id == session_id).first()

    def get_or_create(self, db: Session, session_id: str) -> ChatSessionModel:
        session = self.get_by_session_id(db, session_id)
        if session is None:
            session = self.create(db, obj_in=ChatSessionCreate(session_id=session_id))
        return session

    def replace_state(self, db: Session, session_id: str, state: Dict) -> ChatSessionModel:
        session = self.get_or_create(db, session_id)
        session.state_json = json.dumps(state, sort_keys=True)
        session.updated_at = utcnow()
        db.commit()
        return session

    def delete_session(self, db: Session, session_id: str) -> bool:
        """Drop the session and, through the cascade, its turn log."""
        session = self.get_by_session_id(db, session_id)
        if session is None:
            return False
        db.delete(session)
        db.commit()
        return True


chat_session = CRUDChatSession(ChatSessionModel)


def load_state(db: Session, session_id: str) -> Optional[Dict]:
    """Stored state for a session, or None when it has never been saved."""
    session = chat_session.get_by_session_id(db, session_id)
    if session is None or not session.state_json:
        return None
    return json.loads(session.state_json)


def save_state(db: Session, session_id: str, state: Dict) -> ChatSessionModel:
    return chat_session.replace_state(db, session_id, state)


def record_turn(
    db: Session,
    session_id: str,
    message: str,
    reply: str,
    action: Optional[str] = None,
    tier: Optional[str] = None,
) -> List[ChatMessageModel]:
    """
    Append the user message and the routing reply as one commit.

    The assistant row carries the routing action and the tier that
    claimed the turn; the user row carries neither.
    """
    chat_session.get_or_create(db, session_id)
    now = utcnow()
    rows = [
        ChatMessageModel(session_id=session_id, role="user", content=message, created_at=now),
        ChatMessageModel(
            session_id=session_id,
            role="assistant",
            content=reply,
            action=action,
            tier=tier,
            created_at=now,
        ),
    ]
    db.add_all(rows)
    db.commit()
    return rows


def get_conversation_history(
    db: Session,
    session_id: str,
    limit: Optional[int] = None
) -> List[ChatMessageModel]:
    """Most recent turns of a session in chronological order."""
    # Both rows of a turn share a timestamp, so the id breaks the tie
    query = (
        db.query(ChatMessageModel)
        .filter(ChatMessageModel.session_id == session_id)
        .order_by(ChatMessageModel.created_at.desc(), ChatMessageModel.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return list(reversed(query.all()))


def _preview(text: str) -> str:
    return text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS] + "..."


def get_conversation_summary(db: Session, session_id: str) -> Dict:
    """Stored state plus the last few log rows, for debugging and pill restore."""
    messages = get_conversation_history(db, session_id)
    return {
        "session_id": session_id,
        "state": load_state(db, session_id) or {},
        "message_count": len(messages),
        "recent_messages": [
            {
                "role": msg.role,
                "content": _preview(msg.content),
                "action": msg.action,
                "tier": msg.tier,
                "created_at": msg.created_at.isoformat(),
            }
            for msg in messages[-RECENT_TURNS:]
        ],
    }
