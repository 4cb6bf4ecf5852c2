"""
Conversation memory service for the chat router.
Loads and stores the per-session routing state and keeps a turn log.
"""
from typing import List, Dict, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import asyncio
from concurrent.futures import ThreadPoolExecutor

from app.core.errors import InfrastructureError
from app.core.logging import get_logger
from app.db import crud_chat
from app.services.chat.state import ConversationState

logger = get_logger("services.conversation_memory")

# Create a global executor for DB operations
db_executor = ThreadPoolExecutor(max_workers=5)


class ConversationMemory:
    """
    Session-scoped access to the stored conversation state.
    The state is always read and written whole.
    """

    def __init__(self, db: Session, session_id: str):
        """
        Initialize conversation memory for a session.

        Args:
            db: Database session
            session_id: Unique session identifier
        """
        self.db = db
        self.session_id = session_id

    async def _run_sync(self, func, *args):
        """Run a synchronous DB function in a thread pool."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(db_executor, func, *args)
        except SQLAlchemyError as e:
            logger.error(f"Session store error for {self.session_id}: {e}")
            self.db.rollback()
            raise InfrastructureError("Session store unavailable", cause=e) from e

    async def load_state(self) -> ConversationState:
        """Stored state, or a fresh one for a new session."""
        data = await self._run_sync(crud_chat.load_state, self.db, self.session_id)
        return ConversationState.from_dict(data)

    async def save_state(self, state: ConversationState) -> None:
        await self._run_sync(crud_chat.save_state, self.db, self.session_id, state.to_dict())

    async def record_turn(
        self,
        message: str,
        reply: str,
        action: Optional[str] = None,
        tier: Optional[str] = None
    ) -> None:
        """
        Record a user turn and the routing reply.

        Args:
            message: User message content
            reply: Message shown to the user, if any
            action: Routing action taken
            tier: Tier that claimed the turn
        """
        await self._run_sync(crud_chat.record_turn, self.db, self.session_id, message, reply, action, tier)

    async def get_conversation_history(self, limit: Optional[int] = 5) -> List[Dict]:
        """
        Get recent conversation history asynchronously.

        Args:
            limit: Number of recent messages to retrieve (default: 5)

        Returns:
            List of message dictionaries with role, content, action and tier
        """
        messages = await self._run_sync(
            crud_chat.get_conversation_history,
            self.db,
            self.session_id,
            limit
        )
        return [
            {"role": msg.role, "content": msg.content, "action": msg.action, "tier": msg.tier}
            for msg in messages
        ]

    async def get_summary(self) -> Dict:
        """Get session summary asynchronously."""
        return await self._run_sync(crud_chat.get_conversation_summary, self.db, self.session_id)

    async def clear(self) -> bool:
        return await self._run_sync(crud_chat.chat_session.delete_session, self.db, self.session_id)
