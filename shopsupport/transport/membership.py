# ==============================================================================
# FILE: shopsupport/transport/membership.py
# DESCRIPTION: Conversation membership index - which live sessions are attached
#              to which conversation. Holds handles only, never Session objects.
# ==============================================================================
from typing import Dict, List, Optional, Set

from shopsupport.data.models import Conversation
from shopsupport.data.store import SupportStore
from shopsupport.errors import ConversationNotFound, NotAuthorized, PersistenceFailure
from shopsupport.transport.session_registry import Session, SessionRegistry, SessionRole
from logs.logging_config import get_core_logger

logger = get_core_logger("membership")


class ConversationMembershipIndex:
    """Many-to-many relation between live sessions and conversation ids.

    A session is attached to at most one conversation; joining another one
    detaches it from the previous conversation first. The index is the only
    record of a session's attachment; ask conversation_of() for it.
    """

    def __init__(self, registry: SessionRegistry, store: SupportStore):
        self._registry = registry
        self._store = store
        self._members: Dict[int, Set[str]] = {}
        self._attachment: Dict[str, int] = {}

    def _authorize(self, session: Session, conversation: Conversation) -> None:
        if session.role is SessionRole.AGENT and conversation.assigned_agent_id != session.identity:
            raise NotAuthorized("Not assigned to this conversation")
        # manager/admin may join any conversation; widget sessions created theirs

    async def join(self, session: Session, conversation_id: int) -> Optional[int]:
        """Attach session to conversation_id after authorization.

        Returns the conversation the session was detached from, if any.
        Raises ConversationNotFound, NotAuthorized or PersistenceFailure.
        """
        try:
            conversation = await self._store.get_conversation(conversation_id)
        except Exception as e:
            raise PersistenceFailure("Failed to load conversation") from e
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        self._authorize(session, conversation)

        # The session may have closed while the store call was in flight
        if not self._registry.is_live(session.handle):
            logger.debug(f"Join dropped for closed session {session.describe()} conversation={conversation_id}")
            return None

        previous = self._attachment.get(session.handle)
        if previous is not None and previous != conversation_id:
            self._discard(session.handle, previous)
            logger.info(f"Session {session.describe()} left conversation {previous} to join {conversation_id}")

        self._members.setdefault(conversation_id, set()).add(session.handle)
        self._attachment[session.handle] = conversation_id
        session.mark_customer()
        logger.info(f"💬 Session {session.describe()} joined conversation {conversation_id}")
        return previous if previous != conversation_id else None

    def leave(self, session: Session, conversation_id: int) -> bool:
        """Detach session from conversation_id. Idempotent; returns whether it was a member."""
        removed = self._discard(session.handle, conversation_id)
        if removed:
            logger.info(f"Session {session.describe()} left conversation {conversation_id}")
        return removed

    def remove_all(self, session: Session) -> List[int]:
        """Drop every membership held by session; returns the conversations left."""
        left: List[int] = []
        conversation_id = self._attachment.get(session.handle)
        if conversation_id is not None and self._discard(session.handle, conversation_id):
            left.append(conversation_id)
        return left

    def _discard(self, handle: str, conversation_id: int) -> bool:
        members = self._members.get(conversation_id)
        if not members or handle not in members:
            return False
        members.discard(handle)
        if not members:
            del self._members[conversation_id]
        if self._attachment.get(handle) == conversation_id:
            del self._attachment[handle]
        return True

    def members_of(self, conversation_id: int) -> Set[str]:
        return set(self._members.get(conversation_id, ()))

    def conversation_of(self, session: Session) -> Optional[int]:
        return self._attachment.get(session.handle)

    def is_member(self, session: Session, conversation_id: int) -> bool:
        return session.handle in self._members.get(conversation_id, ())
