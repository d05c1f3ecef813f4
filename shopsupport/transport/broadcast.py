# ==============================================================================
# FILE: shopsupport/transport/broadcast.py
# DESCRIPTION: Fan-out primitives over the registry and membership index
# ==============================================================================
from typing import Any, Dict, Optional

from shopsupport.transport.membership import ConversationMembershipIndex
from shopsupport.transport.session_registry import Session, SessionRegistry
from logs.logging_config import get_core_logger

logger = get_core_logger("broadcast")


class BroadcastDispatcher:
    """Best-effort fan-out. Targets are computed fresh on every dispatch.

    A send to a broken transport is logged and skipped; one dead member never
    prevents delivery to the rest of the group.
    """

    def __init__(self, registry: SessionRegistry, membership: ConversationMembershipIndex):
        self._registry = registry
        self._membership = membership

    async def _deliver(self, session: Session, frame: Dict[str, Any]) -> bool:
        # Re-check at send time: a disconnect during an earlier await wins
        if not self._registry.is_live(session.handle):
            return False
        try:
            await session.send(frame)
            return True
        except Exception as e:
            logger.warning(f"Broadcast of {frame.get('type')} to {session.describe()} failed: {e}")
            return False

    async def to_conversation(self, conversation_id: int, frame: Dict[str, Any], exclude: Optional[Session] = None) -> int:
        """Send to every current member of conversation_id except exclude."""
        delivered = 0
        for handle in self._membership.members_of(conversation_id):
            if exclude is not None and handle == exclude.handle:
                continue
            session = self._registry.get(handle)
            if session is None or not self._membership.is_member(session, conversation_id):
                continue
            if await self._deliver(session, frame):
                delivered += 1
        logger.debug(f"Broadcast {frame.get('type')} to conversation {conversation_id}: {delivered} delivered")
        return delivered

    async def to_staff(self, frame: Dict[str, Any], exclude: Optional[Session] = None) -> int:
        """Send to every authenticated agent/manager/admin session except exclude."""
        delivered = 0
        for session in self._registry.staff_sessions():
            if exclude is not None and session.handle == exclude.handle:
                continue
            if await self._deliver(session, frame):
                delivered += 1
        logger.debug(f"Broadcast {frame.get('type')} to staff: {delivered} delivered")
        return delivered

    async def to_session(self, session: Session, frame: Dict[str, Any]) -> bool:
        """Direct unicast; skipped when the session is no longer registered."""
        return await self._deliver(session, frame)
