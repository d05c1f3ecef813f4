# ==============================================================================
# FILE: shopsupport/transport/support_transport.py
# DESCRIPTION: Session layer facade - owns the registry, membership index,
#              dispatcher, suggestion coordinator and event bus for one app
# ==============================================================================
"""Real-time session layer.

``SupportTransport`` is an injectable instance (one per application, one per
test) rather than a module-level singleton. It wires:

    SessionRegistry  <-  ConversationMembershipIndex
            \\                 /
             BroadcastDispatcher  <-  SuggestionCoordinator
                      ^
              ConnectionHandler (one per WebSocket)

Presence changes flow through the ``SessionEventBus``: registration and
disconnect publish ``PresenceChangedEvent``; the transport's own subscriber
persists online status and tells the other staff sessions.
"""

from typing import Any, Dict, List, Optional

from fastapi import WebSocket

from shopsupport.ai.suggestions import SuggestionService
from shopsupport.auth.config import STAFF_ROLES as STAFF_ROLE_NAMES
from shopsupport.auth.tokens import TokenValidator, get_token_validator
from shopsupport.core_config import DUPLICATE_POLICY_REJECT, SessionConfig, get_session_config
from shopsupport.data.store import SupportStore
from shopsupport.errors import (
    AlreadyAuthenticated,
    AuthenticationFailure,
    DuplicateSession,
    PersistenceFailure,
    SupportError,
)
from shopsupport.events.session_events import PresenceChangedEvent, SessionClosedEvent, SessionEventBus
from shopsupport.transport.broadcast import BroadcastDispatcher
from shopsupport.transport.connection_handler import ConnectionHandler
from shopsupport.transport.membership import ConversationMembershipIndex
from shopsupport.transport.protocol import AuthenticateFrame, envelope
from shopsupport.transport.session_registry import Session, SessionRegistry
from shopsupport.transport.suggestion_coordinator import SuggestionCoordinator
from logs.logging_config import get_core_logger

logger = get_core_logger("support_transport")

SESSION_REPLACED_CLOSE_CODE = 4001


class SupportTransport:
    def __init__(
        self,
        store: SupportStore,
        suggestion_service: Optional[SuggestionService] = None,
        token_validator: Optional[TokenValidator] = None,
        session_config: Optional[SessionConfig] = None,
        event_bus: Optional[SessionEventBus] = None,
    ):
        self.store = store
        self.config = session_config or get_session_config()
        self.token_validator = token_validator or get_token_validator()
        self.bus = event_bus or SessionEventBus()
        self.registry = SessionRegistry()
        self.membership = ConversationMembershipIndex(self.registry, store)
        self.dispatcher = BroadcastDispatcher(self.registry, self.membership)
        self.coordinator = SuggestionCoordinator(store, suggestion_service, self.dispatcher, self.config)
        self._unsubscribe = self.bus.subscribe(PresenceChangedEvent, self._on_presence_changed)
        logger.info(
            f"🚀 Support transport ready (duplicate_policy={self.config.duplicate_policy}, "
            f"heartbeat={self.config.heartbeat_interval}s)"
        )

    @property
    def connection_count(self) -> int:
        return len(self.registry)

    async def handle_websocket(self, websocket: WebSocket) -> None:
        await ConnectionHandler(self, websocket).run()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def authenticate_session(self, session: Session, frame: AuthenticateFrame) -> Optional[Session]:
        """Verify the credential on frame and register session under its identity.

        Returns None when the session closed while verification was in
        flight. Raises AuthenticationFailure, AlreadyAuthenticated or (with
        the reject policy) DuplicateSession.
        """
        if session.is_authenticated:
            raise AlreadyAuthenticated()

        if frame.token:
            claims = await self.token_validator.validate_token(frame.token)
            user_id, role, username = claims.user_id, claims.role, claims.username
        elif self.token_validator.config.allow_legacy_user_id:
            user_id, role, username = frame.user_id, None, ""
        else:
            logger.info(f"Legacy userId authentication refused for {session.describe()}")
            raise AuthenticationFailure()

        try:
            user = await self.store.get_user(user_id)
        except Exception as e:
            logger.error(f"❌ User lookup failed during authentication: {e}")
            raise PersistenceFailure("Failed to load user") from e
        if user is None:
            logger.info(f"Authentication rejected: unknown user {user_id}")
            raise AuthenticationFailure()
        role = role or user.role
        if role not in STAFF_ROLE_NAMES:
            logger.info(f"Authentication rejected: user {user_id} has role {role!r}")
            raise AuthenticationFailure()

        if not self.registry.is_live(session.handle):
            logger.debug(f"Authentication finished after {session.describe()} closed; dropping")
            return None
        if session.is_authenticated:
            raise AlreadyAuthenticated()

        previous = self.registry.lookup(user_id)
        if previous is not None and previous is not session:
            if self.config.duplicate_policy == DUPLICATE_POLICY_REJECT:
                logger.info(f"⛔ Rejecting second session for user {user_id}")
                raise DuplicateSession(user_id)
            self._evict(previous)

        # Anything joined as a widget was never checked against this identity
        dropped = self.membership.remove_all(session)
        if dropped:
            logger.info(f"Dropped pre-authentication memberships {dropped} for {session.describe()}")
        self.registry.register(session, user_id, role, username or user.username)

        if previous is not None and previous is not session:
            await self._close_replaced(previous)
            await self.bus.emit_business_event(
                "SESSION_REPLACED",
                f"User {user_id} opened a new session",
                user_id=user_id,
                replaced=previous.handle[:8],
            )
        else:
            await self.bus.publish(PresenceChangedEvent(
                user_id=user_id,
                username=session.display_name,
                role=session.role.value,
                is_online=True,
                session_handle=session.handle,
            ))
        return session

    def _evict(self, session: Session) -> None:
        """Synchronously drop a replaced session: memberships first, then the registry entry."""
        left = self.membership.remove_all(session)
        self.registry.unregister(session.handle)
        logger.info(f"♻️ Evicted {session.describe()} (left conversations {left})")

    async def _close_replaced(self, session: Session) -> None:
        try:
            await session.send(SupportError("Session replaced by a newer connection", code="SessionReplaced").to_error_frame())
            await session.websocket.close(code=SESSION_REPLACED_CLOSE_CODE)
        except Exception as e:
            logger.debug(f"Closing replaced session {session.describe()} raised: {e}")

    # ------------------------------------------------------------------
    # Disconnect
    # ------------------------------------------------------------------
    async def disconnect(self, session: Session) -> None:
        """Disconnect sequence: remove memberships, unregister, announce presence."""
        was_staff = session.is_staff
        left = self.membership.remove_all(session)
        removed = self.registry.unregister(session.handle)
        if removed is None:
            # Already evicted by a replacing session; the identity is still online
            return
        if was_staff:
            await self.bus.publish(PresenceChangedEvent(
                user_id=session.identity,
                username=session.display_name,
                role=session.role.value,
                is_online=False,
                session_handle=session.handle,
            ))
        await self.bus.publish(SessionClosedEvent(
            session_handle=session.handle,
            user_id=session.identity,
            conversations_left=left,
        ))

    async def _on_presence_changed(self, event: PresenceChangedEvent) -> None:
        try:
            await self.store.update_user_online_status(event.user_id, event.is_online)
        except Exception as e:
            logger.warning(f"Failed to persist online status for user {event.user_id}: {e}")
        await self.dispatcher.to_staff(
            envelope("agent_status_changed", userId=event.user_id, username=event.username, isOnline=event.is_online),
            exclude=self.registry.get(event.session_handle),
        )

    # ------------------------------------------------------------------
    # Operations used by the HTTP layer
    # ------------------------------------------------------------------
    async def notify_new_conversation(self, conversation_id: int) -> int:
        return await self.dispatcher.to_staff(envelope("new_conversation", conversationId=conversation_id))

    async def notify_conversation_assigned(self, conversation_id: int, agent_id: int, agent_name: Optional[str]) -> int:
        return await self.dispatcher.to_staff(envelope(
            "conversation_assigned",
            conversationId=conversation_id,
            agentId=agent_id,
            agentName=agent_name,
        ))

    async def send_to_user(self, user_id: int, frame: Dict[str, Any]) -> bool:
        session = self.registry.lookup(user_id)
        if session is None:
            return False
        return await self.dispatcher.to_session(session, frame)

    def online_staff(self) -> List[int]:
        return sorted(s.identity for s in self.registry.staff_sessions())

    async def aclose(self) -> None:
        """Cancel AI work and close every open socket."""
        self._unsubscribe()
        await self.coordinator.aclose()
        for session in self.registry.all_with_role(lambda s: True):
            try:
                await session.websocket.close(code=1001)
            except Exception as e:
                logger.debug(f"Close on shutdown raised for {session.describe()}: {e}")
        logger.info("🛑 Support transport closed")
