# ==============================================================================
# FILE: shopsupport/transport/session_registry.py
# DESCRIPTION: Live connection registry - owns every Session, indexed by
#              connection handle and (once authenticated) by staff identity
# ==============================================================================
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from shopsupport.errors import AlreadyAuthenticated, DuplicateSession
from logs.logging_config import get_core_logger

logger = get_core_logger("session_registry")


class SessionRole(str, Enum):
    AGENT = "agent"
    MANAGER = "manager"
    ADMIN = "admin"
    CUSTOMER = "customer"
    UNAUTHENTICATED = "unauthenticated"


STAFF_ROLES = frozenset({SessionRole.AGENT, SessionRole.MANAGER, SessionRole.ADMIN})


class ConnectionState(str, Enum):
    CONNECTED = "connected"          # transport open, no credential yet
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"                # terminal; a reconnect gets a new Session


@dataclass(eq=False)
class Session:
    """One live connection. Owned exclusively by the SessionRegistry."""

    handle: str
    websocket: Any
    role: SessionRole = SessionRole.UNAUTHENTICATED
    identity: Optional[int] = None
    display_name: Optional[str] = None
    state: ConnectionState = ConnectionState.CONNECTED
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def is_staff(self) -> bool:
        return self.is_authenticated and self.role in STAFF_ROLES

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def mark_customer(self) -> None:
        """Widget connections become customers once they present a conversation."""
        if self.role is SessionRole.UNAUTHENTICATED:
            self.role = SessionRole.CUSTOMER

    async def send(self, frame: Dict[str, Any]) -> None:
        await self.websocket.send_json(frame)

    def describe(self) -> str:
        who = f"user={self.identity}" if self.identity is not None else "anonymous"
        return f"{self.handle[:8]}({who} role={self.role.value})"


class SessionRegistry:
    """Tracks live connections.

    Sessions are opened on transport connect, registered under an identity on
    a valid credential, and unregistered on transport close. Callers must
    drop a session's conversation memberships before unregistering it.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._by_identity: Dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def open(self, websocket: Any) -> Session:
        session = Session(handle=uuid.uuid4().hex, websocket=websocket)
        self._sessions[session.handle] = session
        logger.debug(f"🔌 Session opened {session.describe()}")
        return session

    def register(self, session: Session, identity: int, role: SessionRole, display_name: str) -> Session:
        """Authenticate an open session under identity.

        Raises DuplicateSession when another live session already holds the
        identity; replacement is the caller's decision (evict first, then
        register).
        """
        if session.handle not in self._sessions:
            raise KeyError(f"Session {session.handle} is not open")
        if session.is_authenticated:
            raise AlreadyAuthenticated()
        holder = self._by_identity.get(identity)
        if holder is not None and holder != session.handle:
            raise DuplicateSession(identity)

        session.identity = identity
        session.role = SessionRole(role)
        session.display_name = display_name
        session.state = ConnectionState.AUTHENTICATED
        self._by_identity[identity] = session.handle
        logger.info(f"✅ Session registered {session.describe()}")
        return session

    def unregister(self, handle: str) -> Optional[Session]:
        """Remove a session. Removing an absent handle is a no-op."""
        session = self._sessions.pop(handle, None)
        if session is None:
            return None
        if session.identity is not None and self._by_identity.get(session.identity) == handle:
            del self._by_identity[session.identity]
        session.state = ConnectionState.CLOSED
        logger.info(f"🧹 Session unregistered {session.describe()}")
        return session

    def get(self, handle: str) -> Optional[Session]:
        return self._sessions.get(handle)

    def lookup(self, identity: int) -> Optional[Session]:
        handle = self._by_identity.get(identity)
        return self._sessions.get(handle) if handle is not None else None

    def is_live(self, handle: str) -> bool:
        return handle in self._sessions

    def all_with_role(self, predicate: Callable[[Session], bool]) -> List[Session]:
        """Sessions matching predicate, evaluated against current state."""
        return [s for s in list(self._sessions.values()) if predicate(s)]

    def staff_sessions(self) -> List[Session]:
        return self.all_with_role(lambda s: s.is_staff)
