# ==============================================================================
# FILE: shopsupport/transport/__init__.py
# DESCRIPTION: Real-time session layer exports
# ==============================================================================

from .session_registry import ConnectionState, Session, SessionRegistry, SessionRole
from .membership import ConversationMembershipIndex
from .broadcast import BroadcastDispatcher
from .suggestion_coordinator import SuggestionCoordinator
from .connection_handler import ConnectionHandler
from .support_transport import SupportTransport

__all__ = [
    "ConnectionState",
    "Session",
    "SessionRegistry",
    "SessionRole",
    "ConversationMembershipIndex",
    "BroadcastDispatcher",
    "SuggestionCoordinator",
    "ConnectionHandler",
    "SupportTransport",
]
