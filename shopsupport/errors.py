# ==============================================================================
# FILE: shopsupport/errors.py
# DESCRIPTION: Error taxonomy for the session layer. Every failure a client can
#              see is one of these, rendered as an `error` frame to the sender.
# ==============================================================================
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class SupportError(Exception):
    """Base error carrying a stable wire code."""

    code = "Error"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_error_frame(self) -> Dict[str, Any]:
        frame: Dict[str, Any] = {
            "type": "error",
            "error": self.message,
            "code": self.code,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if self.details:
            frame["details"] = self.details
        return frame


class AuthenticationFailure(SupportError):
    # Expired, malformed and unknown-user tokens all look the same to the client
    code = "InvalidToken"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class AuthenticationRequired(SupportError):
    code = "AuthenticationRequired"

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AlreadyAuthenticated(SupportError):
    code = "AlreadyAuthenticated"

    def __init__(self, message: str = "Session is already authenticated"):
        super().__init__(message)


class NotAuthorized(SupportError):
    code = "NotAuthorized"


class ConversationNotFound(SupportError):
    code = "ConversationNotFound"

    def __init__(self, conversation_id: Any):
        super().__init__("Conversation not found", details={"conversationId": conversation_id})
        self.conversation_id = conversation_id


class PersistenceFailure(SupportError):
    code = "PersistenceFailure"


class MalformedFrame(SupportError):
    code = "MalformedFrame"


class SuggestionServiceFailure(SupportError):
    code = "SuggestionServiceFailure"


class DuplicateSession(SupportError):
    code = "DuplicateSession"

    def __init__(self, identity: int):
        super().__init__(f"Identity {identity} already holds a live session")
        self.identity = identity


__all__ = [
    "SupportError",
    "AuthenticationFailure",
    "AuthenticationRequired",
    "AlreadyAuthenticated",
    "NotAuthorized",
    "ConversationNotFound",
    "PersistenceFailure",
    "MalformedFrame",
    "SuggestionServiceFailure",
    "DuplicateSession",
]
