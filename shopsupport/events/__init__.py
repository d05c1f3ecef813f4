# ==============================================================================
# FILE: shopsupport/events/__init__.py
# DESCRIPTION: Events package initialization - session event bus exports
# ==============================================================================

from .session_events import (
    SessionEventBus,
    SessionEvent,
    BusinessLogEvent,
    PresenceChangedEvent,
    SessionClosedEvent,
)

__all__ = [
    "SessionEventBus",
    "SessionEvent",
    "BusinessLogEvent",
    "PresenceChangedEvent",
    "SessionClosedEvent",
]
