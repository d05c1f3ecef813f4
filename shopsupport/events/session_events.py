# ==============================================================================
# FILE: shopsupport/events/session_events.py
# DESCRIPTION: Typed publish/subscribe bus for session-layer domain events
# ==============================================================================

"""Session event bus.

Subscribers register per event class and get back an unsubscribe handle,
so components can detach cleanly on teardown:

    unsubscribe = bus.subscribe(PresenceChangedEvent, on_presence)
    ...
    unsubscribe()

Publishing awaits each subscriber in registration order. A failing
subscriber is logged and counted; it never stops delivery to the others
and never propagates to the publisher.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar, Union

from logs.logging_config import get_core_logger

logger = get_core_logger("session_events")


@dataclass
class BusinessLogEvent:
    log_event_type: str
    description: str
    context: Dict[str, Any] = field(default_factory=dict)
    level: str = "INFO"
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])


@dataclass
class PresenceChangedEvent:
    user_id: int
    username: str
    role: str
    is_online: bool
    session_handle: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class SessionClosedEvent:
    session_handle: str
    user_id: Optional[int]
    conversations_left: List[int] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


SessionEvent = Union[BusinessLogEvent, PresenceChangedEvent, SessionClosedEvent]
E = TypeVar("E")
Subscriber = Callable[[Any], Union[Awaitable[None], None]]


async def log_business_event(event: BusinessLogEvent) -> None:
    lvl = getattr(logger, event.level.lower(), logger.info)
    lvl(f"[BUSINESS] {event.log_event_type}: {event.description} context={event.context}")


class SessionEventBus:
    def __init__(self):
        self._subscribers: Dict[type, List[Subscriber]] = {}
        self.metrics: Dict[str, Any] = {
            "events_published": 0,
            "subscriber_failures": 0,
            "created": datetime.now(UTC).isoformat(),
        }
        self.subscribe(BusinessLogEvent, log_business_event)

    def subscribe(self, event_type: Type[E], callback: Callable[[E], Any]) -> Callable[[], None]:
        """Register callback for event_type; returns an idempotent unsubscribe handle."""
        subscribers = self._subscribers.setdefault(event_type, [])
        subscribers.append(callback)

        def unsubscribe() -> None:
            try:
                subscribers.remove(callback)
            except ValueError:
                pass

        return unsubscribe

    def subscriber_count(self, event_type: type) -> int:
        return len(self._subscribers.get(event_type, []))

    async def publish(self, event: SessionEvent) -> int:
        """Deliver event to current subscribers; returns how many handled it without error."""
        self.metrics["events_published"] += 1
        delivered = 0
        # Snapshot so callbacks may unsubscribe while we iterate
        for callback in list(self._subscribers.get(type(event), [])):
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                self.metrics["subscriber_failures"] += 1
                logger.error(f"Event subscriber failed for {type(event).__name__}: {e}", exc_info=True)
        return delivered

    async def emit_business_event(self, log_event_type: str, description: str, level: str = "INFO", **context: Any) -> None:
        await self.publish(BusinessLogEvent(log_event_type, description, context=context, level=level))
