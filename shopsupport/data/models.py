"""Typed records returned by the persistence store.

Wire dumps use camelCase (``model_dump(by_alias=True, mode="json")``) so
they can be embedded in outbound frames unchanged.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SenderType(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"
    AI = "ai"


class ConversationStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    RESOLVED = "resolved"
    CLOSED = "closed"


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class User(_Record):
    id: int
    username: str
    email: Optional[str] = None
    role: str = "agent"
    is_online: bool = False


class Customer(_Record):
    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    total_orders: int = 0
    total_spent: str = "0"


class Conversation(_Record):
    id: int
    customer_id: int
    assigned_agent_id: Optional[int] = None
    status: ConversationStatus = ConversationStatus.WAITING
    priority: str = "normal"
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Message(_Record):
    id: int
    conversation_id: int
    sender_id: Optional[int] = None
    sender_type: SenderType
    content: str
    message_type: str = "text"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class AISuggestion(_Record):
    text: str
    confidence: float = 0.0
    category: str = "support"
