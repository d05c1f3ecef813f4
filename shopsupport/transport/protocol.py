# ==============================================================================
# FILE: shopsupport/transport/protocol.py
# DESCRIPTION: Wire protocol - inbound frame models and outbound envelopes
# ==============================================================================
"""JSON frames exchanged over the support WebSocket.

Every frame carries a ``type`` discriminator. Inbound frames with an
unrecognized type parse to ``None`` and are ignored by the handler; frames
that are not JSON objects, lack a type, or miss required fields raise
``MalformedFrame``.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from shopsupport.data.models import ConversationStatus
from shopsupport.errors import MalformedFrame


class InboundFrame(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    type: str


class AuthenticateFrame(InboundFrame):
    type: Literal["authenticate"]
    token: Optional[str] = None
    # Legacy clients identify by user id alone
    user_id: Optional[int] = None

    @model_validator(mode="after")
    def _require_credential(self) -> "AuthenticateFrame":
        if not self.token and self.user_id is None:
            raise ValueError("token required")
        return self


class JoinConversationFrame(InboundFrame):
    type: Literal["join_conversation"]
    conversation_id: int


class LeaveConversationFrame(InboundFrame):
    type: Literal["leave_conversation"]
    conversation_id: int


class SendMessageFrame(InboundFrame):
    type: Literal["send_message"]
    conversation_id: int
    content: str = Field(min_length=1)
    message_type: str = "text"


class CustomerMessageFrame(InboundFrame):
    type: Literal["customer_message"]
    conversation_id: int
    content: str = Field(min_length=1)
    customer_data: Optional[Dict[str, Any]] = None


class TypingFrame(InboundFrame):
    type: Literal["typing_start", "typing_stop"]
    conversation_id: int


class UpdateStatusFrame(InboundFrame):
    type: Literal["update_status"]
    conversation_id: int
    status: ConversationStatus


Frame = Union[
    AuthenticateFrame,
    JoinConversationFrame,
    LeaveConversationFrame,
    SendMessageFrame,
    CustomerMessageFrame,
    TypingFrame,
    UpdateStatusFrame,
]

FRAME_MODELS: Dict[str, Type[InboundFrame]] = {
    "authenticate": AuthenticateFrame,
    "join_conversation": JoinConversationFrame,
    "leave_conversation": LeaveConversationFrame,
    "send_message": SendMessageFrame,
    "customer_message": CustomerMessageFrame,
    "typing_start": TypingFrame,
    "typing_stop": TypingFrame,
    "update_status": UpdateStatusFrame,
}


def parse_frame(raw: Union[str, bytes, Dict[str, Any]]) -> Optional[InboundFrame]:
    """Parse one inbound frame. Returns None for unrecognized frame types."""
    if isinstance(raw, dict):
        data: Any = raw
    else:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            raise MalformedFrame("Invalid message format")
    if not isinstance(data, dict):
        raise MalformedFrame("Invalid message format")

    frame_type = data.get("type")
    if not isinstance(frame_type, str) or not frame_type:
        raise MalformedFrame("Frame type required")

    model = FRAME_MODELS.get(frame_type)
    if model is None:
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) or "frame" for err in e.errors()})
        raise MalformedFrame(f"Invalid {frame_type} frame", details={"fields": fields})


# ------------------------------------------------------------------------------
# Outbound envelopes
# ------------------------------------------------------------------------------
OUTBOUND_TYPES = frozenset({
    "authenticated",
    "error",
    "joined_conversation",
    "left_conversation",
    "new_message",
    "new_customer_message",
    "message_sent",
    "ai_suggestions",
    "typing_start",
    "typing_stop",
    "agent_joined",
    "agent_status_changed",
    "conversation_assigned",
    "conversation_status_updated",
    "new_conversation_activity",
    "new_conversation",
    "ping",
})


def envelope(frame_type: str, **fields: Any) -> Dict[str, Any]:
    """Build an outbound frame; every frame is stamped with a UTC timestamp."""
    if frame_type not in OUTBOUND_TYPES:
        raise ValueError(f"Unknown outbound frame type: {frame_type}")
    return {"type": frame_type, **fields, "timestamp": datetime.now(timezone.utc).isoformat()}
