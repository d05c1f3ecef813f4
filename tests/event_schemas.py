from __future__ import annotations

"""JSON Schemas for outbound WebSocket frames used by the dashboard and widget.

These are intentionally minimal and forward-compatible: we only pin
fields the clients rely on so backend additions don't break tests.
"""

_TIMESTAMP = {"type": "string"}


def _frame(frame_type: str, required: list, properties: dict) -> dict:
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "required": ["type", "timestamp", *required],
        "properties": {
            "type": {"const": frame_type},
            "timestamp": _TIMESTAMP,
            **properties,
        },
        "additionalProperties": True,
    }


MESSAGE_SCHEMA = {
    "type": "object",
    "required": ["id", "conversationId", "senderType", "content", "messageType", "createdAt"],
    "properties": {
        "id": {"type": "integer"},
        "conversationId": {"type": "integer"},
        "senderId": {"type": ["integer", "null"]},
        "senderType": {"enum": ["customer", "agent", "system", "ai"]},
        "content": {"type": "string"},
        "messageType": {"type": "string"},
        "metadata": {"type": "object"},
        "createdAt": {"type": "string"},
        "senderName": {"type": ["string", "null"]},
    },
    "additionalProperties": True,
}

SCHEMAS = {
    "authenticated": _frame("authenticated", ["user"], {
        "user": {
            "type": "object",
            "required": ["id", "username", "role"],
            "properties": {
                "id": {"type": "integer"},
                "username": {"type": "string"},
                "role": {"enum": ["agent", "manager", "admin"]},
            },
        },
    }),
    "error": _frame("error", ["error", "code"], {
        "error": {"type": "string"},
        "code": {"type": "string"},
        "details": {"type": "object"},
    }),
    "joined_conversation": _frame("joined_conversation", ["conversationId"], {
        "conversationId": {"type": "integer"},
    }),
    "left_conversation": _frame("left_conversation", ["conversationId"], {
        "conversationId": {"type": "integer"},
    }),
    "new_message": _frame("new_message", ["message"], {
        "message": {**MESSAGE_SCHEMA, "required": [*MESSAGE_SCHEMA["required"], "senderName"]},
    }),
    "new_customer_message": _frame("new_customer_message", ["message"], {
        "message": MESSAGE_SCHEMA,
    }),
    "message_sent": _frame("message_sent", ["messageId", "conversationId"], {
        "messageId": {"type": "integer"},
        "conversationId": {"type": "integer"},
    }),
    "ai_suggestions": _frame("ai_suggestions", ["conversationId", "suggestions"], {
        "conversationId": {"type": "integer"},
        "suggestions": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["text", "confidence", "category"],
                "properties": {
                    "text": {"type": "string"},
                    "confidence": {"type": "number"},
                    "category": {"type": "string"},
                },
            },
        },
    }),
    "typing_start": _frame("typing_start", ["conversationId", "userId"], {
        "conversationId": {"type": "integer"},
        "userId": {"type": ["integer", "null"]},
        "username": {"type": ["string", "null"]},
    }),
    "agent_joined": _frame("agent_joined", ["conversationId", "agentId", "agentName"], {
        "agentId": {"type": "integer"},
        "agentName": {"type": "string"},
    }),
    "agent_status_changed": _frame("agent_status_changed", ["userId", "username", "isOnline"], {
        "userId": {"type": "integer"},
        "username": {"type": "string"},
        "isOnline": {"type": "boolean"},
    }),
    "conversation_status_updated": _frame("conversation_status_updated", ["conversationId", "status", "updatedBy"], {
        "status": {"enum": ["waiting", "active", "resolved", "closed"]},
    }),
    "new_conversation_activity": _frame("new_conversation_activity", ["conversationId", "activity"], {
        "activity": {"const": "new_message"},
    }),
}
SCHEMAS["typing_stop"] = {
    **SCHEMAS["typing_start"],
    "properties": {**SCHEMAS["typing_start"]["properties"], "type": {"const": "typing_stop"}},
}


def get_schema(event_type: str):
    return SCHEMAS.get(event_type)
