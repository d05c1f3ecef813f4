"""
Pytest configuration for ShopSupport tests.

Ensures the project root is in the Python path for imports and provides
in-memory stand-ins for the WebSocket, the persistence store and the AI
collaborator.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fastapi import WebSocketDisconnect

from shopsupport.auth.config import AuthConfig
from shopsupport.auth.tokens import TokenValidator, issue_token
from shopsupport.core_config import SessionConfig
from shopsupport.data.models import AISuggestion, Conversation, Customer, Message, User
from shopsupport.transport.connection_handler import ConnectionHandler
from shopsupport.transport.support_transport import SupportTransport

TEST_AUTH_CONFIG = AuthConfig(enabled=True, jwt_secret="test-secret-for-shopsupport")

_CLOSE = object()


class FakeWebSocket:
    """Minimal stand-in for a FastAPI WebSocket."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.accepted = False
        self.closed = False
        self.close_code: Optional[int] = None
        self.broken = False
        self._inbound: asyncio.Queue = asyncio.Queue()

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.broken or self.closed:
            raise RuntimeError("websocket is closed")
        self.sent.append(data)

    async def receive_text(self) -> str:
        item = await self._inbound.get()
        if item is _CLOSE:
            raise WebSocketDisconnect(code=self.close_code or 1000)
        return item

    async def close(self, code: int = 1000, reason: Optional[str] = None):
        if not self.closed:
            self.closed = True
            self.close_code = code
            self._inbound.put_nowait(_CLOSE)

    def feed(self, frame: Any) -> None:
        self._inbound.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def of_type(self, frame_type: str) -> List[Dict[str, Any]]:
        return [f for f in self.sent if f.get("type") == frame_type]

    def types(self) -> List[str]:
        return [f.get("type") for f in self.sent]


class FakeStore:
    """In-memory SupportStore."""

    def __init__(self):
        self.users: Dict[int, User] = {}
        self.customers: Dict[int, Customer] = {}
        self.conversations: Dict[int, Conversation] = {}
        self.messages: List[Message] = []
        self.online: Dict[int, bool] = {}
        self.fail_create = False
        self.fail_lookup = False
        self.create_calls = 0

    async def create_message(self, conversation_id, sender_id, sender_type, content, message_type="text", metadata=None):
        self.create_calls += 1
        if self.fail_create:
            raise RuntimeError("database unavailable")
        msg = Message(
            id=len(self.messages) + 1,
            conversation_id=conversation_id,
            sender_id=sender_id,
            sender_type=sender_type,
            content=content,
            message_type=message_type,
            metadata=metadata or {},
        )
        self.messages.append(msg)
        return msg

    async def get_conversation(self, conversation_id):
        if self.fail_lookup:
            raise RuntimeError("database unavailable")
        return self.conversations.get(conversation_id)

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_customer(self, customer_id):
        return self.customers.get(customer_id)

    async def update_user_online_status(self, user_id, is_online):
        self.online[user_id] = is_online

    async def get_recent_messages(self, conversation_id, limit):
        msgs = [m for m in self.messages if m.conversation_id == conversation_id]
        return msgs[-limit:]

    async def update_conversation_status(self, conversation_id, status):
        conv = self.conversations.get(conversation_id)
        if conv is None:
            return None
        conv = conv.model_copy(update={"status": status})
        self.conversations[conversation_id] = conv
        return conv

    async def assign_conversation(self, conversation_id, agent_id):
        conv = self.conversations.get(conversation_id)
        if conv is None:
            return None
        conv = conv.model_copy(update={"assigned_agent_id": agent_id, "status": "active"})
        self.conversations[conversation_id] = conv
        return conv


class FakeSuggestionService:
    """Scriptable AI collaborator."""

    def __init__(self):
        self.suggestions: List[AISuggestion] = [
            AISuggestion(text="Let me check your order status.", confidence=0.9, category="order"),
        ]
        self.auto_response: Optional[str] = None
        self.error: Optional[Exception] = None
        self.delay: float = 0.0
        self.suggestion_calls: List[Dict[str, Any]] = []
        self.auto_calls: List[Dict[str, Any]] = []

    async def generate_suggestions(self, message, history, customer_profile=None):
        self.suggestion_calls.append({"message": message, "history": list(history), "profile": customer_profile})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return list(self.suggestions)

    async def generate_auto_response(self, message, customer_profile=None):
        self.auto_calls.append({"message": message, "profile": customer_profile})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.auto_response


def make_token(user_id: int, username: str, role: str, **kwargs) -> str:
    return issue_token(user_id, username, role, config=TEST_AUTH_CONFIG, **kwargs)


@pytest.fixture
def store() -> FakeStore:
    s = FakeStore()
    s.users = {
        1: User(id=1, username="alice", role="admin"),
        2: User(id=2, username="bob", role="agent"),
        3: User(id=3, username="carol", role="agent"),
        4: User(id=4, username="dana", role="manager"),
    }
    s.customers = {10: Customer(id=10, name="Eve", email="eve@example.com")}
    s.conversations = {
        7: Conversation(id=7, customer_id=10, assigned_agent_id=2, status="active"),
        8: Conversation(id=8, customer_id=10, assigned_agent_id=3, status="waiting"),
    }
    return s


@pytest.fixture
def ai() -> FakeSuggestionService:
    return FakeSuggestionService()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(heartbeat_interval=0, suggestion_timeout=1.0)


@pytest.fixture
async def transport(store, ai, session_config):
    t = SupportTransport(
        store,
        ai,
        token_validator=TokenValidator(TEST_AUTH_CONFIG),
        session_config=session_config,
    )
    yield t
    await t.aclose()


@pytest.fixture
def connect(transport):
    """Open a session on the transport without running the read loop."""

    def _connect() -> ConnectionHandler:
        ws = FakeWebSocket()
        handler = ConnectionHandler(transport, ws)
        handler.session = transport.registry.open(ws)
        return handler

    return _connect


async def send(handler: ConnectionHandler, frame: Dict[str, Any]) -> None:
    await handler.handle_text(json.dumps(frame))


async def login(handler: ConnectionHandler, user_id: int, username: str, role: str) -> None:
    await send(handler, {"type": "authenticate", "token": make_token(user_id, username, role)})
