"""Persistence collaborator for the session layer.

Contains:
  * SupportStore (the interface the session layer consumes)
  * MongoSupportStore (motor-backed implementation with integer ids)
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pymongo import ReturnDocument
from opentelemetry import trace

from shopsupport.core_config import get_mongo_client, get_mongo_db_name
from shopsupport.data.models import Conversation, Customer, Message, User
from logs.logging_config import get_core_logger

logger = get_core_logger("store")
tracer = trace.get_tracer(__name__)


class SupportStore(Protocol):
    """Durable store consumed by the session layer. Owns its own consistency."""

    async def create_message(
        self,
        conversation_id: int,
        sender_id: Optional[int],
        sender_type: str,
        content: str,
        message_type: str = "text",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message: ...

    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]: ...

    async def get_user(self, user_id: int) -> Optional[User]: ...

    async def get_customer(self, customer_id: int) -> Optional[Customer]: ...

    async def update_user_online_status(self, user_id: int, is_online: bool) -> None: ...

    async def get_recent_messages(self, conversation_id: int, limit: int) -> List[Message]: ...

    async def update_conversation_status(self, conversation_id: int, status: str) -> Optional[Conversation]: ...

    async def assign_conversation(self, conversation_id: int, agent_id: int) -> Optional[Conversation]: ...


def _from_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    data = dict(doc)
    data["id"] = data.pop("_id")
    return data


class MongoSupportStore:
    """MongoDB implementation of SupportStore (lazy client init)."""

    def __init__(self, client: Optional[Any] = None, db_name: Optional[str] = None):
        self.client: Optional[Any] = client
        self.db = None
        self._db_name = db_name or get_mongo_db_name()
        self._init_lock = asyncio.Lock()
        logger.info("MongoSupportStore created (lazy init)")

    async def _ensure_client(self) -> None:
        if self.db is not None:
            return
        async with self._init_lock:
            if self.db is not None:
                return
            if self.client is None:
                self.client = get_mongo_client()
            db = self.client[self._db_name]
            try:
                await db["messages"].create_index([("conversation_id", 1), ("_id", -1)], name="idx_conv_msg_desc")
                await db["conversations"].create_index("assigned_agent_id", name="idx_assigned_agent")
            except Exception as e:  # pragma: no cover
                logger.debug(f"index ensure skipped: {e}")
            self.db = db

    async def _coll(self, name: str):
        await self._ensure_client()
        assert self.db is not None
        return self.db[name]

    async def _next_id(self, sequence: str) -> int:
        counters = await self._coll("counters")
        doc = await counters.find_one_and_update(
            {"_id": sequence},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["value"])

    # Messages -----------------------------------------------------------
    async def create_message(
        self,
        conversation_id: int,
        sender_id: Optional[int],
        sender_type: str,
        content: str,
        message_type: str = "text",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        with tracer.start_as_current_span("store.create_message") as span:
            span.set_attribute("conversation_id", conversation_id)
            span.set_attribute("sender_type", str(sender_type))
            messages = await self._coll("messages")
            now = datetime.now(timezone.utc)
            doc = {
                "_id": await self._next_id("messages"),
                "conversation_id": conversation_id,
                "sender_id": sender_id,
                "sender_type": str(getattr(sender_type, "value", sender_type)),
                "content": content,
                "message_type": message_type,
                "metadata": metadata or {},
                "created_at": now,
            }
            await messages.insert_one(doc)
            conversations = await self._coll("conversations")
            await conversations.update_one({"_id": conversation_id}, {"$set": {"updated_at": now}})
            logger.debug(f"Persisted message {doc['_id']} in conversation {conversation_id}")
            return Message(**_from_doc(doc))

    async def get_recent_messages(self, conversation_id: int, limit: int) -> List[Message]:
        messages = await self._coll("messages")
        cursor = messages.find({"conversation_id": conversation_id}).sort("_id", -1).limit(int(limit))
        docs = await cursor.to_list(length=int(limit))
        return [Message(**_from_doc(d)) for d in reversed(docs)]

    # Conversations ------------------------------------------------------
    async def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        conversations = await self._coll("conversations")
        doc = await conversations.find_one({"_id": conversation_id})
        return Conversation(**_from_doc(doc)) if doc else None

    async def _update_conversation(self, conversation_id: int, changes: Dict[str, Any]) -> Optional[Conversation]:
        conversations = await self._coll("conversations")
        doc = await conversations.find_one_and_update(
            {"_id": conversation_id},
            {"$set": {**changes, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        return Conversation(**_from_doc(doc)) if doc else None

    async def update_conversation_status(self, conversation_id: int, status: str) -> Optional[Conversation]:
        with tracer.start_as_current_span("store.update_conversation_status"):
            return await self._update_conversation(conversation_id, {"status": status})

    async def assign_conversation(self, conversation_id: int, agent_id: int) -> Optional[Conversation]:
        with tracer.start_as_current_span("store.assign_conversation"):
            return await self._update_conversation(conversation_id, {"assigned_agent_id": agent_id, "status": "active"})

    # Users / customers --------------------------------------------------
    async def get_user(self, user_id: int) -> Optional[User]:
        users = await self._coll("users")
        doc = await users.find_one({"_id": user_id}, {"password": 0})
        return User(**_from_doc(doc)) if doc else None

    async def get_customer(self, customer_id: int) -> Optional[Customer]:
        customers = await self._coll("customers")
        doc = await customers.find_one({"_id": customer_id})
        return Customer(**_from_doc(doc)) if doc else None

    async def update_user_online_status(self, user_id: int, is_online: bool) -> None:
        users = await self._coll("users")
        await users.update_one(
            {"_id": user_id},
            {"$set": {"is_online": bool(is_online), "last_seen": datetime.now(timezone.utc)}},
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            logger.info("MongoSupportStore client closed")
        self.db = None
