# ==============================================================================
# FILE: shopsupport/transport/suggestion_coordinator.py
# DESCRIPTION: Detached AI suggestion / auto-response work triggered by
#              customer-authored messages
# ==============================================================================
"""Suggestion coordinator.

Customer messages are acknowledged and broadcast first; the AI work runs
afterwards as detached asyncio tasks. Two independent tasks are started per
message:

* suggestions -> ``ai_suggestions`` to every connected staff session
* auto-response -> persisted as an ``ai`` message, then ``new_message`` to
  the conversation

Neither task ever reports an error to a client. Failures (including
timeouts) are logged and dropped, with no retry.
"""

import asyncio
from typing import Any, Dict, List, Optional, Set

from shopsupport.ai.suggestions import SuggestionService
from shopsupport.core_config import SessionConfig
from shopsupport.data.models import Conversation, SenderType
from shopsupport.data.store import SupportStore
from shopsupport.transport.broadcast import BroadcastDispatcher
from shopsupport.transport.protocol import envelope
from logs.logging_config import get_core_logger, get_session_logger, log_operation

logger = get_core_logger("suggestion_coordinator")

AI_SENDER_NAME = "AI Assistant"


class SuggestionCoordinator:
    def __init__(
        self,
        store: SupportStore,
        service: Optional[SuggestionService],
        dispatcher: BroadcastDispatcher,
        config: SessionConfig,
    ):
        self._store = store
        self._service = service
        self._dispatcher = dispatcher
        self._config = config
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(
        self,
        conversation: Conversation,
        content: str,
        customer_data: Optional[Dict[str, Any]] = None,
    ) -> List[asyncio.Task]:
        """Start the AI work for one customer message without awaiting it."""
        if self._service is None or self._closed:
            return []
        started: List[asyncio.Task] = []
        if self._config.suggestions_enabled:
            started.append(self._spawn(self._deliver_suggestions(conversation, content, customer_data), conversation.id))
        if self._config.auto_response_enabled:
            started.append(self._spawn(self._deliver_auto_response(conversation, content, customer_data), conversation.id))
        return started

    def _spawn(self, coro, conversation_id: int) -> asyncio.Task:
        task = asyncio.create_task(coro, name=f"ai-{conversation_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _customer_profile(self, conversation: Conversation, customer_data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        profile: Dict[str, Any] = {}
        customer = await self._store.get_customer(conversation.customer_id)
        if customer is not None:
            profile.update(customer.to_wire())
        if customer_data:
            profile.update(customer_data)
        return profile or None

    async def _history(self, conversation_id: int) -> List[str]:
        messages = await self._store.get_recent_messages(conversation_id, self._config.history_window)
        return [f"{m.sender_type}: {m.content}" for m in messages]

    async def _deliver_suggestions(self, conversation: Conversation, content: str, customer_data: Optional[Dict[str, Any]]) -> None:
        clog = get_session_logger(conversation_id=conversation.id, task="suggestions")
        try:
            with log_operation(clog, "ai_suggestions"):
                profile = await self._customer_profile(conversation, customer_data)
                history = await self._history(conversation.id)
                suggestions = await asyncio.wait_for(
                    self._service.generate_suggestions(content, history, profile),
                    timeout=self._config.suggestion_timeout,
                )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            clog.warning(f"⏱️ Suggestion generation timed out after {self._config.suggestion_timeout}s")
            return
        except Exception as e:
            clog.error(f"❌ Suggestion generation failed: {e}")
            return

        if not suggestions:
            clog.debug("No suggestions produced")
            return
        frame = envelope(
            "ai_suggestions",
            conversationId=conversation.id,
            suggestions=[s.to_wire() for s in suggestions],
        )
        delivered = await self._dispatcher.to_staff(frame)
        clog.info(f"🤖 Delivered {len(suggestions)} suggestions to {delivered} staff sessions")

    async def _deliver_auto_response(self, conversation: Conversation, content: str, customer_data: Optional[Dict[str, Any]]) -> None:
        clog = get_session_logger(conversation_id=conversation.id, task="auto_response")
        try:
            with log_operation(clog, "ai_auto_response"):
                profile = await self._customer_profile(conversation, customer_data)
                reply = await asyncio.wait_for(
                    self._service.generate_auto_response(content, profile),
                    timeout=self._config.suggestion_timeout,
                )
            if not reply:
                clog.debug("Auto-response declined; leaving conversation to staff")
                return
            message = await self._store.create_message(
                conversation.id,
                None,
                SenderType.AI.value,
                reply,
                "text",
                metadata={"isAutoResponse": True},
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            clog.warning(f"⏱️ Auto-response timed out after {self._config.suggestion_timeout}s")
            return
        except Exception as e:
            clog.error(f"❌ Auto-response failed: {e}")
            return

        frame = envelope("new_message", message={**message.to_wire(), "senderName": AI_SENDER_NAME})
        delivered = await self._dispatcher.to_conversation(conversation.id, frame)
        clog.info(f"🤖 Auto-response {message.id} delivered to {delivered} sessions")

    async def wait_idle(self) -> None:
        """Wait for every in-flight AI task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"🛑 Suggestion coordinator closed ({len(tasks)} tasks cancelled)")
