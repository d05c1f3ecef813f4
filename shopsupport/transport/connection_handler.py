# ==============================================================================
# FILE: shopsupport/transport/connection_handler.py
# DESCRIPTION: Per-connection protocol state machine. Reads frames from one
#              WebSocket, applies them against the shared indexes, replies
#              with errors to the sender only.
# ==============================================================================
"""Connection handler.

One handler per WebSocket. Frames of a single connection are processed
strictly in order: persistence and broadcast for one frame complete (or
fail) before the next frame of that connection is read. Different
connections interleave freely on the event loop.

States::

    CONNECTED --authenticate--> AUTHENTICATED --join--> in conversation C
        |                            |                      |
        +----------------------------+---- close ----------> CLOSED

Widget (customer) connections never authenticate; they address a
conversation by id on each frame.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from shopsupport.data.models import Conversation, Message, SenderType
from shopsupport.errors import (
    AuthenticationRequired,
    ConversationNotFound,
    NotAuthorized,
    PersistenceFailure,
    SupportError,
)
from shopsupport.transport.protocol import (
    AuthenticateFrame,
    CustomerMessageFrame,
    InboundFrame,
    JoinConversationFrame,
    LeaveConversationFrame,
    SendMessageFrame,
    TypingFrame,
    UpdateStatusFrame,
    envelope,
    parse_frame,
)
from shopsupport.transport.session_registry import Session
from logs.logging_config import get_core_logger, get_session_logger

if TYPE_CHECKING:
    from shopsupport.transport.support_transport import SupportTransport

logger = get_core_logger("connection_handler")


class ConnectionHandler:
    def __init__(self, transport: "SupportTransport", websocket: WebSocket):
        self.transport = transport
        self.websocket = websocket
        self.session: Optional[Session] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._handlers = {
            "authenticate": self._on_authenticate,
            "join_conversation": self._on_join,
            "leave_conversation": self._on_leave,
            "send_message": self._on_send_message,
            "customer_message": self._on_customer_message,
            "typing_start": self._on_typing,
            "typing_stop": self._on_typing,
            "update_status": self._on_update_status,
        }

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def run(self) -> None:
        """Accept the socket and process frames until the transport closes."""
        await self.websocket.accept()
        self.session = self.transport.registry.open(self.websocket)
        logger.info(f"🔌 WebSocket connected {self.session.describe()}")
        self._start_heartbeat()
        try:
            while True:
                raw = await self.websocket.receive_text()
                await self.handle_text(raw)
        except WebSocketDisconnect as e:
            logger.info(f"🔌 WebSocket disconnected {self.session.describe()} code={e.code}")
        except Exception as e:
            logger.warning(f"WebSocket error for {self.session.describe()}: {e}")
        finally:
            await self._stop_heartbeat()
            await self.transport.disconnect(self.session)

    def _start_heartbeat(self) -> None:
        interval = self.transport.config.heartbeat_interval
        if interval and interval > 0:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(interval))

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"💔 Stopped heartbeat for {self.session.describe()}")

    async def _heartbeat_loop(self, interval: float) -> None:
        """Ping periodically; a failed ping closes the socket so the read loop ends."""
        session = self.session
        while self.transport.registry.is_live(session.handle):
            await asyncio.sleep(interval)
            if not self.transport.registry.is_live(session.handle):
                break
            try:
                await session.send(envelope("ping"))
                logger.debug(f"📡 Sent ping to {session.describe()}")
            except Exception as e:
                logger.warning(f"💔 Heartbeat failed for {session.describe()}: {e}")
                try:
                    await self.websocket.close(code=1011)
                except Exception as close_err:
                    logger.debug(f"Close after failed ping raised: {close_err}")
                break

    # ------------------------------------------------------------------
    # Frame dispatch
    # ------------------------------------------------------------------
    async def handle_text(self, raw: Any) -> None:
        """Process one inbound frame. Errors are answered to this connection only."""
        if self.session.is_closed or not self.transport.registry.is_live(self.session.handle):
            # Evicted or disconnected; CLOSED is terminal
            logger.debug(f"Dropping frame for closed session {self.session.describe()}")
            return
        try:
            frame = parse_frame(raw)
            if frame is None:
                logger.debug(f"Ignoring unknown frame type from {self.session.describe()}")
                return
            await self._handlers[frame.type](frame)
        except SupportError as e:
            logger.info(f"⚠️ {e.code} for {self.session.describe()}: {e.message}")
            await self._reply(e.to_error_frame())
        except Exception as e:
            logger.error(f"❌ Frame handling failed for {self.session.describe()}: {e}", exc_info=True)
            await self._reply(SupportError("Internal server error", code="InternalError").to_error_frame())

    async def _reply(self, frame: Dict[str, Any]) -> None:
        await self.transport.dispatcher.to_session(self.session, frame)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    async def _on_authenticate(self, frame: AuthenticateFrame) -> None:
        session = await self.transport.authenticate_session(self.session, frame)
        if session is None:
            return
        await self._reply(envelope(
            "authenticated",
            user={"id": session.identity, "username": session.display_name, "role": session.role.value},
        ))

    async def _on_join(self, frame: JoinConversationFrame) -> None:
        session = self.session
        conversation_id = frame.conversation_id
        await self.transport.membership.join(session, conversation_id)
        if not self.transport.membership.is_member(session, conversation_id):
            return
        await self._reply(envelope("joined_conversation", conversationId=conversation_id))
        if session.is_staff:
            await self.transport.dispatcher.to_conversation(
                conversation_id,
                envelope("agent_joined", conversationId=conversation_id, agentId=session.identity, agentName=session.display_name),
                exclude=session,
            )

    async def _on_leave(self, frame: LeaveConversationFrame) -> None:
        self.transport.membership.leave(self.session, frame.conversation_id)
        await self._reply(envelope("left_conversation", conversationId=frame.conversation_id))

    async def _on_send_message(self, frame: SendMessageFrame) -> None:
        session = self.session
        if not session.is_staff:
            # Widget path: identity comes from the conversation id alone
            await self._handle_customer_message(frame.conversation_id, frame.content, frame.message_type, None, legacy=True)
            return

        conversation_id = frame.conversation_id
        if not self.transport.membership.is_member(session, conversation_id):
            raise NotAuthorized("Not in this conversation")
        message = await self._persist(conversation_id, session.identity, SenderType.AGENT.value, frame.content, frame.message_type)

        clog = get_session_logger(conversation_id=conversation_id, user_id=session.identity)
        delivered = await self.transport.dispatcher.to_conversation(
            conversation_id,
            envelope("new_message", message={**message.to_wire(), "senderName": session.display_name}),
        )
        await self._reply(envelope("message_sent", messageId=message.id, conversationId=conversation_id))
        clog.info(f"💬 Agent message {message.id} delivered to {delivered} sessions")

    async def _on_customer_message(self, frame: CustomerMessageFrame) -> None:
        await self._handle_customer_message(frame.conversation_id, frame.content, "text", frame.customer_data, legacy=False)

    async def _handle_customer_message(
        self,
        conversation_id: int,
        content: str,
        message_type: str,
        customer_data: Optional[Dict[str, Any]],
        *,
        legacy: bool,
    ) -> None:
        session = self.session
        transport = self.transport
        conversation = await self._load_conversation(conversation_id)
        message = await self._persist(
            conversation_id, None, SenderType.CUSTOMER.value, content, message_type, metadata=customer_data or {},
        )
        session.mark_customer()

        clog = get_session_logger(conversation_id=conversation_id, session=session.handle[:8])
        if legacy:
            sender_name = await self._customer_name(conversation)
            delivered = await transport.dispatcher.to_conversation(
                conversation_id,
                envelope("new_message", message={**message.to_wire(), "senderName": sender_name}),
            )
        else:
            delivered = await transport.dispatcher.to_conversation(
                conversation_id,
                envelope("new_customer_message", message=message.to_wire()),
            )
            await transport.dispatcher.to_staff(
                envelope("new_conversation_activity", conversationId=conversation_id, activity="new_message"),
            )
        clog.info(f"💬 Customer message {message.id} delivered to {delivered} sessions")

        if not session.is_staff:
            transport.coordinator.schedule(conversation, content, customer_data)

    async def _on_typing(self, frame: TypingFrame) -> None:
        session = self.session
        if not self.transport.membership.is_member(session, frame.conversation_id):
            return
        await self.transport.dispatcher.to_conversation(
            frame.conversation_id,
            envelope(frame.type, conversationId=frame.conversation_id, userId=session.identity, username=session.display_name),
            exclude=session,
        )

    async def _on_update_status(self, frame: UpdateStatusFrame) -> None:
        session = self.session
        if not session.is_staff:
            raise AuthenticationRequired()
        status = frame.status.value
        try:
            conversation = await self.transport.store.update_conversation_status(frame.conversation_id, status)
        except Exception as e:
            logger.error(f"❌ Status update failed for conversation {frame.conversation_id}: {e}")
            raise PersistenceFailure("Failed to update conversation status") from e
        if conversation is None:
            raise ConversationNotFound(frame.conversation_id)
        await self.transport.dispatcher.to_staff(envelope(
            "conversation_status_updated",
            conversationId=frame.conversation_id,
            status=status,
            updatedBy=session.display_name,
        ))

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------
    async def _load_conversation(self, conversation_id: int) -> Conversation:
        try:
            conversation = await self.transport.store.get_conversation(conversation_id)
        except Exception as e:
            logger.error(f"❌ Conversation lookup failed for {conversation_id}: {e}")
            raise PersistenceFailure("Failed to load conversation") from e
        if conversation is None:
            raise ConversationNotFound(conversation_id)
        return conversation

    async def _persist(
        self,
        conversation_id: int,
        sender_id: Optional[int],
        sender_type: str,
        content: str,
        message_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        try:
            return await self.transport.store.create_message(
                conversation_id, sender_id, sender_type, content, message_type, metadata=metadata,
            )
        except Exception as e:
            logger.error(f"❌ Failed to persist {sender_type} message for conversation {conversation_id}: {e}")
            raise PersistenceFailure("Failed to send message") from e

    async def _customer_name(self, conversation: Conversation) -> Optional[str]:
        try:
            customer = await self.transport.store.get_customer(conversation.customer_id)
        except Exception as e:
            logger.warning(f"Customer lookup failed for conversation {conversation.id}: {e}")
            return None
        return customer.name if customer is not None else None
