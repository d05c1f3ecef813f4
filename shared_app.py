# ==============================================================================
# FILE: shared_app.py
# DESCRIPTION: FastAPI app - support WebSocket plus the few HTTP routes that
#              drive the session layer (presence, assignment, announcements)
# ==============================================================================
import os
import sys
from datetime import datetime, UTC
from pathlib import Path
from typing import Optional

# Ensure project root is on Python path
sys.path.insert(0, str(Path(__file__).parent))

from fastapi import Depends, FastAPI, HTTPException, WebSocket
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.middleware.cors import CORSMiddleware

from shopsupport import __version__
from shopsupport.ai.suggestions import OpenAISuggestionService, SuggestionService
from shopsupport.auth.dependencies import UserPrincipal, require_any_role, require_staff
from shopsupport.core_config import SessionConfig
from shopsupport.data.store import MongoSupportStore, SupportStore
from shopsupport.transport.support_transport import SupportTransport
from logs.logging_config import (
    get_core_logger,
    setup_development_logging,
    setup_production_logging,
)

# Setup logging based on environment ASAP (before any KV/DB work)
env = os.getenv("ENVIRONMENT", "development").lower()
if env == "production":
    setup_production_logging()
else:
    setup_development_logging()

logger = get_core_logger("shopsupport.app")
logger.info(f"SERVER_STARTUP_INIT: Starting ShopSupport in {env} mode")


class AssignRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    agent_id: int


def create_app(
    store: Optional[SupportStore] = None,
    suggestion_service: Optional[SuggestionService] = None,
    session_config: Optional[SessionConfig] = None,
) -> FastAPI:
    """Build the application around one SupportTransport instance."""
    app = FastAPI(
        title="ShopSupport Realtime",
        description="Real-time session and broadcast layer for customer support chat",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        # Storefront widgets are embedded on arbitrary shop domains
        allow_origin_regex=r".*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = store if store is not None else MongoSupportStore()
    if suggestion_service is None:
        suggestion_service = OpenAISuggestionService()
    transport = SupportTransport(store, suggestion_service, session_config=session_config)
    app.state.transport = transport
    app.state.store = store

    @app.on_event("shutdown")
    async def shutdown():
        """Cleanup on shutdown"""
        shutdown_start = datetime.now(UTC)
        logger.info("🛑 Shutting down server...")
        try:
            await transport.aclose()
            if isinstance(store, MongoSupportStore):
                store.close()
        except Exception as e:
            logger.error(f"SERVER_SHUTDOWN_FAILED: {e}")
            return
        shutdown_time = (datetime.now(UTC) - shutdown_start).total_seconds() * 1000
        logger.info(f"✅ Shutdown complete ({shutdown_time:.1f}ms)")

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "connections": transport.connection_count}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Support chat WebSocket for staff dashboards and storefront widgets."""
        await transport.handle_websocket(websocket)

    @app.get("/api/agents/online")
    async def online_agents(user: UserPrincipal = Depends(require_staff)):
        return {"agents": transport.online_staff()}

    @app.put("/api/conversations/{conversation_id}/assign")
    async def assign_conversation(
        conversation_id: int,
        body: AssignRequest,
        user: UserPrincipal = Depends(require_any_role(["manager", "admin"])),
    ):
        try:
            conversation = await store.assign_conversation(conversation_id, body.agent_id)
            agent = await store.get_user(body.agent_id) if conversation is not None else None
        except Exception as e:
            logger.error(f"❌ Assignment of conversation {conversation_id} failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to assign conversation")
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")

        delivered = await transport.notify_conversation_assigned(
            conversation_id, body.agent_id, agent.username if agent else None,
        )
        logger.info(f"📌 Conversation {conversation_id} assigned to {body.agent_id} by {user.username} ({delivered} notified)")
        return conversation.to_wire()

    @app.post("/api/conversations/{conversation_id}/announce")
    async def announce_conversation(conversation_id: int, user: UserPrincipal = Depends(require_staff)):
        try:
            conversation = await store.get_conversation(conversation_id)
        except Exception as e:
            logger.error(f"❌ Conversation lookup failed for {conversation_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to load conversation")
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        delivered = await transport.notify_new_conversation(conversation_id)
        return {"conversationId": conversation_id, "delivered": delivered}

    return app


app = create_app()
