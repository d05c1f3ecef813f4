import pytest
from jsonschema import validate

from conftest import login, send
from event_schemas import get_schema

# NOTE: This test drives one realistic support exchange through the transport
# and validates every frame any socket received against the documented
# payload contract. It keeps the AI collaborator scripted so the run is fast
# and deterministic.

EXPECTED_TYPES = {
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
    "conversation_status_updated",
    "new_conversation_activity",
}


@pytest.mark.asyncio
async def test_websocket_payload_contract(transport, connect, ai):
    ai.auto_response = "Thanks for reaching out! Your order is on its way."
    bob, dana, widget = connect(), connect(), connect()

    await login(bob, 2, "bob", "agent")
    await login(dana, 4, "dana", "manager")
    await send(widget, {"type": "join_conversation", "conversationId": 7})
    await send(bob, {"type": "join_conversation", "conversationId": 7})
    await send(dana, {"type": "join_conversation", "conversationId": 7})
    await send(widget, {"type": "customer_message", "conversationId": 7, "content": "Where is my order?"})
    await transport.coordinator.wait_idle()
    await send(bob, {"type": "typing_start", "conversationId": 7})
    await send(bob, {"type": "typing_stop", "conversationId": 7})
    await send(bob, {"type": "send_message", "conversationId": 7, "content": "It ships today."})
    await send(dana, {"type": "update_status", "conversationId": 7, "status": "resolved"})
    await send(dana, {"type": "leave_conversation", "conversationId": 7})
    await send(widget, {"type": "send_message", "conversationId": 404, "content": "?"})

    frames = bob.websocket.sent + dana.websocket.sent + widget.websocket.sent
    seen = {f["type"] for f in frames}
    assert EXPECTED_TYPES <= seen, f"missing frame types: {EXPECTED_TYPES - seen}"

    for frame in frames:
        schema = get_schema(frame["type"])
        assert schema is not None, f"no schema for {frame['type']}"
        validate(instance=frame, schema=schema)
