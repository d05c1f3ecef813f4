import pytest

from shopsupport.data.models import ConversationStatus
from shopsupport.errors import MalformedFrame
from shopsupport.transport.protocol import (
    AuthenticateFrame,
    CustomerMessageFrame,
    SendMessageFrame,
    TypingFrame,
    UpdateStatusFrame,
    parse_frame,
)


def test_parse_known_frames():
    frame = parse_frame('{"type": "send_message", "conversationId": 7, "content": "Hi!"}')
    assert isinstance(frame, SendMessageFrame)
    assert frame.conversation_id == 7
    assert frame.message_type == "text"

    frame = parse_frame({"type": "customer_message", "conversationId": 7, "content": "hello", "customerData": {"name": "Eve"}})
    assert isinstance(frame, CustomerMessageFrame)
    assert frame.customer_data == {"name": "Eve"}

    frame = parse_frame({"type": "typing_stop", "conversationId": 3})
    assert isinstance(frame, TypingFrame)
    assert frame.type == "typing_stop"

    frame = parse_frame({"type": "update_status", "conversationId": 3, "status": "closed"})
    assert isinstance(frame, UpdateStatusFrame)
    assert frame.status is ConversationStatus.CLOSED


def test_authenticate_accepts_token_or_legacy_user_id():
    assert parse_frame({"type": "authenticate", "token": "abc"}).token == "abc"
    legacy = parse_frame({"type": "authenticate", "userId": 2})
    assert isinstance(legacy, AuthenticateFrame)
    assert legacy.user_id == 2

    with pytest.raises(MalformedFrame):
        parse_frame({"type": "authenticate"})


def test_unknown_type_parses_to_none():
    assert parse_frame({"type": "mystery", "payload": 1}) is None


def test_extra_fields_are_ignored():
    frame = parse_frame({"type": "join_conversation", "conversationId": 7, "clientVersion": "2.1"})
    assert frame.conversation_id == 7


@pytest.mark.parametrize(
    "raw,message",
    [
        ("not json", "Invalid message format"),
        ("[1, 2]", "Invalid message format"),
        ('{"conversationId": 7}', "Frame type required"),
        ('{"type": ""}', "Frame type required"),
    ],
)
def test_structurally_invalid_frames(raw, message):
    with pytest.raises(MalformedFrame) as exc_info:
        parse_frame(raw)
    assert exc_info.value.message == message
    assert exc_info.value.code == "MalformedFrame"


def test_missing_fields_are_reported():
    with pytest.raises(MalformedFrame) as exc_info:
        parse_frame({"type": "send_message", "conversationId": "seven"})
    assert exc_info.value.details["fields"] == ["content", "conversationId"]


def test_empty_content_is_rejected():
    with pytest.raises(MalformedFrame):
        parse_frame({"type": "customer_message", "conversationId": 7, "content": ""})
