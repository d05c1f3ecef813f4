# ==============================================================================
# FILE: tests/test_membership.py
# DESCRIPTION: Conversation membership index - authorization, idempotent
#              leave, cleanup on session destruction
# ==============================================================================

import asyncio

import pytest

from conftest import FakeWebSocket
from shopsupport.errors import ConversationNotFound, NotAuthorized, PersistenceFailure
from shopsupport.transport.membership import ConversationMembershipIndex
from shopsupport.transport.session_registry import SessionRegistry, SessionRole

pytestmark = pytest.mark.asyncio


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def index(registry, store):
    return ConversationMembershipIndex(registry, store)


def _staff(registry, identity, role, name):
    session = registry.open(FakeWebSocket())
    registry.register(session, identity, role, name)
    return session


async def test_assigned_agent_can_join(registry, index):
    bob = _staff(registry, 2, "agent", "bob")

    await index.join(bob, 7)

    assert index.members_of(7) == {bob.handle}
    assert index.conversation_of(bob) == 7


async def test_unassigned_agent_is_refused(registry, index):
    carol = _staff(registry, 3, "agent", "carol")

    with pytest.raises(NotAuthorized):
        await index.join(carol, 7)

    assert index.members_of(7) == set()
    assert index.conversation_of(carol) is None


async def test_manager_and_admin_join_any(registry, index):
    dana = _staff(registry, 4, "manager", "dana")
    alice = _staff(registry, 1, "admin", "alice")

    await index.join(dana, 7)
    await index.join(alice, 7)

    assert index.members_of(7) == {dana.handle, alice.handle}


async def test_widget_joins_and_becomes_customer(registry, index):
    widget = registry.open(FakeWebSocket())

    await index.join(widget, 8)

    assert index.is_member(widget, 8)
    assert widget.role is SessionRole.CUSTOMER


async def test_unknown_conversation(registry, index):
    dana = _staff(registry, 4, "manager", "dana")

    with pytest.raises(ConversationNotFound) as exc:
        await index.join(dana, 404)

    assert exc.value.details == {"conversationId": 404}


async def test_store_failure_is_persistence_failure(registry, index, store):
    dana = _staff(registry, 4, "manager", "dana")
    store.fail_lookup = True

    with pytest.raises(PersistenceFailure):
        await index.join(dana, 7)


async def test_join_moves_session_between_conversations(registry, index):
    dana = _staff(registry, 4, "manager", "dana")

    await index.join(dana, 7)
    previous = await index.join(dana, 8)

    assert previous == 7
    assert index.members_of(7) == set()
    assert index.members_of(8) == {dana.handle}


async def test_leave_is_idempotent(registry, index):
    bob = _staff(registry, 2, "agent", "bob")
    await index.join(bob, 7)

    assert index.leave(bob, 7) is True
    assert index.leave(bob, 7) is False
    assert index.members_of(7) == set()
    assert index.conversation_of(bob) is None


async def test_remove_all_clears_every_membership(registry, index):
    bob = _staff(registry, 2, "agent", "bob")
    dana = _staff(registry, 4, "manager", "dana")
    await index.join(bob, 7)
    await index.join(dana, 7)

    assert index.remove_all(bob) == [7]
    registry.unregister(bob.handle)

    assert index.members_of(7) == {dana.handle}
    assert index.remove_all(bob) == []


async def test_join_completing_after_close_is_dropped(registry, store):
    gate = asyncio.Event()

    class SlowStore(type(store)):
        async def get_conversation(self, conversation_id):
            await gate.wait()
            return await super().get_conversation(conversation_id)

    slow = SlowStore()
    slow.conversations = store.conversations
    index = ConversationMembershipIndex(registry, slow)
    dana = _staff(registry, 4, "manager", "dana")

    pending = asyncio.create_task(index.join(dana, 7))
    await asyncio.sleep(0)
    index.remove_all(dana)
    registry.unregister(dana.handle)
    gate.set()

    assert await pending is None
    assert index.members_of(7) == set()
