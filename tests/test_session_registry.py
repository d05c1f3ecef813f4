# ==============================================================================
# FILE: tests/test_session_registry.py
# DESCRIPTION: Unit tests for the live connection registry
# ==============================================================================

import pytest

from conftest import FakeWebSocket
from shopsupport.errors import AlreadyAuthenticated, DuplicateSession
from shopsupport.transport.session_registry import ConnectionState, SessionRegistry, SessionRole


def _registered(registry, identity=2, role="agent", name="bob"):
    session = registry.open(FakeWebSocket())
    registry.register(session, identity, role, name)
    return session


def test_open_creates_unauthenticated_session():
    registry = SessionRegistry()
    session = registry.open(FakeWebSocket())

    assert session.state is ConnectionState.CONNECTED
    assert session.role is SessionRole.UNAUTHENTICATED
    assert registry.is_live(session.handle)
    assert registry.get(session.handle) is session
    assert len(registry) == 1


def test_register_indexes_by_identity():
    registry = SessionRegistry()
    session = _registered(registry)

    assert session.is_authenticated
    assert session.is_staff
    assert session.role is SessionRole.AGENT
    assert registry.lookup(2) is session
    assert registry.lookup(99) is None


def test_register_twice_on_same_session_is_rejected():
    registry = SessionRegistry()
    session = _registered(registry)

    with pytest.raises(AlreadyAuthenticated):
        registry.register(session, 2, "agent", "bob")


def test_register_second_live_session_for_identity_raises_duplicate():
    registry = SessionRegistry()
    first = _registered(registry)
    second = registry.open(FakeWebSocket())

    with pytest.raises(DuplicateSession) as exc:
        registry.register(second, 2, "agent", "bob")

    assert exc.value.code == "DuplicateSession"
    assert registry.lookup(2) is first
    assert not second.is_authenticated


def test_identity_reusable_after_unregister():
    registry = SessionRegistry()
    first = _registered(registry)
    registry.unregister(first.handle)

    second = _registered(registry)
    assert registry.lookup(2) is second


def test_unregister_is_idempotent():
    registry = SessionRegistry()
    session = _registered(registry)

    assert registry.unregister(session.handle) is session
    assert registry.unregister(session.handle) is None
    assert session.state is ConnectionState.CLOSED
    assert not registry.is_live(session.handle)
    assert registry.lookup(2) is None
    assert len(registry) == 0


def test_unregister_stale_handle_keeps_newer_identity_mapping():
    registry = SessionRegistry()
    first = _registered(registry)
    registry.unregister(first.handle)
    second = _registered(registry)

    registry.unregister(first.handle)
    assert registry.lookup(2) is second


def test_register_unknown_session_raises_key_error():
    registry = SessionRegistry()
    session = registry.open(FakeWebSocket())
    registry.unregister(session.handle)

    with pytest.raises(KeyError):
        registry.register(session, 2, "agent", "bob")


def test_all_with_role_reflects_current_state():
    registry = SessionRegistry()
    agent = _registered(registry, 2, "agent", "bob")
    manager = _registered(registry, 4, "manager", "dana")
    widget = registry.open(FakeWebSocket())
    widget.mark_customer()

    assert {s.handle for s in registry.staff_sessions()} == {agent.handle, manager.handle}

    registry.unregister(manager.handle)
    assert [s.handle for s in registry.staff_sessions()] == [agent.handle]
    assert registry.all_with_role(lambda s: s.role is SessionRole.CUSTOMER) == [widget]


def test_mark_customer_never_downgrades_staff():
    registry = SessionRegistry()
    agent = _registered(registry)
    agent.mark_customer()
    assert agent.role is SessionRole.AGENT
