"""Tests for the session registry and event delivery."""

import asyncio

import pytest

from conftest import FakeSession
from shadowchat.api.socket import WebSocketSession
from shadowchat.services.distribution import deliver, notify_info, to_users


def test_add_and_remove_sessions(registry):
    phone, laptop = FakeSession(), FakeSession()
    registry.add_session(1, phone)
    registry.add_session(1, laptop)

    assert set(registry.sessions(1)) == {phone, laptop}
    assert registry.is_online(1)

    registry.remove_session(1, phone)
    registry.remove_session(1, laptop)
    assert registry.sessions(1) == ()
    assert not registry.is_online(1)
    assert registry.online_users() == []


def test_remove_unknown_session_is_harmless(registry):
    registry.remove_session(42, FakeSession())
    assert registry.online_users() == []


@pytest.mark.asyncio
async def test_broken_session_does_not_block_others(registry):
    broken, healthy = FakeSession(fail=True), FakeSession()
    registry.add_session(1, broken)
    registry.add_session(1, healthy)

    delivered = await registry.for_each_session(1, lambda s: s.send('{"packet": "ping"}'))

    assert delivered == 1
    assert healthy.packets("ping") == [{"packet": "ping"}]


@pytest.mark.asyncio
async def test_slow_session_does_not_delay_the_rest(registry):
    order = []

    class SlowSession(FakeSession):
        async def send(self, text):
            await asyncio.sleep(0.05)
            order.append("slow")

    class QuickSession(FakeSession):
        async def send(self, text):
            order.append("quick")

    registry.add_session(1, SlowSession())
    registry.add_session(1, QuickSession())
    await registry.for_each_session(1, lambda s: s.send("x"))

    assert order == ["quick", "slow"]


@pytest.mark.asyncio
async def test_snapshot_survives_disconnect_during_broadcast(registry):
    first, second = FakeSession(), FakeSession()
    registry.add_session(1, first)
    registry.add_session(1, second)

    async def send_and_leave(session):
        registry.remove_session(1, session)
        await session.send('{"packet": "bye"}')

    assert await registry.for_each_session(1, send_and_leave) == 2
    assert registry.sessions(1) == ()


@pytest.mark.asyncio
async def test_deliver_routes_targeted_and_reply_events(registry):
    origin, alice_other_tab, bob = FakeSession(), FakeSession(), FakeSession()
    registry.add_session(1, origin)
    registry.add_session(1, alice_other_tab)
    registry.add_session(2, bob)

    await deliver(
        registry,
        [notify_info("done"), to_users([1, 2], "chats_list", chats=[])],
        origin=origin,
    )

    assert origin.packets("notify") == [{"packet": "notify", "type": "INFO", "message": "done"}]
    assert alice_other_tab.packets("notify") == []
    assert len(alice_other_tab.packets("chats_list")) == 1
    assert len(bob.packets("chats_list")) == 1


@pytest.mark.asyncio
async def test_deliver_without_origin_drops_replies(registry):
    bob = FakeSession()
    registry.add_session(2, bob)

    await deliver(registry, [notify_info("nobody asked"), to_users([2], "ping")])

    assert [frame["packet"] for frame in bob.sent] == ["ping"]


@pytest.mark.asyncio
async def test_slow_recipient_does_not_delay_other_users(registry):
    order = []

    class SlowSession(FakeSession):
        async def send(self, text):
            await asyncio.sleep(0.05)
            order.append("slow")

    class QuickSession(FakeSession):
        async def send(self, text):
            order.append("quick")

    registry.add_session(1, SlowSession())
    registry.add_session(2, QuickSession())

    await deliver(registry, [to_users([1, 2], "ping")])

    assert order == ["quick", "slow"]


@pytest.mark.asyncio
async def test_events_keep_their_order_per_session(registry):
    bob = FakeSession()
    registry.add_session(2, bob)

    await deliver(registry, [to_users([1, 2], "first"), to_users([2], "second")])

    assert [frame["packet"] for frame in bob.sent] == ["first", "second"]


@pytest.mark.asyncio
async def test_stalled_websocket_times_out(registry):
    class StalledWebSocket:
        async def send_text(self, text):
            await asyncio.sleep(10)

    stalled = WebSocketSession(StalledWebSocket(), timeout=0.05)
    healthy = FakeSession()
    registry.add_session(1, stalled)
    registry.add_session(2, healthy)

    await asyncio.wait_for(deliver(registry, [to_users([1, 2], "ping")]), timeout=1)

    assert len(healthy.packets("ping")) == 1
