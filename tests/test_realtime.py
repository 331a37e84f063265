from __future__ import annotations

import asyncio

from payanaagent.realtime import RealtimeChannel, make_event
from payanaagent.scheduler import ManualScheduler


def test_broadcast_reaches_members_in_publish_order(connection):
    channel = RealtimeChannel(ManualScheduler())
    first, second = connection("c1"), connection("c2")
    channel.join("s1", first)
    channel.join("s1", second)
    channel.join("other", connection("c3"))

    async def scenario():
        for i in range(5):
            await channel.broadcast("s1", make_event("message", text=str(i)))

    asyncio.run(scenario())
    assert first.texts() == ["0", "1", "2", "3", "4"]
    assert second.events == first.events


def test_failed_send_drops_connection(connection):
    channel = RealtimeChannel(ManualScheduler())
    good, bad = connection("good"), connection("bad", fail=True)
    channel.join("s1", good)
    channel.join("s1", bad)

    asyncio.run(channel.broadcast("s1", make_event("message", text="hi")))

    assert channel.members("s1") == ["good"]
    assert good.texts() == ["hi"]


def test_broadcast_exclude_and_direct_send(connection):
    channel = RealtimeChannel(ManualScheduler())
    first, second = connection("c1"), connection("c2")
    channel.join("s1", first)
    channel.join("s1", second)

    async def scenario():
        await channel.broadcast("s1", make_event("message", text="x"), exclude="c1")
        await channel.send("s1", "c1", make_event("error", reason="nope"))
        await channel.send("s1", "missing", make_event("error", reason="nope"))

    asyncio.run(scenario())
    assert first.types() == ["error"]
    assert second.types() == ["message"]


def test_membership_bookkeeping(connection):
    channel = RealtimeChannel(ManualScheduler())
    conn = connection("c1")
    channel.join("s1", conn)
    channel.join("s1", conn)
    channel.join("s2", conn)
    channel.join("s2", connection("c2"))

    assert channel.members("s1") == ["c1"]
    assert sorted(channel.rooms_for("c1")) == ["s1", "s2"]
    assert channel.connection_count == 2

    assert sorted(channel.leave_all("c1")) == ["s1", "s2"]
    assert channel.members("s1") == []
    assert channel.members("s2") == ["c2"]
    assert channel.leave("s1", "c1") is False


def test_typing_clears_after_silence(connection):
    scheduler = ManualScheduler()
    channel = RealtimeChannel(scheduler, typing_timeout=3.0)
    typer, watcher = connection("typer"), connection("watcher")
    channel.join("s1", typer)
    channel.join("s1", watcher)

    async def scenario():
        await channel.set_typing("s1", "typer", True)
        assert channel.typing("s1") == ["typer"]
        assert watcher.of_type("typing") == [{"connectionId": "typer", "active": True}]

        # Repeated keystrokes restart the window without re-broadcasting
        await scheduler.advance(2.0)
        await channel.set_typing("s1", "typer", True)
        await scheduler.advance(2.0)
        assert channel.typing("s1") == ["typer"]
        assert len(watcher.of_type("typing")) == 1

        await scheduler.advance(1.0)
        assert channel.typing("s1") == []
        assert watcher.of_type("typing")[-1] == {"connectionId": "typer", "active": False}

    asyncio.run(scenario())
    assert typer.events == []


def test_typing_stop_and_leave_cancel_timer(connection):
    scheduler = ManualScheduler()
    channel = RealtimeChannel(scheduler)
    typer, watcher = connection("typer"), connection("watcher")
    channel.join("s1", typer)
    channel.join("s1", watcher)

    async def scenario():
        await channel.set_typing("s1", "typer", True)
        await channel.set_typing("s1", "typer", False)
        assert scheduler.pending == 0
        assert [p["active"] for p in watcher.of_type("typing")] == [True, False]

        await channel.set_typing("s1", "typer", True)
        channel.leave("s1", "typer")
        assert scheduler.pending == 0
        assert channel.typing("s1") == []

        # Not a member any more
        await channel.set_typing("s1", "typer", True)
        assert scheduler.pending == 0

    asyncio.run(scenario())
