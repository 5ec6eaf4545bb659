"""
Tests for SessionTable: ordering, stamps, timers, expiry and cancellation.
"""
import asyncio

import pytest

from scribebot.aggregator import SessionTable


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class BatchRecorder:
    def __init__(self):
        self.batches = []

    async def __call__(self, batch):
        self.batches.append(batch)


@pytest.mark.asyncio
async def test_fragments_join_in_arrival_order():
    table = SessionTable()
    for fragment in ("A", "B", "C"):
        table.append("chat", fragment)

    batch = table.finalize("chat")

    assert batch.text == "A\n\nB\n\nC"
    assert batch.fragment_count == 3
    assert batch.trigger == "explicit"
    assert "chat" not in table
    table.close()


@pytest.mark.asyncio
async def test_finalize_without_session_returns_none():
    table = SessionTable()
    assert table.finalize("nobody") is None


@pytest.mark.asyncio
async def test_append_returns_running_count_and_keeps_context():
    table = SessionTable()
    assert table.append("chat", "one", context="channel-1") == 1
    assert table.append("chat", "two") == 2
    assert table.finalize("chat").context == "channel-1"


@pytest.mark.asyncio
async def test_keys_are_independent():
    table = SessionTable()
    table.append("a", "1")
    table.append("b", "2")
    assert table.finalize("a").text == "1"
    assert table.finalize("b").text == "2"


@pytest.mark.asyncio
async def test_stale_stamp_finalize_is_noop():
    table = SessionTable()
    table.append("chat", "A")
    stamp = table._sessions["chat"].generation
    table.append("chat", "B")

    assert table.finalize("chat", expected_generation=stamp) is None
    assert "chat" in table
    table.close()


@pytest.mark.asyncio
async def test_inactivity_timer_finalizes_once_after_last_fragment():
    recorder = BatchRecorder()
    table = SessionTable(inactivity_s=0.2, on_finalized=recorder)

    table.append("chat", "A")
    await asyncio.sleep(0.12)
    table.append("chat", "B")
    await asyncio.sleep(0.12)
    # The first timer would have fired by now had it not been superseded
    assert "chat" in table
    assert recorder.batches == []

    await asyncio.sleep(0.3)
    await table.drain()

    assert [b.text for b in recorder.batches] == ["A\n\nB"]
    assert recorder.batches[0].trigger == "timer"
    assert "chat" not in table


@pytest.mark.asyncio
async def test_explicit_finalize_wins_over_pending_timer():
    recorder = BatchRecorder()
    table = SessionTable(inactivity_s=0.05, on_finalized=recorder)
    table.append("chat", "A")

    assert table.finalize("chat").text == "A"
    await asyncio.sleep(0.1)
    await table.drain()

    assert recorder.batches == []


@pytest.mark.asyncio
async def test_old_timer_does_not_touch_replacement_session():
    recorder = BatchRecorder()
    table = SessionTable(inactivity_s=60, on_finalized=recorder)
    table.append("chat", "A")
    old_stamp = table._sessions["chat"].generation

    assert table.finalize("chat").text == "A"
    table.append("chat", "B")

    # A timer armed for the first session fires late
    table._on_timer("chat", old_stamp)
    await table.drain()

    assert recorder.batches == []
    assert table._sessions["chat"].fragments == ["B"]
    assert table._sessions["chat"].timer is not None
    table.close()


@pytest.mark.asyncio
async def test_expired_session_is_replaced_not_extended():
    clock = FakeClock()
    recorder = BatchRecorder()
    table = SessionTable(inactivity_s=0.05, max_lifetime_s=300, on_finalized=recorder, clock=clock)

    table.append("chat", "old")
    clock.now = 301
    assert table.append("chat", "new") == 1

    await asyncio.sleep(0.1)
    await table.drain()

    # The timer for the discarded session never finalizes it
    assert [b.text for b in recorder.batches] == ["new"]


@pytest.mark.asyncio
async def test_active_session_is_not_expired():
    clock = FakeClock()
    table = SessionTable(max_lifetime_s=300, clock=clock)
    for minute in range(10):
        clock.now = minute * 60
        table.append("chat", str(minute))

    assert table.finalize("chat").fragment_count == 10


@pytest.mark.asyncio
async def test_cancel_drops_session_and_timer():
    recorder = BatchRecorder()
    table = SessionTable(inactivity_s=0.05, on_finalized=recorder)
    table.append("chat", "A")

    assert table.cancel("chat") is True
    assert table.cancel("chat") is False
    await asyncio.sleep(0.1)

    assert recorder.batches == []
    assert table.finalize("chat") is None


@pytest.mark.asyncio
async def test_sweep_expired():
    clock = FakeClock()
    table = SessionTable(max_lifetime_s=300, clock=clock)
    table.append("old", "x")
    clock.now = 200
    table.append("fresh", "y")

    assert table.sweep_expired(now=350) == 1
    assert "old" not in table
    assert "fresh" in table
    table.close()
    assert len(table) == 0


@pytest.mark.asyncio
async def test_failing_handler_is_logged_not_raised():
    async def boom(batch):
        raise RuntimeError("handler exploded")

    table = SessionTable(inactivity_s=0.01, on_finalized=boom)
    table.append("chat", "A")
    await asyncio.sleep(0.05)
    await table.drain()

    assert "chat" not in table
