"""
Tests for demonicskull/throttle.py.

Strategy
--------
* A recording sink stamps every write/finalize with the event loop clock.
* Coroutines are driven with ``asyncio.run`` from plain test functions.
* Timing assertions only bound delivery from below tightly; timers never fire
  early, but a busy CI box can make them late.
"""

import asyncio

import pytest

from demonicskull.throttle import (
    SPEED_TIERS,
    Drip,
    ModemProfile,
    SinkClosed,
    ThrottleConfigError,
    ThrottledSink,
)

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

LATE_SLACK = 0.08


class RecordingSink:
    def __init__(self):
        self.closed = False
        self.events = []   # (kind, loop time, bytes)

    def _now(self):
        return asyncio.get_running_loop().time()

    async def write(self, chunk):
        self.events.append(("write", self._now(), bytes(chunk)))
        return True

    async def finalize(self, chunk=b""):
        self.events.append(("finalize", self._now(), bytes(chunk)))

    @property
    def writes(self):
        return [e for e in self.events if e[0] == "write"]

    @property
    def finalizes(self):
        return [e for e in self.events if e[0] == "finalize"]


class DisconnectingSink(RecordingSink):
    """Raises SinkClosed once ``fail_after`` pieces have gone out."""

    def __init__(self, fail_after, exc=None):
        super().__init__()
        self.fail_after = fail_after
        self.exc = exc or SinkClosed("client went away")

    async def write(self, chunk):
        if len(self.writes) >= self.fail_after:
            self.closed = True
            raise self.exc
        return await super().write(chunk)


def _fast_profile():
    # 7000 bytes/s at 10ms ticks -> 70-byte pieces
    return ModemProfile(bits_per_second=56000, interval_ms=10, latency_ms=10)


# ──────────────────────────────────────────────────────────────────────────────
# ModemProfile
# ──────────────────────────────────────────────────────────────────────────────


def test_56k_profile_matches_a_real_modem():
    profile = ModemProfile()
    assert profile.bytes_per_second == 7000
    assert profile.chunk_size == 350
    assert profile.interval == pytest.approx(0.05)
    assert profile.latency == pytest.approx(0.12)


def test_profile_from_speed_tier():
    profile = ModemProfile.from_speed("28.8k", interval_ms=100, latency_ms=0)
    assert profile.bits_per_second == SPEED_TIERS["28.8k"]
    assert profile.chunk_size == 360


def test_unknown_speed_is_rejected():
    with pytest.raises(ThrottleConfigError, match="Unknown speed"):
        ModemProfile.from_speed("2400baud")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"bits_per_second": 8, "interval_ms": 50},      # 1 byte/s -> 0-byte pieces
        {"bits_per_second": 0},
        {"interval_ms": 0},
        {"interval_ms": -50},
        {"latency_ms": -1},
    ],
)
def test_profiles_that_would_never_finish_are_rejected(kwargs):
    with pytest.raises(ThrottleConfigError):
        ModemProfile(**kwargs)


def test_unthrottled_tier_cannot_build_a_profile():
    with pytest.raises(ThrottleConfigError):
        ModemProfile.from_speed("none")


def test_config_error_is_a_value_error():
    assert issubclass(ThrottleConfigError, ValueError)


def test_piece_count_and_expected_duration():
    profile = ModemProfile()
    assert profile.piece_count(900) == 3
    assert profile.piece_count(700) == 2
    assert profile.piece_count(1) == 1
    assert profile.expected_duration(900) == pytest.approx(0.22)
    assert profile.expected_duration(0) == 0.0


# ──────────────────────────────────────────────────────────────────────────────
# ThrottledSink buffering
# ──────────────────────────────────────────────────────────────────────────────


def test_writes_are_buffered_not_forwarded():
    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, _fast_profile())
        assert await throttled.write(b"hello ") is True
        assert await throttled.write(b"") is True
        assert await throttled.write(bytearray(b"world")) is True
        return sink, throttled

    sink, throttled = asyncio.run(scenario())
    assert sink.events == []
    assert throttled.buffered == len(b"hello world")


def test_empty_body_finalizes_immediately():
    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, ModemProfile(latency_ms=500))
        loop = asyncio.get_running_loop()
        started = loop.time()
        await throttled.write(b"")
        await throttled.finalize()
        await throttled.drained()
        return sink, throttled, loop.time() - started

    sink, throttled, elapsed = asyncio.run(scenario())
    assert sink.writes == []
    assert [(kind, body) for kind, _, body in sink.finalizes] == [("finalize", b"")]
    assert not throttled.dripping
    assert elapsed < 0.1


def test_body_is_delivered_in_order_in_fixed_pieces():
    body = bytes(range(256)) * 4 + b"tail"   # 1028 bytes
    profile = _fast_profile()

    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, profile)
        # Application write boundaries have nothing to do with the pacing
        await throttled.write(body[:3])
        await throttled.write(body[3:500])
        await throttled.write(body[500:1000])
        await throttled.finalize(body[1000:])
        await throttled.drained()
        return sink

    sink = asyncio.run(scenario())
    pieces = [chunk for _, _, chunk in sink.writes]

    assert len(pieces) == profile.piece_count(len(body)) == 15
    assert all(len(p) == profile.chunk_size for p in pieces[:-1])
    assert 0 < len(pieces[-1]) <= profile.chunk_size
    assert b"".join(pieces) == body
    assert [body for _, _, body in sink.finalizes] == [b""]
    assert sink.events[-1][0] == "finalize"


def test_body_exactly_one_chunk_long():
    profile = _fast_profile()
    body = b"x" * profile.chunk_size

    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, profile)
        await throttled.finalize(body)
        await throttled.drained()
        return sink

    sink = asyncio.run(scenario())
    assert [chunk for _, _, chunk in sink.writes] == [body]
    assert len(sink.finalizes) == 1


def test_dial_up_schedule_for_a_900_byte_page():
    """350-byte pieces at ~120, ~170 and ~220ms, finalize with the last one."""
    profile = ModemProfile(bits_per_second=56000, interval_ms=50, latency_ms=120)

    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, profile)
        await throttled.write(b"a" * 900)
        started = asyncio.get_running_loop().time()
        await throttled.finalize()
        await throttled.drained()
        return sink, started

    sink, started = asyncio.run(scenario())
    sizes = [len(chunk) for _, _, chunk in sink.writes]
    offsets = [t - started for _, t, _ in sink.writes]
    finalized_at = sink.finalizes[0][1] - started

    assert sizes == [350, 350, 200]
    for offset, expected in zip(offsets, [0.12, 0.17, 0.22]):
        assert expected - 0.005 <= offset <= expected + LATE_SLACK
    assert finalized_at == pytest.approx(offsets[-1], abs=0.01)
    assert finalized_at >= profile.expected_duration(900) - 0.005


def test_finalize_returns_before_delivery():
    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, ModemProfile(latency_ms=200))
        await throttled.finalize(b"hello")
        snapshot = list(sink.events)
        dripping = throttled.dripping
        await throttled.drained()
        return snapshot, dripping, sink

    snapshot, dripping, sink = asyncio.run(scenario())
    assert snapshot == []
    assert dripping is True
    assert b"".join(c for _, _, c in sink.writes) == b"hello"


def test_concurrent_drips_do_not_block_each_other():
    profile = ModemProfile(bits_per_second=56000, interval_ms=50, latency_ms=100)

    async def one():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, profile)
        await throttled.finalize(b"z" * 700)    # two pieces
        await throttled.drained()
        return sink

    async def scenario():
        loop = asyncio.get_running_loop()
        started = loop.time()
        sinks = await asyncio.gather(*(one() for _ in range(5)))
        return sinks, loop.time() - started

    sinks, elapsed = asyncio.run(scenario())
    for sink in sinks:
        assert b"".join(c for _, _, c in sink.writes) == b"z" * 700
    # Five sequential drips would take ~0.75s
    assert elapsed < profile.expected_duration(700) * 2


# ──────────────────────────────────────────────────────────────────────────────
# Bypass
# ──────────────────────────────────────────────────────────────────────────────


def test_bypass_passes_writes_straight_through():
    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, ModemProfile(latency_ms=500))
        throttled.bypass()
        assert await throttled.write(b"Location: /guestbook.html") is True
        await throttled.finalize(b"")
        return sink, throttled

    sink, throttled = asyncio.run(scenario())
    assert throttled.bypassed
    assert [(k, c) for k, _, c in sink.events] == [
        ("write", b"Location: /guestbook.html"),
        ("finalize", b""),
    ]
    assert not throttled.dripping


def test_bypass_after_buffered_writes_drops_the_buffer():
    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, ModemProfile(latency_ms=500))
        await throttled.write(b"half a page")
        throttled.bypass()
        await throttled.finalize()
        return sink, throttled

    sink, throttled = asyncio.run(scenario())
    assert throttled.buffered == 0
    assert sink.writes == []
    assert [c for _, _, c in sink.finalizes] == [b""]


# ──────────────────────────────────────────────────────────────────────────────
# Failure modes
# ──────────────────────────────────────────────────────────────────────────────


def test_closed_sink_stops_the_drip():
    profile = _fast_profile()

    async def scenario():
        sink = DisconnectingSink(fail_after=2)
        throttled = ThrottledSink(sink, profile)
        await throttled.finalize(b"q" * 1000)
        await throttled.drained()
        # Give a would-be rearmed timer time to fire
        await asyncio.sleep(profile.interval * 5)
        return sink, throttled

    sink, throttled = asyncio.run(scenario())
    assert len(sink.writes) == 2
    assert sink.finalizes == []
    assert not throttled.dripping


def test_sink_marked_closed_between_ticks_stops_the_drip():
    profile = _fast_profile()

    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, profile)
        await throttled.finalize(b"q" * 1000)
        while not sink.writes:
            await asyncio.sleep(0.001)
        sink.closed = True
        await throttled.drained()
        await asyncio.sleep(profile.interval * 5)
        return sink

    sink = asyncio.run(scenario())
    assert 1 <= len(sink.writes) < 15
    assert sink.finalizes == []


def test_cancel_stops_pending_ticks():
    profile = _fast_profile()

    async def scenario():
        sink = RecordingSink()
        throttled = ThrottledSink(sink, profile)
        await throttled.finalize(b"c" * 1000)
        while not sink.writes:
            await asyncio.sleep(0.001)
        throttled.cancel()
        throttled.cancel()   # idempotent
        await throttled.drained()
        delivered = len(sink.writes)
        await asyncio.sleep(profile.interval * 5)
        return sink, delivered, throttled

    sink, delivered, throttled = asyncio.run(scenario())
    assert len(sink.writes) == delivered
    assert sink.finalizes == []
    assert not throttled.dripping


def test_cancel_before_finalize_is_a_noop():
    async def scenario():
        throttled = ThrottledSink(RecordingSink(), _fast_profile())
        throttled.cancel()
        await throttled.drained()

    asyncio.run(scenario())


def test_unexpected_sink_error_propagates_through_drained():
    async def scenario():
        sink = DisconnectingSink(fail_after=1, exc=RuntimeError("boom"))
        throttled = ThrottledSink(sink, _fast_profile())
        await throttled.finalize(b"r" * 500)
        await throttled.drained()

    with pytest.raises(RuntimeError, match="boom"):
        asyncio.run(scenario())


def test_drip_cursor_reaches_the_end_once():
    profile = _fast_profile()

    async def scenario():
        sink = RecordingSink()
        drip = Drip(sink, b"m" * 200, profile)
        assert drip.cursor == 0
        drip.start()
        await drip.wait()
        return drip, sink

    drip, sink = asyncio.run(scenario())
    assert drip.finished
    assert drip.cursor == 200
    assert drip.pieces == 3
    assert len(sink.finalizes) == 1
