"""Bandwidth throttling to simulate period-accurate connection speeds."""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Protocol

SPEED_TIERS = {
    "14.4k": 14400,     # 14.4 kbps modem
    "28.8k": 28800,     # 28.8 kbps modem
    "56k":   56000,     # 56 kbps modem (just like 1999)
    "isdn":  128000,    # 128 kbps ISDN
    "dsl":   1000000,   # 1 Mbps early DSL
    "none":  0,         # unlimited
}


class ThrottleConfigError(ValueError):
    """Raised when a modem profile would never finish dripping."""


class SinkClosed(Exception):
    """The client connection went away before the body was delivered."""


class ResponseSink(Protocol):
    """Anything that accepts response bytes and a final completion signal."""

    closed: bool

    async def write(self, chunk: bytes) -> bool:
        ...

    async def finalize(self, chunk: bytes = b"") -> None:
        ...


@dataclass(frozen=True)
class ModemProfile:
    """Immutable pacing parameters for one simulated connection."""
    bits_per_second: int = 56000
    interval_ms: int = 50     # Drip a chunk every 50ms
    latency_ms: int = 120     # Initial latency per request

    def __post_init__(self):
        if self.interval_ms <= 0:
            raise ThrottleConfigError(
                f"Tick interval must be positive, got {self.interval_ms}ms"
            )
        if self.latency_ms < 0:
            raise ThrottleConfigError(
                f"Initial latency cannot be negative, got {self.latency_ms}ms"
            )
        if self.chunk_size <= 0:
            raise ThrottleConfigError(
                f"{self.bits_per_second} bit/s at {self.interval_ms}ms ticks "
                f"gives a chunk size of {self.chunk_size} bytes"
            )

    @classmethod
    def from_speed(
        cls, speed: str, interval_ms: int = 50, latency_ms: int = 120
    ) -> "ModemProfile":
        """Build a profile from a key of SPEED_TIERS (e.g. "56k")."""
        if speed not in SPEED_TIERS:
            raise ThrottleConfigError(
                f"Unknown speed {speed!r}, expected one of {', '.join(SPEED_TIERS)}"
            )
        return cls(
            bits_per_second=SPEED_TIERS[speed],
            interval_ms=interval_ms,
            latency_ms=latency_ms,
        )

    @property
    def bytes_per_second(self) -> int:
        return self.bits_per_second // 8

    @property
    def chunk_size(self) -> int:
        return self.bytes_per_second * self.interval_ms // 1000

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def latency(self) -> float:
        return self.latency_ms / 1000.0

    def piece_count(self, length: int) -> int:
        return -(-length // self.chunk_size)

    def expected_duration(self, length: int) -> float:
        """Seconds from finalize until the last piece of a body goes out."""
        if length <= 0:
            return 0.0
        return self.latency + (self.piece_count(length) - 1) * self.interval


class Drip:
    """Deliver one finalized body to a sink in timed, fixed-size pieces.

    The schedule is a chain of ``loop.call_later`` handles: each tick writes
    a single piece and arms the next one, so the event loop stays free for
    other requests between ticks.
    """

    def __init__(
        self,
        sink: ResponseSink,
        body: bytes,
        profile: ModemProfile,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._sink = sink
        self._body = body
        self.profile = profile
        self.cursor = 0
        self.pieces = 0
        self._loop = loop or asyncio.get_running_loop()
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._done: asyncio.Future = self._loop.create_future()

    @property
    def finished(self) -> bool:
        return self._done.done()

    def start(self) -> None:
        self._arm(self.profile.latency)

    def cancel(self) -> None:
        """Stop the chain; a no-op once the drip is finished."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if not self._done.done():
            print(f"[MODEM] Drip cancelled at {self.cursor}/{len(self._body)} bytes")
            self._done.set_result(None)

    async def wait(self) -> None:
        await self._done

    def _arm(self, delay: float) -> None:
        if self._done.done():
            return
        self._handle = self._loop.call_later(delay, self._tick)

    def _tick(self) -> None:
        self._handle = None
        self._task = self._loop.create_task(self._deliver())

    async def _deliver(self) -> None:
        if self._sink.closed:
            self._stop("sink closed")
            return

        end = min(self.cursor + self.profile.chunk_size, len(self._body))
        try:
            await self._sink.write(self._body[self.cursor:end])
            self.cursor = end
            self.pieces += 1
            if self.cursor >= len(self._body):
                await self._sink.finalize()
                if not self._done.done():
                    self._done.set_result(None)
                return
        except SinkClosed:
            self._stop("client disconnected")
            return
        except Exception as e:
            if not self._done.done():
                self._done.set_exception(e)
            return

        self._arm(self.profile.interval)

    def _stop(self, reason: str) -> None:
        if not self._done.done():
            print(
                f"[MODEM] Drip stopped ({reason}) at "
                f"{self.cursor}/{len(self._body)} bytes"
            )
            self._done.set_result(None)


class ThrottledSink:
    """Buffer a whole response body, then hand it to a Drip.

    The delay depends on the total body size, not on how the application
    happened to split its writes, so nothing reaches the underlying sink
    until finalize.
    """

    def __init__(self, sink: ResponseSink, profile: ModemProfile):
        self._sink = sink
        self.profile = profile
        self._chunks: List[bytes] = []
        self._bypassed = False
        self._drip: Optional[Drip] = None

    @property
    def closed(self) -> bool:
        return self._sink.closed

    @property
    def bypassed(self) -> bool:
        return self._bypassed

    @property
    def dripping(self) -> bool:
        return self._drip is not None and not self._drip.finished

    @property
    def buffered(self) -> int:
        return sum(len(c) for c in self._chunks)

    def bypass(self) -> None:
        """Restore pass-through writes; anything buffered so far is dropped."""
        self._bypassed = True
        self._chunks = []

    async def write(self, chunk: bytes) -> bool:
        if self._bypassed:
            return await self._sink.write(chunk)
        if chunk:
            self._chunks.append(bytes(chunk))
        return True

    async def finalize(self, chunk: bytes = b"") -> None:
        if self._bypassed:
            await self._sink.finalize(chunk)
            return

        if chunk:
            self._chunks.append(bytes(chunk))
        body = b"".join(self._chunks)
        self._chunks = []

        # Nothing to throttle
        if not body:
            await self._sink.finalize()
            return

        self._drip = Drip(self._sink, body, self.profile)
        self._drip.start()

    async def drained(self) -> None:
        """Wait until the scheduled drip (if any) has finished or stopped."""
        if self._drip is not None:
            await self._drip.wait()

    def cancel(self) -> None:
        if self._drip is not None:
            self._drip.cancel()
