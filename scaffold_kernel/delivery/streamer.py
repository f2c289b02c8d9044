"""
Delivery Streamer — paces one approved message out to the consumer.

States:
  IDLE → STARTING → EMITTING → COMPLETED
  CANCELLED and ERROR are terminal and reachable from any non-idle state.

Behavioral Contract:
- One wait of the decided delay before `start`
- One pacing wait (200-300ms, drawn per word) before each word
- Concatenated word contents reproduce the message exactly
- Token cancellation emits exactly one `cancelled` event, then nothing
- Consumer disconnect stops silently; pending waits are released
- Internal failure emits exactly one generic `error` event, then nothing
"""

import asyncio
import logging
import random
import re
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from scaffold_kernel.models.config import DeliveryConfig
from scaffold_kernel.models.stream import StreamEvent

logger = logging.getLogger(__name__)

_INCREMENT = re.compile(r"\s*\S+")

Sleep = Callable[[float], Awaitable[None]]


class StreamState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    EMITTING = "emitting"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


class CancellationToken:
    """Shared across one turn's pipeline. Cancelling is one-way."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def split_increments(text: str) -> List[str]:
    """
    Split into word increments, each carrying its leading whitespace.
    "".join(split_increments(t)) == t for every t.
    """
    pieces = _INCREMENT.findall(text)
    tail = text[len("".join(pieces)):]
    if tail:
        if pieces:
            pieces[-1] += tail
        else:
            pieces = [tail]
    return pieces


def word_interval(rng: random.Random, low_ms: int, high_ms: int) -> int:
    """Per-word pacing, uniform in [low, high] so delivery is not metronomic."""
    return int(rng.uniform(low_ms, high_ms))


class DeliveryStream:
    """
    One delivery. Iterate it once; `state` and `emitted` stay readable after.
    A stream with no message is the silent signal.
    """

    def __init__(
        self,
        message: Optional[str],
        delay_ms: int,
        token: CancellationToken,
        config: DeliveryConfig,
        rng: random.Random,
        sleep: Sleep,
    ):
        self.message = message
        self.delay_ms = delay_ms
        self.token = token
        self.config = config
        self._rng = rng
        self._sleep = sleep
        self.state = StreamState.IDLE
        self.emitted = 0
        self.increments = split_increments(message) if message else []

    @property
    def is_silent(self) -> bool:
        return self.message is None

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self.state != StreamState.IDLE:
            raise RuntimeError("delivery stream already consumed")
        self.state = StreamState.STARTING

        if self.is_silent:
            self.state = StreamState.COMPLETED
            yield StreamEvent.silent()
            return

        try:
            if await self._pause(self.delay_ms):
                self.state = StreamState.CANCELLED
                yield StreamEvent.cancelled()
                return

            yield StreamEvent.start()
            self.state = StreamState.EMITTING

            for index, piece in enumerate(self.increments):
                interval = word_interval(
                    self._rng,
                    self.config.word_interval_min_ms,
                    self.config.word_interval_max_ms,
                )
                if await self._pause(interval):
                    self.state = StreamState.CANCELLED
                    yield StreamEvent.cancelled()
                    return
                self.emitted += 1
                yield StreamEvent.word(piece, index)

            self.state = StreamState.COMPLETED
            yield StreamEvent.end()
        except (GeneratorExit, asyncio.CancelledError):
            # Consumer went away. Not an error; nothing more is sent.
            if self.state not in (StreamState.COMPLETED, StreamState.ERROR):
                self.state = StreamState.CANCELLED
            raise
        except Exception:
            logger.exception("Delivery failed after %d increment(s)", self.emitted)
            self.state = StreamState.ERROR
            yield StreamEvent.error()

    async def _pause(self, ms: int) -> bool:
        """Wait `ms`, returning early with True if the token is cancelled."""
        if self.token.cancelled:
            return True
        if ms <= 0:
            return False

        sleeper = asyncio.ensure_future(self._sleep(ms / 1000.0))
        watcher = asyncio.ensure_future(self.token.wait())
        try:
            await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, watcher):
                if not task.done():
                    task.cancel()

        if self.token.cancelled:
            return True
        if sleeper.done() and not sleeper.cancelled() and sleeper.exception():
            raise sleeper.exception()
        return False

    async def sse(self) -> AsyncIterator[str]:
        """The same events, encoded as Server-Sent Events frames."""
        async for event in self.events():
            yield event.to_sse()


class DeliveryStreamer:
    """Builds DeliveryStreams with shared pacing config, rng and clock."""

    def __init__(
        self,
        config: Optional[DeliveryConfig] = None,
        rng: Optional[random.Random] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.config = config or DeliveryConfig()
        self._rng = rng or random.Random()
        self._sleep = sleep or asyncio.sleep

    def stream(
        self,
        message: str,
        delay_ms: int,
        token: Optional[CancellationToken] = None,
    ) -> DeliveryStream:
        return DeliveryStream(
            message=message,
            delay_ms=delay_ms,
            token=token or CancellationToken(),
            config=self.config,
            rng=self._rng,
            sleep=self._sleep,
        )

    def silent(self) -> DeliveryStream:
        return DeliveryStream(
            message=None,
            delay_ms=0,
            token=CancellationToken(),
            config=self.config,
            rng=self._rng,
            sleep=self._sleep,
        )
