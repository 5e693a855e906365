"""
Chunk coalescing for streamed content.

Streaming updates are buffered and forwarded at most once per flush interval
to bound the volume of chunk events reaching observers. When an event loop is
running, a buffered tail is also flushed by a timer once the interval elapses,
so a stream that stalls does not hold text back until its next chunk.
"""

import asyncio
import time
from typing import Callable, Optional


class ChunkCoalescer:
    """Buffers text chunks and flushes them no more often than ``interval_ms``."""

    def __init__(self, interval_ms: int, flush: Callable[[str], None], clock: Callable[[], float] = time.monotonic):
        self.interval = interval_ms / 1000
        self._flush = flush
        self._clock = clock
        self._buffer = ""
        self._last_flush = None
        self._timer: Optional[asyncio.TimerHandle] = None

    def push(self, chunk: str) -> None:
        self._buffer += chunk
        now = self._clock()
        if self._last_flush is None or now - self._last_flush >= self.interval:
            self.flush()
        else:
            self._schedule(self.interval - (now - self._last_flush))

    def flush(self) -> None:
        """Forward whatever is buffered."""
        self._cancel_timer()
        if self._buffer:
            pending, self._buffer = self._buffer, ""
            self._flush(pending)
        self._last_flush = self._clock()

    def discard(self) -> None:
        self._cancel_timer()
        self._buffer = ""

    def _schedule(self, delay: float) -> None:
        if self._timer is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the tail goes out with the next push or an explicit flush
            return
        self._timer = loop.call_later(max(0.0, delay), self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self.flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
