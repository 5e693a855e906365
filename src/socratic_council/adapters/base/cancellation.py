"""
Cooperative cancellation for in-flight completion requests.

Each dispatched request receives its own ``CancellationToken``; the tokens of
one turn live in a ``CancellationRegistry`` so that pause and stop can revoke
all of them at once without touching anything else.
"""

import asyncio
from typing import Dict, Optional

from socratic_council.errors import RequestCancelledError


class CancellationToken:
    """A one-shot cancellation signal that can be awaited."""

    def __init__(self, key: str = ""):
        self.key = key
        self.reason: Optional[str] = None
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(f"Request {self.key} cancelled: {self.reason}")

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()


class CancellationRegistry:
    """Per-turn registry of request tokens."""

    def __init__(self):
        self._tokens: Dict[str, CancellationToken] = {}

    def register(self, key: str) -> CancellationToken:
        token = CancellationToken(key)
        self._tokens[key] = token
        return token

    def release(self, key: str) -> None:
        self._tokens.pop(key, None)

    def cancel_all(self, reason: str) -> int:
        """Cancel every registered token; returns how many were live."""
        count = 0
        for token in list(self._tokens.values()):
            if not token.cancelled:
                token.cancel(reason)
                count += 1
        self._tokens.clear()
        return count

    def __len__(self) -> int:
        return len(self._tokens)
