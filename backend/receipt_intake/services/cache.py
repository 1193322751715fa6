"""Small in-process cache primitives.

Usage guidelines:
- Only hold data that is cheap to refetch; there is no cross-process
  coherence.
- Keep TTLs short (minutes) so catalog edits made elsewhere show up.
- Invalidate after any write that changes the cached data.

Expiry uses a monotonic clock so wall-clock adjustments never extend or
shorten a TTL.  The clock is injectable to keep expiry testable.
"""
from __future__ import annotations

import time
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")

Clock = Callable[[], float]


class ExpiringValue(Generic[T]):
    """A single cached value with a monotonic expiry deadline."""

    def __init__(self, ttl_seconds: float, clock: Clock = time.monotonic) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[T] = None
        self._expires_at: float = 0.0
        self._has_value = False

    @property
    def is_fresh(self) -> bool:
        return self._has_value and self._clock() < self._expires_at

    def get(self) -> Optional[T]:
        """Return the cached value, or ``None`` once it has expired."""
        return self._value if self.is_fresh else None

    def set(self, value: T) -> T:
        self._value = value
        self._has_value = True
        self._expires_at = self._clock() + self.ttl_seconds
        return value

    def invalidate(self) -> None:
        self._value = None
        self._has_value = False
        self._expires_at = 0.0

    async def get_or_load(self, loader: Callable[[], Awaitable[T]]) -> T:
        """Return the fresh value or await ``loader`` and cache its result.

        Loader exceptions propagate and leave the cache empty.
        """
        if self.is_fresh:
            return self._value  # type: ignore[return-value]
        return self.set(await loader())
