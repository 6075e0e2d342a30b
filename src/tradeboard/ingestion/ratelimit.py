"""Fixed-window call budgets per market data provider."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateWindow:
    """Calls made in the current window and when the window ends."""

    count: int
    reset_at: float


class RateLimiter:
    """Per-provider fixed-window counter.

    A window opens on the first call after the previous one expired and
    lasts ``window_seconds``. Calls beyond ``max_calls`` inside a window are
    denied without being counted. Two full bursts straddling a window
    boundary are both accepted; the counter is fixed-window, not sliding.

    Parameters
    ----------
    clock : Callable[[], float]
        Monotonic clock in seconds. Injected by tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}

    def try_acquire(self, provider: str, max_calls: int, window_seconds: float) -> bool:
        """Take one call from ``provider``'s budget if any is left."""
        now = self._clock()
        window = self._windows.get(provider)
        if window is None or now > window.reset_at:
            window = RateWindow(count=0, reset_at=now + window_seconds)
            self._windows[provider] = window

        if window.count >= max_calls:
            logger.debug(
                "Rate limit reached for %s (%d/%d), window resets in %.1fs",
                provider, window.count, max_calls, window.reset_at - now,
            )
            return False

        window.count += 1
        return True

    def remaining(self, provider: str, max_calls: int) -> int:
        """Calls still available in the current window (full budget if expired)."""
        window = self._windows.get(provider)
        if window is None or self._clock() > window.reset_at:
            return max_calls
        return max(0, max_calls - window.count)

    def reset(self, provider: str | None = None) -> None:
        """Forget the window for one provider, or for all of them."""
        if provider is None:
            self._windows.clear()
        else:
            self._windows.pop(provider, None)
