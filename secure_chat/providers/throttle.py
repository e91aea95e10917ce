"""Process-wide spacing between outbound upstream calls."""

import asyncio
import logging
from time import monotonic

from secure_chat.providers.base import ClockFn, SleepFn

logger = logging.getLogger("scp.throttle")


class RateGovernor:
    """Keeps call *start* times at least ``min_interval_s`` apart.

    The read of the last timestamp, the wait and the update happen under one
    lock, so concurrent callers queue up and each observes the spacing.
    """

    def __init__(
        self,
        min_interval_s: float = 1.0,
        clock: ClockFn = monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._min_interval_s = max(min_interval_s, 0.0)
        self._clock = clock
        self._sleep = sleep
        self._last_call: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval_s(self) -> float:
        return self._min_interval_s

    @property
    def last_call(self) -> float | None:
        return self._last_call

    async def throttle(self) -> float:
        """Wait until the next call may start. Returns the time waited."""
        async with self._lock:
            waited = 0.0
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self._min_interval_s:
                    waited = self._min_interval_s - elapsed
                    logger.debug("rate_limit_wait", extra={"delay_s": round(waited, 3)})
                    await self._sleep(waited)
            self._last_call = self._clock()
            return waited
