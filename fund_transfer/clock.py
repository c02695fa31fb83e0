"""
Clock abstraction

All waiting in the daemon goes through a Clock so that sleeps can be
interrupted by shutdown and tests can run without real delays.
"""

import asyncio
import time
from typing import Optional


class Clock:
    """asyncio-backed clock"""

    def now(self) -> float:
        """Monotonic time in seconds"""
        return time.monotonic()

    async def sleep(self, seconds: float, stop_event: Optional[asyncio.Event] = None) -> bool:
        """
        Sleep for up to `seconds`

        Args:
            seconds: Time to wait
            stop_event: Wakes the sleep early when set

        Returns:
            True if the stop event interrupted (or preceded) the sleep
        """
        if stop_event is None:
            await asyncio.sleep(max(0.0, seconds))
            return False

        if stop_event.is_set():
            return True

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, seconds))
            return True
        except asyncio.TimeoutError:
            return False
