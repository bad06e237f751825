"""
Rate Limiter Module
===================

The two throttling primitives used by the harvester:

1. **Throttle**: minimum delay between successive requests of one walker
2. **ConcurrencyGate**: bounded admission of songs processed simultaneously

Global request rate is therefore roughly ``max_concurrent / delay``.
"""

import asyncio
import time
from typing import Optional


class Throttle:
    """
    Per-walker request pacing.
    
    ``wait()`` suspends the caller until at least ``delay`` seconds have passed
    since this throttle last released a caller. A fresh throttle also waits
    the full delay, so every request (including the first) is preceded by a
    pause.
    
    Args:
        delay: Minimum seconds between releases (default: 0.05)
    
    Example:
        ```python
        throttle = Throttle(delay=0.05)
        for offset in range(0, 1000, 100):
            await throttle.wait()
            page = await fetch_page(song_id, 100, offset)
        ```
    
    Note:
        Each walker owns its own Throttle; it is not shared between tasks and
        therefore needs no lock. Cancelling the waiting task aborts the sleep
        immediately.
    """
    
    def __init__(self, delay: float = 0.05):
        if delay < 0:
            raise ValueError("delay must be non-negative")
        
        self._delay = delay
        self._last_release: Optional[float] = None
    
    @property
    def delay(self) -> float:
        """Minimum seconds between releases."""
        return self._delay
    
    @property
    def last_release(self) -> Optional[float]:
        """Monotonic timestamp of the last release, None before the first."""
        return self._last_release
    
    async def wait(self) -> None:
        """
        Wait until the throttle allows the next request.
        
        Raises:
            asyncio.CancelledError: If the waiting coroutine is cancelled
        """
        if self._last_release is None:
            sleep_time = self._delay
        else:
            sleep_time = self._delay - (time.monotonic() - self._last_release)
        
        if sleep_time > 0:
            await asyncio.sleep(sleep_time)
        
        self._last_release = time.monotonic()
    
    def reset(self) -> None:
        """Forget the last release so the next wait starts from scratch."""
        self._last_release = None
    
    def __repr__(self) -> str:
        return f"Throttle(delay={self._delay})"


class ConcurrencyGate:
    """
    Counting admission gate bounding how many songs are walked at once.
    
    Args:
        max_concurrent: Maximum simultaneous holders (default: 50)
    
    Example:
        ```python
        gate = ConcurrencyGate(max_concurrent=50)
        
        async def walk(song):
            async with gate:
                return await walker.run(song)
        
        await asyncio.gather(*[walk(s) for s in songs])
        print(gate.peak)  # never more than 50
        ```
    
    Note:
        Admission is backed by ``asyncio.Semaphore``, so a task cancelled while
        waiting in ``acquire()`` never consumes a slot. Fairness is best-effort.
    """
    
    def __init__(self, max_concurrent: int = 50):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active = 0
        self._peak = 0
    
    @property
    def max_concurrent(self) -> int:
        """Maximum simultaneous holders allowed."""
        return self._max_concurrent
    
    @property
    def active(self) -> int:
        """Number of holders currently admitted."""
        return self._active
    
    @property
    def peak(self) -> int:
        """Highest number of simultaneous holders seen since the last reset."""
        return self._peak
    
    async def acquire(self) -> None:
        """
        Wait for a free slot, then take it.
        
        Raises:
            asyncio.CancelledError: If the waiting coroutine is cancelled
        """
        await self._semaphore.acquire()
        # No await between the semaphore grant and the bookkeeping below, so
        # the counters can't drift from the semaphore.
        self._active += 1
        if self._active > self._peak:
            self._peak = self._active
    
    def release(self) -> None:
        """
        Give a slot back.
        
        Raises:
            RuntimeError: If the gate has no holders
        """
        if self._active == 0:
            raise RuntimeError("release() called on a gate with no holders")
        self._active -= 1
        self._semaphore.release()
    
    async def __aenter__(self) -> "ConcurrencyGate":
        await self.acquire()
        return self
    
    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
    
    def reset_peak(self) -> None:
        """Reset the high-water mark to the current holder count."""
        self._peak = self._active
    
    def __repr__(self) -> str:
        return (
            f"ConcurrencyGate(max_concurrent={self._max_concurrent}, "
            f"active={self._active})"
        )
