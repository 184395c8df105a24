from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

TickHandler = Callable[[int], Awaitable[None]]


class Countdown:
    """Cooperative per-question countdown with one second resolution."""

    def __init__(self, seconds: int, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self.period = seconds
        self.remaining = seconds
        self._sleep = sleep

    def restart(self, seconds: Optional[int] = None) -> None:
        self.remaining = self.period if seconds is None else seconds

    @property
    def expired(self) -> bool:
        return self.remaining <= 0

    async def run(self, on_tick: Optional[TickHandler] = None) -> None:
        """Return once the countdown reaches zero. Cancel the task to stop it early."""
        while self.remaining > 0:
            await self._sleep(1)
            self.remaining -= 1
            if on_tick is not None:
                await on_tick(self.remaining)
