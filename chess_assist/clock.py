import asyncio
import time


class Clock:
    """Time source for every delay in the orchestrator.

    Tests swap in a virtual clock so polling loops can be advanced
    deterministically.
    """

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


SYSTEM_CLOCK = Clock()
