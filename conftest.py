import asyncio
import heapq
import os
import sys
from typing import List

import pytest

# Ensure repo-local imports (e.g., `import chess_assist`) resolve without extra setup.
src_dir = os.path.abspath(os.path.dirname(__file__))
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)

from chess_assist.clock import Clock  # noqa: E402


class VirtualClock(Clock):
    """Clock whose time only moves when a test calls :meth:`advance`."""

    SETTLE_ROUNDS = 50

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []
        self._timers = []
        self._seq = 0

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self._timers, (self.now + seconds, self._seq, future))
        await future

    async def settle(self) -> None:
        for _ in range(self.SETTLE_ROUNDS):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await self.settle()
        while self._timers and self._timers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._timers)
            self.now = max(self.now, deadline)
            if not future.done():
                future.set_result(None)
            await self.settle()
        self.now = target
        await self.settle()


@pytest.fixture
def virtual_clock() -> VirtualClock:
    return VirtualClock()


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "-E",
        "--engine",
        action="store_true",
        default=False,
        dest="run_engine",
        help="Run tests marked with @pytest.mark.engine (requires a UCI engine on PATH)",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list
) -> None:
    if not config.getoption("run_engine"):
        skip_engine = pytest.mark.skip(reason="use -E/--engine to enable real engine tests")
        for item in items:
            if item.get_closest_marker("engine") is not None:
                item.add_marker(skip_engine)
