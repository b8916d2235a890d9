"""Turn board changes into analysis requests without flooding the backend."""

import asyncio
from typing import List, Optional

from .analysis import AnalysisSession, SessionMode
from .chess_logic import (
    describe_color,
    force_side_to_move,
    looks_like_position,
    position_key,
    resolve_color,
    turn_from_position,
)
from .clock import SYSTEM_CLOCK, Clock
from .collaborators import Mover, PositionSource, current_turn, play_move, read_hint, read_position
from .coordinator import RequestCoordinator
from .evaluation import EvaluationSummary, eval_bar_ratio, summarize
from .state import OrchestratorState
from .utils import StatusKind, StatusReporter


def _restart(task: Optional[asyncio.Task], coro) -> asyncio.Task:
    if task is not None and not task.done():
        task.cancel()
    return asyncio.create_task(coro)


class SuggestionFeed:
    """Primary feed: one request per new position, suggestions on completion."""

    DEBOUNCE = 0.3
    STREAM_MOVE_DELAY = 0.5
    HTTP_MOVE_DELAY = 0.2

    def __init__(
        self,
        state: OrchestratorState,
        coordinator: RequestCoordinator,
        source: PositionSource,
        *,
        mover: Optional[Mover] = None,
        clock: Clock = SYSTEM_CLOCK,
        reporter: Optional[StatusReporter] = None,
    ) -> None:
        self.state = state
        self.coordinator = coordinator
        self.source = source
        self.mover = mover
        self.clock = clock
        self.reporter = reporter or coordinator.reporter
        self.last_position = ""
        self.suggestions: List[str] = []
        self._generation: Optional[int] = None
        self._debounce: Optional[asyncio.Task] = None
        self._move_task: Optional[asyncio.Task] = None
        coordinator.completion_listeners.append(self._on_complete)

    def offer(self, position: Optional[str], *, force: bool = False) -> bool:
        if not looks_like_position(position):
            self.reporter.update("Could not read position", StatusKind.ERROR)
            return False
        if not force:
            if position == self.last_position:
                self.reporter.debug("Position unchanged, skipping")
                return False
            if self.coordinator.analysing:
                self.reporter.debug("Analysis in progress, skipping")
                return False
        request = self.coordinator.submit(position)
        self._generation = request.generation
        self.last_position = position
        return True

    def poll(self) -> bool:
        config = self.state.config
        if not config.enabled:
            return False
        position = read_position(self.source, self.reporter)
        if not looks_like_position(position):
            self.reporter.update("Could not read position", StatusKind.ERROR)
            return False
        if config.auto_suggest and not self.is_my_turn(position):
            self.reporter.debug("Not my turn, skipping")
            return False
        return self.offer(position)

    def calculate_now(self) -> bool:
        position = read_position(self.source, self.reporter)
        if not looks_like_position(position):
            self.reporter.update("Could not read position", StatusKind.ERROR)
            return False
        color = self.player_color()
        if turn_from_position(position) != color:
            position = force_side_to_move(position, color)
            self.reporter.info(f"Analysing as {describe_color(color)} to move")
        return self.offer(position, force=True)

    def player_color(self) -> bool:
        detected = read_hint(self.source, "player_color", self.reporter)
        return resolve_color(self.state.config.player_color, detected)

    def is_my_turn(self, position: Optional[str]) -> bool:
        turn = current_turn(self.state, self.source, position, self.reporter)
        return turn is not None and turn == self.player_color()

    def notify_changed(self) -> None:
        config = self.state.config
        if not (config.enabled and config.auto_suggest) or self.coordinator.analysing:
            return
        self._debounce = _restart(self._debounce, self._debounced_poll())

    async def _debounced_poll(self) -> None:
        await self.clock.sleep(self.DEBOUNCE)
        if not self.coordinator.analysing:
            self.poll()

    def _on_complete(self, session: AnalysisSession) -> None:
        if session.generation != self._generation or session.evaluation_only:
            return
        config = self.state.config
        self.suggestions = session.suggested_moves(config.multipv)
        if not (config.auto_move and session.has_best_move()):
            return
        automatic = self.state.automatic
        if automatic.enabled or automatic.waiting_for_move:
            return
        delay = self.HTTP_MOVE_DELAY if self.coordinator.backend.name == "http" else self.STREAM_MOVE_DELAY
        self._move_task = _restart(self._move_task, self._auto_move(session.top().first_move, delay))

    async def _auto_move(self, move: str, delay: float) -> None:
        await self.clock.sleep(delay)
        if self.mover is None:
            self.reporter.debug(f"No mover attached, not playing {move}")
            return
        play_move(self.mover, move, self.reporter)

    async def close(self) -> None:
        for task in (self._debounce, self._move_task):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)


class EvaluationFeed:
    """Background evaluation of the displayed position.

    Probes never preempt a request that is already running; the newest
    position waits in a single pending slot and is flushed whenever any
    request completes. A probe that gets preempted by a primary request is
    put back into the slot.
    """

    DEBOUNCE = 0.2
    POLL_INTERVAL = 0.35

    def __init__(
        self,
        state: OrchestratorState,
        coordinator: RequestCoordinator,
        source: PositionSource,
        *,
        clock: Clock = SYSTEM_CLOCK,
        reporter: Optional[StatusReporter] = None,
    ) -> None:
        self.state = state
        self.coordinator = coordinator
        self.source = source
        self.clock = clock
        self.reporter = reporter or coordinator.reporter
        self.last_key = ""
        self.pending: Optional[str] = None
        self.summary: Optional[EvaluationSummary] = None
        self.bar_ratio = 50.0
        self._generation: Optional[int] = None
        self._debounce: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        coordinator.completion_listeners.append(self._on_complete)
        coordinator.preemption_listeners.append(self._on_preempted)

    @property
    def enabled(self) -> bool:
        return self.state.config.evaluation_enabled

    @property
    def pending_key(self) -> str:
        return position_key(self.pending)

    def offer(self, position: Optional[str]) -> bool:
        if not self.enabled or not looks_like_position(position):
            return False
        key = position_key(position)
        if key == self.last_key or key == self.pending_key:
            return False
        self.pending = position
        if self.coordinator.requesting:
            return False
        return self.flush()

    def flush(self) -> bool:
        if not self.enabled or self.pending is None or self.coordinator.requesting:
            return False
        if not self.coordinator.is_ready():
            self.coordinator.ensure_started()
            return False
        position = self.pending
        request = self.coordinator.submit(
            position,
            multipv=1,
            think_time_ms=self.state.config.evaluation_think_time_ms,
            mode=SessionMode.EVALUATION_ONLY,
        )
        self._generation = request.generation
        self.last_key = position_key(position)
        self.pending = None
        return True

    def notify_changed(self) -> None:
        if not self.enabled:
            return
        self._debounce = _restart(self._debounce, self._debounced_offer())

    async def _debounced_offer(self) -> None:
        await self.clock.sleep(self.DEBOUNCE)
        self.offer(read_position(self.source, self.reporter))

    def start(self) -> None:
        self.state.config.evaluation_enabled = True
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self.run())

    async def run(self) -> None:
        while self.enabled:
            self.offer(read_position(self.source, self.reporter))
            self.flush()
            await self.clock.sleep(self.POLL_INTERVAL)

    async def stop(self) -> None:
        self.state.config.evaluation_enabled = False
        self.pending = None
        session = self.coordinator.session
        if (
            session is not None
            and session.evaluation_only
            and session.generation == self._generation
            and self.coordinator.requesting
        ):
            self.coordinator.cancel_current()
        for task in (self._debounce, self._poll_task):
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._debounce = None
        self._poll_task = None

    def _on_complete(self, session: AnalysisSession) -> None:
        if session.generation == self._generation and session.error is None:
            summary = summarize(session)
            if summary.score_cp is not None or summary.score_mate is not None:
                self.summary = summary
                self.bar_ratio = eval_bar_ratio(
                    summary.score_cp,
                    summary.score_mate,
                    turn_from_position(session.position),
                )
        self.flush()

    def _on_preempted(self, session: AnalysisSession) -> None:
        if session.generation != self._generation:
            return
        # Never evaluated, so the same key must be accepted again.
        self.last_key = ""
        if self.pending is None:
            self.pending = session.position
