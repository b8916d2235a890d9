"""Automatic play: watch the board and move for one colour when it is our turn."""

from __future__ import annotations

import asyncio
import random
from typing import Optional

from .analysis import AnalysisRequest, AnalysisSession
from .chess_logic import decompose_move, describe_color, looks_like_position, position_key, resolve_color
from .clock import SYSTEM_CLOCK, Clock
from .collaborators import Mover, PositionSource, current_turn, play_move, read_hint, read_position
from .coordinator import RequestCoordinator
from .state import AutomaticPlayState, OrchestratorState, PlayPhase
from .utils import StatusKind, StatusReporter


class AutomaticPlayController:
    """Drives one colour through think, request, wait and move cycles.

    A cycle starts on a tick where it is our turn and either the position key
    changed or the last action is older than :attr:`RETRIGGER_AFTER`. The
    key and timestamp are recorded before the pacing delay so a slow cycle is
    never started twice for the same position. Nothing is handed to the
    mover unless the turn still belongs to us after the pacing delay.
    """

    TICK_INTERVAL = 0.5
    RETRIGGER_AFTER = 2.5
    RESULT_POLL_INTERVAL = 0.1
    RESULT_POLL_LIMIT = 100
    MOVE_DELAY = 0.2
    SETTLE_DELAY = 0.5
    MIN_THINK = 0.5

    def __init__(
        self,
        state: OrchestratorState,
        coordinator: RequestCoordinator,
        source: PositionSource,
        mover: Mover,
        *,
        play_state: Optional[AutomaticPlayState] = None,
        clock: Clock = SYSTEM_CLOCK,
        reporter: Optional[StatusReporter] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._state = state
        self._coordinator = coordinator
        self._source = source
        self._mover = mover
        self.play = play_state or state.automatic
        self._clock = clock
        self._reporter = reporter or coordinator.reporter
        self._rng = rng or random.Random()
        self._loop_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self.status = ""
        self.moves_played = 0
        self.last_move: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.play.enabled

    @property
    def phase(self) -> PlayPhase:
        return self.play.phase

    def my_color(self) -> bool:
        detected = read_hint(self._source, "player_color", self._reporter)
        return resolve_color(self.play.color_setting(self._state.config), detected)

    def engine_time_ms(self, think_seconds: float) -> int:
        return round(max(self.MIN_THINK, think_seconds) * 500)

    def start(self) -> bool:
        if self.play.enabled:
            return False
        color = self.my_color()

        self.play.enabled = True
        self.play.waiting_for_move = False
        position = read_position(self._source, self._reporter)
        self.play.last_key = position_key(position) or None
        self.play.last_action_at = None
        self.play.phase = PlayPhase.WATCHING
        self._set_status(f"Playing {describe_color(color)}")

        self._loop_task = asyncio.create_task(self._run_loop())
        return True

    async def stop(self) -> bool:
        if not self.play.enabled and not self.play.waiting_for_move:
            return False
        self.play.enabled = False
        for task in (self._cycle_task, self._loop_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        self._cycle_task = None
        self._loop_task = None
        self.play.reset_cycle()
        self.play.phase = PlayPhase.DISABLED
        self._set_status("Stopped", StatusKind.IDLE)
        return True

    async def _run_loop(self) -> None:
        while self.play.enabled:
            self.tick()
            await self._clock.sleep(self.TICK_INTERVAL)

    def tick(self) -> None:
        if not self.play.enabled:
            self.play.phase = PlayPhase.DISABLED
            return

        position = read_position(self._source, self._reporter)
        if not looks_like_position(position):
            self._set_status("Could not read position", StatusKind.ERROR)
            return
        turn = current_turn(self._state, self._source, position, self._reporter)
        if turn is None:
            self._set_status("Cannot determine side to move", StatusKind.ERROR)
            return

        my_color = self.my_color()
        if turn != my_color:
            if self.play.waiting_for_move or self.play.last_key is not None:
                self._cancel_cycle()
                self.play.reset_cycle()
            self.play.phase = PlayPhase.WATCHING
            self._set_status(f"Waiting for {describe_color(turn)}", StatusKind.IDLE)
            return

        if self.play.waiting_for_move:
            return

        key = position_key(position)
        now = self._clock.monotonic()
        stale = self.play.last_action_at is None or now - self.play.last_action_at > self.RETRIGGER_AFTER
        if key == self.play.last_key and not stale:
            return

        self.play.last_key = key
        self.play.last_action_at = now
        self.play.waiting_for_move = True
        config = self._state.config
        think = self._rng.uniform(config.automatic_min_time, config.automatic_max_time)
        self.play.phase = PlayPhase.THINKING
        self._set_status(f"Thinking... ({think:.1f}s)")
        self._cycle_task = asyncio.create_task(self._think_cycle(think, my_color))

    def force_move_now(self) -> bool:
        if not self.play.enabled:
            self._set_status("Enable automatic play first", StatusKind.ERROR)
            return False
        if self.play.waiting_for_move:
            self._set_status("Already processing")
            return False
        position = read_position(self._source, self._reporter)
        if not looks_like_position(position):
            self._set_status("Could not read position", StatusKind.ERROR)
            return False
        if not self._coordinator.is_ready():
            self._coordinator.ensure_started()
            self._set_status("Engine not ready", StatusKind.UNAVAILABLE)
            return False

        self.play.waiting_for_move = True
        self.play.last_key = position_key(position)
        self.play.last_action_at = self._clock.monotonic()
        config = self._state.config
        think = min(config.automatic_min_time, config.automatic_max_time)
        self._set_status("Forcing move now...")
        request, session = self._request(position, think)
        self._cycle_task = asyncio.create_task(self._wait_and_play(request, session))
        return True

    async def _think_cycle(self, think_seconds: float, my_color: bool) -> None:
        await self._clock.sleep(think_seconds)
        if not self.play.enabled:
            return

        position = read_position(self._source, self._reporter)
        turn = current_turn(self._state, self._source, position, self._reporter)
        if not looks_like_position(position) or turn != my_color:
            self._abandon("Turn changed while thinking", StatusKind.IDLE)
            return
        if not self._coordinator.is_ready():
            self._coordinator.ensure_started()
            self._abandon("Engine not ready", StatusKind.UNAVAILABLE)
            return

        self._set_status("Calculating move...")
        request, session = self._request(position, think_seconds)
        await self._wait_and_play(request, session)

    def _request(self, position: str, think_seconds: float):
        request = self._coordinator.submit(
            position, multipv=1, think_time_ms=self.engine_time_ms(think_seconds)
        )
        return request, self._coordinator.session

    async def _wait_and_play(self, request: AnalysisRequest, session: AnalysisSession) -> None:
        self.play.phase = PlayPhase.WAITING_FOR_RESULT
        for _ in range(self.RESULT_POLL_LIMIT):
            await self._clock.sleep(self.RESULT_POLL_INTERVAL)
            if not self.play.enabled:
                return
            if session.has_best_move():
                await self._play(session.top().first_move)
                return
            if session.finished:
                if session.no_legal_move:
                    self._abandon("No legal move", StatusKind.NO_MOVE)
                else:
                    self._abandon(f"Analysis failed: {session.error}", StatusKind.ERROR)
                return
            if not self._coordinator.is_current(request):
                self._abandon("Analysis superseded", StatusKind.TRANSIENT)
                return

        self.play.phase = PlayPhase.TIMED_OUT
        self._abandon("Timeout - retrying...", StatusKind.TRANSIENT)

    async def _play(self, move: str) -> None:
        try:
            from_square, to_square, _ = decompose_move(move)
        except ValueError as exc:
            self._abandon(f"Bad move from engine: {exc}", StatusKind.ERROR)
            return
        self._set_status(f"Playing {from_square}-{to_square}")
        await self._clock.sleep(self.MOVE_DELAY)
        if not self.play.enabled:
            return

        moved = play_move(self._mover, move, self._reporter)
        self.play.waiting_for_move = False
        self.play.phase = PlayPhase.ACTED
        if moved:
            self.moves_played += 1
            self.last_move = move
            self._set_status(f"Played {from_square}-{to_square}", StatusKind.DONE)
        else:
            self._set_status(f"Could not play {from_square}-{to_square}", StatusKind.ERROR)

        await self._clock.sleep(self.SETTLE_DELAY)
        position = read_position(self._source, self._reporter)
        self.play.last_key = position_key(position) or None
        self.play.last_action_at = self._clock.monotonic()
        if self.play.enabled:
            self.play.phase = PlayPhase.WATCHING

    def _abandon(self, message: str, kind: StatusKind) -> None:
        self.play.reset_cycle()
        if self.play.enabled:
            self.play.phase = PlayPhase.WATCHING
        self._set_status(message, kind)

    def _cancel_cycle(self) -> None:
        task = self._cycle_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._cycle_task = None

    def _set_status(self, message: str, kind: StatusKind = StatusKind.BUSY) -> None:
        if message == self.status:
            return
        self.status = message
        self._reporter.update(f"[auto] {message}", kind)
