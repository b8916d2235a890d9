import asyncio
import random

import chess

from helpers import BoardSource, RecordingMover, ScriptedBackend, best_line

from chess_assist.auto_play import AutomaticPlayController
from chess_assist.config import AssistConfig
from chess_assist.coordinator import RequestCoordinator
from chess_assist.main import BoardMover
from chess_assist.state import AutomaticPlayState, OrchestratorState, PlayPhase
from chess_assist.uci_parser import BestMoveEvent
from chess_assist.utils import ReportingLevel, StatusReporter


class Harness:
    def __init__(self, clock, *scripts, color="white", think=1.0, ready=True, mover=None, board=None) -> None:
        config = AssistConfig(automatic_color=color, automatic_min_time=think, automatic_max_time=think)
        self.state = OrchestratorState(config=config)
        self.reporter = StatusReporter(ReportingLevel.QUIET)
        self.statuses = []
        self.reporter.subscribe(lambda text, kind: self.statuses.append(text))
        self.backend = ScriptedBackend(*scripts, ready=ready)
        self.coordinator = RequestCoordinator(self.state, self.backend, clock=clock, reporter=self.reporter)
        self.board = board or chess.Board()
        self.source = BoardSource(self.board)
        self.mover = mover or RecordingMover(self.board)
        self.controller = self.make_controller(clock)

    def make_controller(self, clock, play_state=None):
        return AutomaticPlayController(
            self.state,
            self.coordinator,
            self.source,
            self.mover,
            play_state=play_state,
            clock=clock,
            reporter=self.reporter,
            rng=random.Random(7),
        )


def test_plays_best_move_on_my_turn(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, best_line("e2e4"))
        assert h.controller.start() is True
        assert h.controller.start() is False
        await virtual_clock.advance(0.5)
        thinking = (h.controller.phase, h.backend.requests[:])
        await virtual_clock.advance(3.0)
        await h.controller.stop()
        return h, thinking

    h, (phase, early_requests) = asyncio.run(scenario())
    assert phase is PlayPhase.THINKING
    assert early_requests == []
    assert h.mover.calls == [("e2", "e4", None)]
    assert h.controller.moves_played == 1
    assert h.controller.last_move == "e2e4"
    request = h.backend.requests[0]
    assert (request.multipv, request.think_time_ms) == (1, 500)
    assert len(h.backend.requests) == 1
    assert h.controller.phase is PlayPhase.DISABLED


def test_think_range_changes_apply_to_running_controller(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, best_line("e2e4"), think=1.0)
        h.state.config.set_think_range(4.0, 4.0)
        h.controller.start()
        await virtual_clock.advance(3.0)
        early_requests = list(h.backend.requests)
        await virtual_clock.advance(3.0)
        await h.controller.stop()
        return h, early_requests

    h, early_requests = asyncio.run(scenario())
    assert early_requests == []
    assert 4.0 in virtual_clock.sleeps
    assert h.backend.requests[0].think_time_ms == 2000
    assert h.mover.calls == [("e2", "e4", None)]


def test_colour_change_applies_to_running_controller(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, color="white")
        h.controller.start()
        h.state.config.automatic_color = "black"
        await virtual_clock.advance(5.0)
        return h

    h = asyncio.run(scenario())
    assert h.backend.requests == []
    assert h.controller.phase is PlayPhase.WATCHING


def test_not_my_turn_never_requests(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, color="black")
        h.controller.start()
        await virtual_clock.advance(5.0)
        return h

    h = asyncio.run(scenario())
    assert h.backend.requests == []
    assert h.mover.calls == []
    assert h.controller.phase is PlayPhase.WATCHING
    assert h.controller.play.waiting_for_move is False


def test_turn_lost_during_tick_cancels_cycle(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, think=2.0)
        h.controller.start()
        await virtual_clock.advance(0.2)
        waiting = h.controller.play.waiting_for_move
        h.source.turn_override = chess.BLACK
        await virtual_clock.advance(3.0)
        return h, waiting

    h, waiting = asyncio.run(scenario())
    assert waiting is True
    assert h.backend.requests == []
    assert h.controller.play.waiting_for_move is False
    assert h.controller.play.last_key is None


def test_turn_rechecked_after_pacing_delay(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock)
        h.controller.TICK_INTERVAL = 60.0
        h.controller.start()
        await virtual_clock.advance(0.5)
        h.source.turn_override = chess.BLACK
        await virtual_clock.advance(1.0)
        return h

    h = asyncio.run(scenario())
    assert h.backend.requests == []
    assert h.mover.calls == []
    assert h.controller.phase is PlayPhase.WATCHING
    assert h.controller.play.waiting_for_move is False


def test_timeout_returns_to_watching_and_retries_later(virtual_clock) -> None:
    async def scenario():
        never = asyncio.Event()
        h = Harness(virtual_clock, [never.wait], [never.wait])
        h.controller.start()
        await virtual_clock.advance(11.2)
        after_timeout = list(h.backend.requests)
        await virtual_clock.advance(3.0)
        return h, after_timeout

    h, after_timeout = asyncio.run(scenario())
    assert len(after_timeout) == 1
    assert "[auto] Timeout - retrying..." in h.statuses
    assert len(h.backend.requests) == 2
    assert h.mover.calls == []


def test_no_legal_move_ends_wait_early(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, [BestMoveEvent(move="(none)")], think=5.0)
        h.controller.start()
        await virtual_clock.advance(5.3)
        return h

    h = asyncio.run(scenario())
    assert "[auto] No legal move" in h.statuses
    assert h.mover.calls == []
    assert h.controller.play.waiting_for_move is False


def test_unchanged_position_retriggers_after_quiet_period(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, best_line("e2e4"), best_line("e2e4"), mover=RecordingMover())
        h.controller.start()
        await virtual_clock.advance(5.0)
        first = len(h.backend.requests)
        await virtual_clock.advance(1.0)
        return h, first

    h, first = asyncio.run(scenario())
    assert first == 1
    assert len(h.backend.requests) == 2
    assert len(h.mover.calls) >= 1


def test_failed_move_is_reported(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, best_line("e2e4"), mover=RecordingMover(result=False))
        h.controller.start()
        await virtual_clock.advance(2.0)
        return h

    h = asyncio.run(scenario())
    assert h.controller.moves_played == 0
    assert "[auto] Could not play e2-e4" in h.statuses
    assert h.controller.play.waiting_for_move is False


def test_force_move_now_skips_pacing(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, best_line("d2d4"), think=5.0)
        h.controller.start()
        forced = h.controller.force_move_now()
        again = h.controller.force_move_now()
        await virtual_clock.advance(1.0)
        return h, forced, again

    h, forced, again = asyncio.run(scenario())
    assert (forced, again) == (True, False)
    assert h.mover.calls == [("d2", "d4", None)]
    assert h.backend.requests[0].think_time_ms == 2500
    assert len(h.backend.requests) == 1


def test_force_move_now_rejected_when_disabled_or_not_ready(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock, ready=False)
        disabled = h.controller.force_move_now()
        disabled_status = h.controller.status
        h.controller.play.enabled = True
        not_ready = h.controller.force_move_now()
        await virtual_clock.settle()
        return h, disabled, disabled_status, not_ready

    h, disabled, disabled_status, not_ready = asyncio.run(scenario())
    assert disabled is False
    assert disabled_status == "Enable automatic play first"
    assert not_ready is False
    assert h.backend.starts == 1
    assert h.backend.requests == []


def test_stop_leaves_issued_request_alone(virtual_clock) -> None:
    async def scenario():
        gate = asyncio.Event()
        h = Harness(virtual_clock, [gate.wait, *best_line("e2e4")])
        h.controller.start()
        await virtual_clock.advance(1.05)
        in_flight = h.coordinator.requesting
        stopped = await h.controller.stop()
        again = await h.controller.stop()
        gate.set()
        await virtual_clock.advance(2.0)
        return h, in_flight, stopped, again

    h, in_flight, stopped, again = asyncio.run(scenario())
    assert in_flight is True
    assert (stopped, again) == (True, False)
    assert h.backend.cancels == 0
    assert h.mover.calls == []
    assert h.controller.phase is PlayPhase.DISABLED
    assert h.state.session.best_move == "e2e4"


def test_unreadable_position_is_reported(virtual_clock) -> None:
    async def scenario():
        h = Harness(virtual_clock)
        h.controller.start()
        h.source.fail = True
        await virtual_clock.advance(0.6)
        return h

    h = asyncio.run(scenario())
    assert h.controller.status == "Could not read position"
    assert h.backend.requests == []


def test_two_controllers_play_both_sides(virtual_clock) -> None:
    async def scenario():
        board = chess.Board()
        h = Harness(virtual_clock, best_line("e2e4"), best_line("e7e5"), board=board, mover=BoardMover(board))
        black = h.make_controller(
            virtual_clock, play_state=AutomaticPlayState(my_color="black")
        )
        h.controller.start()
        black.start()
        await virtual_clock.advance(3.5)
        await h.controller.stop()
        await black.stop()
        return h

    h = asyncio.run(scenario())
    assert [move.uci() for move in h.board.move_stack] == ["e2e4", "e7e5"]
