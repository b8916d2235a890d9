import asyncio
from typing import List, Optional

import chess

from chess_assist.engine_comm import AnalysisBackend
from chess_assist.uci_parser import BestMoveEvent, ErrorEvent, PVEvent, ScoreEvent

START_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"


def best_line(move: str, cp: int = 20) -> list:
    return [ScoreEvent(centipawns=cp), PVEvent(rank=0, moves=(move,)), BestMoveEvent(move=move)]


class ScriptedBackend(AnalysisBackend):
    """Replays one script per analyze call.

    Script items are events, or zero-argument coroutine functions that are
    awaited in place (used to hold a request in flight).
    """

    name = "stub"

    def __init__(self, *scripts, retryable: bool = False, ready: bool = True, start_result: bool = True) -> None:
        self.scripts = list(scripts)
        self.retryable = retryable
        self.ready = ready
        self.start_result = start_result
        self.requests = []
        self.starts = 0
        self.cancels = 0
        self.offline_marks = 0
        self.closed = False

    async def start(self) -> bool:
        self.starts += 1
        await asyncio.sleep(0)
        self.ready = self.start_result
        return self.start_result

    def is_ready(self) -> bool:
        return self.ready

    async def analyze(self, request):
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else best_line("e2e4")
        for item in script:
            if callable(item):
                await item()
                continue
            yield item

    def cancel(self) -> None:
        self.cancels += 1

    def mark_offline(self) -> None:
        self.offline_marks += 1
        self.ready = False

    def remediation(self) -> str:
        return "start the stub"

    async def close(self) -> None:
        self.closed = True


def error_script(error) -> list:
    return [ErrorEvent(error)]


class BoardSource:
    """Position source over a python-chess board with overridable hints."""

    def __init__(self, board: Optional[chess.Board] = None, *, orientation=chess.WHITE) -> None:
        self.board = board or chess.Board()
        self.orientation = orientation
        self.turn_override = None
        self.position_override: Optional[str] = None
        self.fail = False

    def current_position(self) -> Optional[str]:
        if self.fail:
            raise RuntimeError("observer detached")
        if self.position_override is not None:
            return self.position_override
        return self.board.fen()

    def side_to_move(self):
        if self.turn_override is not None:
            return self.turn_override
        return self.board.turn

    def player_color(self):
        return self.orientation


class RecordingMover:
    def __init__(self, board: Optional[chess.Board] = None, *, result: bool = True) -> None:
        self.board = board
        self.result = result
        self.calls: List[tuple] = []

    def move_piece(self, from_square: str, to_square: str, promotion: Optional[str] = None) -> bool:
        self.calls.append((from_square, to_square, promotion))
        if self.board is not None and self.result:
            self.board.push(chess.Move.from_uci(f"{from_square}{to_square}{promotion or ''}"))
        return self.result


class FakeEngineProcess:
    """Scripted stand-in for the engine subprocess."""

    def __init__(self, *, answer_uci: bool = True, name: str = "FakeFish") -> None:
        self.answer_uci = answer_uci
        self.name = name
        self.commands = []
        self.go_replies = []
        self.stopped = False
        self.lines = None

    async def start(self) -> None:
        self.lines = asyncio.Queue()

    def push(self, *lines: str) -> None:
        for line in lines:
            self.lines.put_nowait(line + "\n")

    def send(self, command: str) -> None:
        self.commands.append(command)
        if command == "uci" and self.answer_uci:
            self.push(f"id name {self.name}", "uciok")
        elif command.startswith("go ") and self.go_replies:
            self.push(*self.go_replies.pop(0))

    async def readline(self) -> str:
        return await self.lines.get()

    def poll(self):
        return 0 if self.stopped else None

    async def stop(self, timeout: float = 2.0) -> None:
        self.stopped = True
        self.lines.put_nowait("")


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)
