# MAIN
import argparse
import asyncio
import shlex
import sys
from typing import List, Optional

import chess

from .analysis import AnalysisSession
from .auto_play import AutomaticPlayController
from .chess_logic import COLOR_NAME
from .clock import SYSTEM_CLOCK, Clock
from .config import AssistConfig, load_config
from .coordinator import RequestCoordinator
from .engine_comm import AnalysisBackend, UciBackend
from .evaluation import format_score, summarize
from .http_backend import HttpBackend
from .position_feed import SuggestionFeed
from .state import AutomaticPlayState, OrchestratorState
from .utils import ReportingLevel, StatusReporter, error_text, info_text

GAME_POLL_INTERVAL = 0.25
PV_PREVIEW_MOVES = 8


class BoardPositionSource:
    """Position source backed by a python-chess board."""

    def __init__(self, board: chess.Board, *, orientation: bool = chess.WHITE) -> None:
        self.board = board
        self.orientation = orientation

    def current_position(self) -> str:
        return self.board.fen()

    def side_to_move(self) -> bool:
        return self.board.turn

    def player_color(self) -> bool:
        return self.orientation


class BoardMover:
    """Applies engine moves to a python-chess board, rejecting illegal ones."""

    def __init__(self, board: chess.Board, *, reporter: Optional[StatusReporter] = None) -> None:
        self.board = board
        self.reporter = reporter or StatusReporter(ReportingLevel.QUIET)
        self.played: List[str] = []

    def move_piece(self, from_square: str, to_square: str, promotion: Optional[str] = None) -> bool:
        candidates = [f"{from_square}{to_square}{promotion or ''}"]
        if promotion:
            # A bare back-rank move is read as a queen promotion; non-pawns need it dropped.
            candidates.append(f"{from_square}{to_square}")
        for move_uci in candidates:
            try:
                move = chess.Move.from_uci(move_uci)
            except ValueError:
                continue
            if move in self.board.legal_moves:
                self.board.push(move)
                self.played.append(move_uci)
                return True
        self.reporter.info(f"Move illegal in current position: {candidates[0]}")
        return False


def build_backend(
    config: AssistConfig,
    reporter: StatusReporter,
    *,
    clock: Clock = SYSTEM_CLOCK,
) -> AnalysisBackend:
    if config.backend == "http":
        return HttpBackend(config, reporter=reporter, clock=clock)
    return UciBackend(config, reporter=reporter)


def parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(prog="chess-assist")
    parser.add_argument(
        "-fen", help="Analyse (or start automatic play from) the given FEN string"
    )
    parser.add_argument("-dev", action="store_true", help="Enable debug mode")
    parser.add_argument("--config", help="Load settings from a JSON config file")
    backend = parser.add_mutually_exclusive_group()
    backend.add_argument("--engine", help="Command line of a UCI engine to run")
    backend.add_argument("--server", help="Base URL of a local analysis server")
    parser.add_argument("--multipv", type=int, help="Number of lines to request")
    parser.add_argument("--think-time", type=float, help="Seconds per analysis request")
    parser.add_argument("--hash", type=int, help="Engine hash size in MB")
    parser.add_argument(
        "--auto-play",
        action="store_true",
        help="Play a headless game on a local board instead of analysing one position",
    )
    parser.add_argument(
        "--color",
        choices=("white", "black", "both"),
        default="both",
        help="Colour(s) driven by automatic play; the other side uses auto-move suggestions",
    )
    parser.add_argument("--min-think", type=float, help="Minimum automatic pacing delay in seconds")
    parser.add_argument("--max-think", type=float, help="Maximum automatic pacing delay in seconds")
    parser.add_argument("--max-moves", type=int, default=200, help="Stop automatic play after this many plies")
    parser.add_argument("--quiet", action="store_true", help="Only print results")
    return parser.parse_args(argv)


def build_config(args) -> AssistConfig:
    config = load_config(args.config) if args.config else AssistConfig()
    if args.engine:
        config.backend = "uci"
        config.engine_command = shlex.split(args.engine)
    if args.server:
        config.backend = "http"
        config.server_url = args.server
    if args.multipv is not None:
        if args.multipv < 1:
            raise ValueError("--multipv must be at least 1")
        config.multipv = args.multipv
    if args.think_time is not None:
        if args.think_time <= 0:
            raise ValueError("--think-time must be positive")
        config.think_time = args.think_time
    if args.hash is not None:
        config.hash_mb = args.hash
    if args.min_think is not None or args.max_think is not None:
        config.set_think_range(
            config.automatic_min_time if args.min_think is None else args.min_think,
            config.automatic_max_time if args.max_think is None else args.max_think,
        )
    config.debug = config.debug or bool(args.dev)
    config.automatic = config.automatic or bool(args.auto_play)
    return config


def reporting_level(args, config: Optional[AssistConfig] = None) -> ReportingLevel:
    if args.quiet:
        return ReportingLevel.QUIET
    if args.dev or (config is not None and config.debug):
        return ReportingLevel.VERBOSE
    return ReportingLevel.BASIC


def format_session(session: Optional[AnalysisSession]) -> List[str]:
    if session is None:
        return ["No analysis"]
    if session.error is not None:
        return [f"Analysis failed: {session.error}"]
    if session.no_legal_move:
        return ["No legal move"]
    lines = []
    summary = summarize(session)
    if summary.text:
        lines.append(summary.text)
    for pv in session.ranked():
        score = format_score(pv.score_cp, pv.score_mate)
        preview = " ".join(pv.moves[:PV_PREVIEW_MOVES])
        suffix = f" ({score})" if score else ""
        lines.append(f"{pv.rank}. {preview}{suffix}")
    return lines


async def analyze_position(board: chess.Board, config: AssistConfig, reporter: StatusReporter) -> int:
    state = OrchestratorState(config=config)
    coordinator = RequestCoordinator(state, build_backend(config, reporter), reporter=reporter)
    feed = SuggestionFeed(state, coordinator, BoardPositionSource(board, orientation=board.turn))
    try:
        feed.offer(board.fen(), force=True)
        session = await coordinator.wait_idle()
    finally:
        await feed.close()
        await coordinator.close()

    for line in format_session(session):
        print(line)
    if feed.suggestions:
        print(f"Suggested: {', '.join(feed.suggestions)}")
    return 0 if session is not None and session.error is None else 1


async def run_automatic_play(
    board: chess.Board,
    config: AssistConfig,
    reporter: StatusReporter,
    *,
    colors: List[bool],
    max_moves: int,
) -> int:
    state = OrchestratorState(config=config)
    coordinator = RequestCoordinator(state, build_backend(config, reporter), reporter=reporter)
    mover = BoardMover(board, reporter=reporter)

    controllers = []
    for color in colors:
        play_state = AutomaticPlayState(my_color=COLOR_NAME[color])
        controllers.append(
            AutomaticPlayController(
                state,
                coordinator,
                BoardPositionSource(board, orientation=color),
                mover,
                play_state=play_state,
                reporter=reporter,
            )
        )

    feed = None
    if len(colors) == 1:
        opponent = not colors[0]
        config.player_color = COLOR_NAME[opponent]
        config.auto_suggest = True
        config.auto_move = True
        feed = SuggestionFeed(
            state,
            coordinator,
            BoardPositionSource(board, orientation=opponent),
            mover=mover,
            reporter=reporter,
        )

    if not await coordinator.ensure_started():
        await coordinator.close()
        print(error_text(f"Backend unavailable. {coordinator.backend.remediation()}"))
        return 1

    for controller in controllers:
        controller.start()
    try:
        while not board.is_game_over(claim_draw=True) and len(mover.played) < max_moves:
            if feed is not None:
                feed.poll()
            await asyncio.sleep(GAME_POLL_INTERVAL)
    finally:
        for controller in controllers:
            await controller.stop()
        if feed is not None:
            await feed.close()
        await coordinator.close()

    print(f"Moves: {' '.join(mover.played)}")
    outcome = board.outcome(claim_draw=True)
    print(f"Result: {outcome.result() if outcome else '*'}")
    print(f"FEN: {board.fen()}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        config = build_config(args)
        board = chess.Board(args.fen) if args.fen else chess.Board()
    except (OSError, ValueError) as exc:
        print(error_text(str(exc)), file=sys.stderr)
        return 2
    reporter = StatusReporter(reporting_level(args, config))

    try:
        if config.automatic:
            if args.color == "both":
                colors = [chess.WHITE, chess.BLACK]
            else:
                colors = [chess.WHITE if args.color == "white" else chess.BLACK]
            return asyncio.run(
                run_automatic_play(board, config, reporter, colors=colors, max_moves=args.max_moves)
            )
        return asyncio.run(analyze_position(board, config, reporter))
    except KeyboardInterrupt:
        if not args.quiet:
            print(info_text("Interrupted by user"))
        return 130


if __name__ == "__main__":
    sys.exit(main())
