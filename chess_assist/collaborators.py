"""Interfaces to the board observer and the move executor.

Both live outside the orchestrator. Calls into them are wrapped so that a
failing collaborator turns into a status line instead of an exception
escaping a polling loop.
"""

from typing import Any, Optional, Protocol

from .chess_logic import decompose_move, resolve_turn
from .state import OrchestratorState
from .utils import StatusKind, StatusReporter


class PositionSource(Protocol):
    """Protocol describing the board observer."""

    def current_position(self) -> Optional[str]:
        ...

    def side_to_move(self) -> Any:
        """Authoritative side to move, or None when the observer cannot tell."""
        ...

    def player_color(self) -> Any:
        """Board orientation hint used when the colour setting is "auto"."""
        ...


class Mover(Protocol):
    def move_piece(self, from_square: str, to_square: str, promotion: Optional[str] = None) -> bool:
        ...


def read_position(source: PositionSource, reporter: StatusReporter) -> Optional[str]:
    try:
        return source.current_position()
    except Exception as exc:
        reporter.debug(f"Position source failed: {exc!r}")
        return None


def read_hint(source: PositionSource, name: str, reporter: StatusReporter) -> Any:
    getter = getattr(source, name, None)
    if getter is None:
        return None
    try:
        return getter()
    except Exception as exc:
        reporter.debug(f"{name} lookup failed: {exc!r}")
        return None


def current_turn(
    state: OrchestratorState,
    source: PositionSource,
    position: Optional[str],
    reporter: StatusReporter,
) -> Optional[bool]:
    turn = resolve_turn(read_hint(source, "side_to_move", reporter), position, state.last_turn)
    if turn is not None:
        state.last_turn = turn
    return turn


def play_move(mover: Mover, move: str, reporter: StatusReporter) -> bool:
    try:
        from_square, to_square, promotion = decompose_move(move)
    except ValueError as exc:
        reporter.update(f"Cannot play {move!r}: {exc}", StatusKind.ERROR)
        return False

    reporter.update(f"Moving {from_square}-{to_square}...", StatusKind.BUSY)
    try:
        moved = mover.move_piece(from_square, to_square, promotion)
    except Exception as exc:
        reporter.update(f"Auto move failed: {exc}", StatusKind.ERROR)
        return False
    if moved is False:
        reporter.update(f"Auto move failed: {from_square}-{to_square}", StatusKind.ERROR)
        return False
    reporter.update(f"Moved {from_square}-{to_square}", StatusKind.DONE)
    return True
