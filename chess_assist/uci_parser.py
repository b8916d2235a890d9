"""Decoder for the line-based engine protocol.

Every inbound line is run through a small ordered set of matchers. Each
matcher looks at one feature of the line and returns an optional typed event,
so a single ``info`` line usually yields a score, a depth and a principal
variation at once:

    >>> parse_line("info depth 12 seldepth 18 multipv 1 score cp 35 nodes 100000 pv e2e4 e7e5")
    (ScoreEvent(centipawns=35, mate=None, bound=None), DepthEvent(depth=12, seldepth=18), PVEvent(rank=0, moves=('e2e4', 'e7e5')))

Parsing is pure; associating scores with variations and synthesising a
variation from a bare ``bestmove`` is the session's job (see
:mod:`chess_assist.analysis`).
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

from .errors import AssistError

_SCORE_CP_RE = re.compile(r"score cp (-?\d+)")
_SCORE_MATE_RE = re.compile(r"score mate (-?\d+)")
_BOUND_RE = re.compile(r"\b(lowerbound|upperbound)\b")
_DEPTH_RE = re.compile(r"\bdepth (\d+)")
_SELDEPTH_RE = re.compile(r"\bseldepth (\d+)")
_MULTIPV_RE = re.compile(r"multipv (\d+)")

PV_MARKER = " pv "
BESTMOVE_PREFIX = "bestmove"
NO_MOVE_TOKEN = "(none)"


@dataclass(frozen=True)
class ScoreEvent:
    """Score in centipawns or mate-in-N from the side to move; exactly one is set."""

    centipawns: Optional[int] = None
    mate: Optional[int] = None
    bound: Optional[str] = None


@dataclass(frozen=True)
class DepthEvent:
    depth: int
    seldepth: Optional[int] = None


@dataclass(frozen=True)
class PVEvent:
    rank: int  # zero-based: "multipv 1" is rank 0
    moves: Tuple[str, ...]


@dataclass(frozen=True)
class BestMoveEvent:
    move: Optional[str]
    ponder: Optional[str] = None

    @property
    def no_legal_move(self) -> bool:
        return not self.move or self.move == NO_MOVE_TOKEN or len(self.move) < 4


@dataclass(frozen=True)
class ErrorEvent:
    """Terminal event produced by an adapter when a request fails."""

    error: AssistError


AnalysisEvent = Union[ScoreEvent, DepthEvent, PVEvent, BestMoveEvent, ErrorEvent]
TERMINAL_EVENTS = (BestMoveEvent, ErrorEvent)


@dataclass(frozen=True)
class RawLine:
    text: str

    @classmethod
    def of(cls, line: str) -> "RawLine":
        return cls(line.strip())

    def has(self, token: str) -> bool:
        return token in self.text


def match_score(line: RawLine) -> Optional[ScoreEvent]:
    if not (line.has("cp") or line.has("mate")):
        return None
    bound_match = _BOUND_RE.search(line.text)
    bound = bound_match.group(1) if bound_match else None
    mate_match = _SCORE_MATE_RE.search(line.text)
    if mate_match:
        return ScoreEvent(mate=int(mate_match.group(1)), bound=bound)
    cp_match = _SCORE_CP_RE.search(line.text)
    if cp_match:
        return ScoreEvent(centipawns=int(cp_match.group(1)), bound=bound)
    return None


def match_depth(line: RawLine) -> Optional[DepthEvent]:
    if not (line.has("depth") and line.has("seldepth")):
        return None
    depth_match = _DEPTH_RE.search(line.text)
    if not depth_match:
        return None
    seldepth_match = _SELDEPTH_RE.search(line.text)
    seldepth = int(seldepth_match.group(1)) if seldepth_match else None
    return DepthEvent(depth=int(depth_match.group(1)), seldepth=seldepth)


def match_pv(line: RawLine) -> Optional[PVEvent]:
    if not line.has("multipv"):
        return None
    pv_index = line.text.find(PV_MARKER)
    if pv_index < 0:
        return None
    multipv_match = _MULTIPV_RE.search(line.text)
    if not multipv_match:
        return None
    moves = tuple(line.text[pv_index + len(PV_MARKER):].split())
    if not moves:
        return None
    return PVEvent(rank=int(multipv_match.group(1)) - 1, moves=moves)


def match_bestmove(line: RawLine) -> Optional[BestMoveEvent]:
    if line.text[:8] != BESTMOVE_PREFIX:
        return None
    parts = line.text.split()
    move = parts[1] if len(parts) > 1 else None
    ponder = None
    if len(parts) > 3 and parts[2] == "ponder":
        ponder = parts[3]
    return BestMoveEvent(move=move, ponder=ponder)


LineMatcher = Callable[[RawLine], Optional[AnalysisEvent]]

MATCHERS: Tuple[LineMatcher, ...] = (
    match_score,
    match_depth,
    match_pv,
    match_bestmove,
)


def parse_line(line: str) -> Tuple[AnalysisEvent, ...]:
    raw = RawLine.of(line)
    if not raw.text:
        return ()
    events = []
    for matcher in MATCHERS:
        event = matcher(raw)
        if event is not None:
            events.append(event)
    return tuple(events)


def format_go(movetime_ms: int) -> str:
    return f"go movetime {max(1, int(movetime_ms))}"
