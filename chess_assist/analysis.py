from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from .errors import AssistError
from .uci_parser import (
    AnalysisEvent,
    BestMoveEvent,
    DepthEvent,
    ErrorEvent,
    PVEvent,
    ScoreEvent,
)


class SessionMode(Enum):
    NORMAL = "normal"
    EVALUATION_ONLY = "evaluation-only"


@dataclass(frozen=True)
class AnalysisRequest:
    position: str
    multipv: int
    think_time_ms: int
    generation: int
    mode: SessionMode = SessionMode.NORMAL

    def __post_init__(self) -> None:
        if self.multipv < 1:
            raise ValueError("multipv must be at least 1")
        if self.think_time_ms <= 0:
            raise ValueError("think_time_ms must be positive")


@dataclass
class PrincipalVariation:
    index: int
    moves: List[str]
    score_cp: Optional[int] = None
    score_mate: Optional[int] = None
    depth: Optional[int] = None

    @property
    def rank(self) -> int:
        return self.index + 1

    @property
    def first_move(self) -> Optional[str]:
        return self.moves[0] if self.moves else None


@dataclass
class AnalysisSession:
    """Results of one generation.

    Only the request coordinator calls :meth:`apply`, and only after checking
    that the event belongs to the current generation.
    """

    generation: int
    position: str
    mode: SessionMode = SessionMode.NORMAL
    active: bool = True
    pvs: Dict[int, PrincipalVariation] = field(default_factory=dict)
    depth: Optional[int] = None
    score_cp: Optional[int] = None
    score_mate: Optional[int] = None
    finished: bool = False
    best_move: Optional[str] = None
    ponder: Optional[str] = None
    no_legal_move: bool = False
    error: Optional[AssistError] = None
    _line_score: Optional[ScoreEvent] = field(default=None, repr=False)
    _line_depth: Optional[int] = field(default=None, repr=False)

    @classmethod
    def for_request(cls, request: AnalysisRequest) -> "AnalysisSession":
        return cls(generation=request.generation, position=request.position, mode=request.mode)

    @property
    def evaluation_only(self) -> bool:
        return self.mode is SessionMode.EVALUATION_ONLY

    def top(self) -> Optional[PrincipalVariation]:
        return self.pvs.get(0)

    def ranked(self) -> List[PrincipalVariation]:
        return [self.pvs[index] for index in sorted(self.pvs)]

    def has_best_move(self) -> bool:
        top = self.top()
        return self.finished and top is not None and bool(top.moves)

    def suggested_moves(self, limit: int) -> List[str]:
        moves = []
        for pv in self.ranked()[:limit]:
            move = pv.first_move
            if move and len(move) >= 4:
                moves.append(move)
        return moves

    def apply(self, event: AnalysisEvent) -> None:
        if isinstance(event, ScoreEvent):
            self.score_cp = event.centipawns
            self.score_mate = event.mate
            self._line_score = event
        elif isinstance(event, DepthEvent):
            self.depth = event.depth
            self._line_depth = event.depth
        elif isinstance(event, PVEvent):
            self._apply_pv(event)
        elif isinstance(event, BestMoveEvent):
            self._apply_bestmove(event)
        elif isinstance(event, ErrorEvent):
            self.fail(event.error)

    def fail(self, error: AssistError) -> None:
        self.error = error
        self.finished = True
        self.active = False

    def _apply_pv(self, event: PVEvent) -> None:
        pv = PrincipalVariation(index=event.rank, moves=list(event.moves), depth=self._line_depth)
        if self._line_score is not None:
            pv.score_cp = self._line_score.centipawns
            pv.score_mate = self._line_score.mate
        self.pvs[event.rank] = pv
        self._line_score = None
        self._line_depth = None

    def _apply_bestmove(self, event: BestMoveEvent) -> None:
        self.finished = True
        self.active = False
        if event.no_legal_move:
            self.no_legal_move = True
            return
        self.best_move = event.move
        self.ponder = event.ponder
        top = self.top()
        if top is None or not top.moves:
            self.pvs[0] = PrincipalVariation(
                index=0,
                moves=[event.move],
                score_cp=self.score_cp,
                score_mate=self.score_mate,
                depth=self.depth,
            )
