from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .analysis import AnalysisSession
from .config import AssistConfig


class PlayPhase(Enum):
    DISABLED = "disabled"
    WATCHING = "watching"
    THINKING = "thinking"
    WAITING_FOR_RESULT = "waiting-for-result"
    ACTED = "acted"
    TIMED_OUT = "timed-out"


@dataclass
class AutomaticPlayState:
    """Per-controller cycle bookkeeping.

    Pacing bounds always come from the live config. ``my_color`` pins the
    colour for one controller; None follows ``config.automatic_color``.
    """

    enabled: bool = False
    my_color: Optional[str] = None
    waiting_for_move: bool = False
    last_key: Optional[str] = None
    # None means "never acted", so the safety re-trigger is always due.
    last_action_at: Optional[float] = None
    phase: PlayPhase = PlayPhase.DISABLED

    def color_setting(self, config: AssistConfig) -> str:
        return self.my_color or config.automatic_color

    def reset_cycle(self) -> None:
        self.waiting_for_move = False
        self.last_key = None
        self.last_action_at = None


@dataclass
class OrchestratorState:
    """Everything the orchestration components share.

    The request coordinator is the only writer of ``generation``, ``session``
    and ``requesting``; feeds and controllers read them.
    """

    config: AssistConfig = field(default_factory=AssistConfig)
    generation: int = 0
    session: Optional[AnalysisSession] = None
    requesting: bool = False
    last_turn: Optional[bool] = None
    automatic: AutomaticPlayState = field(default_factory=AutomaticPlayState)

    def current(self, generation: int) -> bool:
        return generation == self.generation
