"""Human-facing score summaries derived from the best principal variation."""

from dataclasses import dataclass
from typing import Optional, Tuple

import chess

from .analysis import AnalysisSession

EVAL_BAR_CLAMP_CP = 600


@dataclass(frozen=True)
class EvaluationSummary:
    score_cp: Optional[int]
    score_mate: Optional[int]
    depth: Optional[int]
    score_text: str
    text: str


def format_score(score_cp: Optional[int], score_mate: Optional[int]) -> str:
    """``+M3`` / ``-M3`` for mates, pawns with two decimals otherwise (``+0.35``)."""
    if score_mate is not None:
        sign = "+" if score_mate > 0 else "-"
        return f"{sign}M{abs(score_mate)}"
    if score_cp is not None:
        pawns = score_cp / 100
        sign = "+" if pawns > 0 else ""
        return f"{sign}{pawns:.2f}"
    return ""


def summarize(session: Optional[AnalysisSession]) -> EvaluationSummary:
    if session is None:
        return EvaluationSummary(None, None, None, "", "")

    top = session.top()
    score_cp, score_mate, depth = session.score_cp, session.score_mate, session.depth
    if top is not None and (top.score_cp is not None or top.score_mate is not None):
        score_cp, score_mate = top.score_cp, top.score_mate
    if top is not None and top.depth is not None:
        depth = top.depth

    score_text = format_score(score_cp, score_mate)
    if depth and score_text:
        text = f"Depth {depth} | Score {score_text}"
    elif depth:
        text = f"Depth {depth}"
    elif score_text:
        text = f"Score {score_text}"
    else:
        text = ""
    return EvaluationSummary(score_cp, score_mate, depth, score_text, text)


def white_perspective(
    score_cp: Optional[int], score_mate: Optional[int], side_to_move: Optional[bool]
) -> Tuple[Optional[int], Optional[int]]:
    # Engine scores are relative to the side to move.
    if side_to_move == chess.BLACK:
        if score_cp is not None:
            score_cp = -score_cp
        if score_mate is not None:
            score_mate = -score_mate
    return score_cp, score_mate


def eval_bar_ratio(
    score_cp: Optional[int], score_mate: Optional[int], side_to_move: Optional[bool]
) -> float:
    """Share of the bar owned by white, 0 to 100."""
    cp, mate = white_perspective(score_cp, score_mate, side_to_move)
    if mate is not None:
        if mate > 0:
            return 100.0
        if mate < 0:
            return 0.0
        return 50.0
    if cp is not None:
        clamped = max(-EVAL_BAR_CLAMP_CP, min(EVAL_BAR_CLAMP_CP, cp))
        return 50.0 + (clamped / EVAL_BAR_CLAMP_CP) * 50.0
    return 50.0
