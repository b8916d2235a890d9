import chess
import pytest

from chess_assist.analysis import AnalysisSession, PrincipalVariation
from chess_assist.evaluation import eval_bar_ratio, format_score, summarize, white_perspective


@pytest.mark.parametrize(
    "cp, mate, expected",
    [
        (35, None, "+0.35"),
        (-120, None, "-1.20"),
        (0, None, "0.00"),
        (None, 3, "+M3"),
        (None, -3, "-M3"),
        (50, -2, "-M2"),
        (None, None, ""),
    ],
)
def test_format_score(cp, mate, expected) -> None:
    assert format_score(cp, mate) == expected


def test_summary_uses_top_variation() -> None:
    session = AnalysisSession(generation=1, position="8/8/8/8/8/8/8/K6k w - - 0 1")
    session.depth = 4
    session.score_cp = -10
    session.pvs[0] = PrincipalVariation(index=0, moves=["a1a2"], score_cp=35, depth=12)
    summary = summarize(session)
    assert summary.score_cp == 35
    assert summary.depth == 12
    assert summary.text == "Depth 12 | Score +0.35"


def test_summary_falls_back_to_latest_session_values() -> None:
    session = AnalysisSession(generation=1, position="8/8/8/8/8/8/8/K6k w - - 0 1")
    session.depth = 9
    session.score_mate = -3
    assert summarize(session).text == "Depth 9 | Score -M3"
    assert summarize(None).text == ""


def test_white_perspective_flips_for_black() -> None:
    assert white_perspective(40, None, chess.BLACK) == (-40, None)
    assert white_perspective(None, 2, chess.BLACK) == (None, -2)
    assert white_perspective(40, None, chess.WHITE) == (40, None)


def test_eval_bar_ratio_clamps_and_handles_mate() -> None:
    assert eval_bar_ratio(None, None, chess.WHITE) == 50.0
    assert eval_bar_ratio(0, None, chess.WHITE) == 50.0
    assert eval_bar_ratio(300, None, chess.WHITE) == 75.0
    assert eval_bar_ratio(5000, None, chess.WHITE) == 100.0
    assert eval_bar_ratio(300, None, chess.BLACK) == 25.0
    assert eval_bar_ratio(None, 4, chess.WHITE) == 100.0
    assert eval_bar_ratio(None, 4, chess.BLACK) == 0.0
