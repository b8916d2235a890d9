from typing import Optional, Tuple

import chess

COLOR_NAME = {chess.WHITE: "white", chess.BLACK: "black"}
PROMOTION_PIECES = ("q", "r", "b", "n")

# Anything shorter cannot hold a placement field plus side to move.
MIN_POSITION_LENGTH = 20


def looks_like_position(position: Optional[str]) -> bool:
    return bool(position) and len(position) >= MIN_POSITION_LENGTH

def position_key(position: Optional[str]) -> str:
    """Placement and side-to-move fields only; castling, en passant and counters are ignored."""
    if not position:
        return ""
    return " ".join(position.split()[:2])

def normalize_turn(value) -> Optional[bool]:
    if value is True or value is False:
        return value
    if value in (1, "w", "white"):
        return chess.WHITE
    if value in (2, "b", "black"):
        return chess.BLACK
    return None

def turn_from_position(position: Optional[str]) -> Optional[bool]:
    if not position:
        return None
    parts = position.split()
    if len(parts) < 2:
        return None
    if parts[1] == "w":
        return chess.WHITE
    if parts[1] == "b":
        return chess.BLACK
    return None

def resolve_turn(authoritative, position: Optional[str], last_known: Optional[bool]) -> Optional[bool]:
    """Authoritative source first, then the position string, then the last known value."""
    turn = normalize_turn(authoritative)
    if turn is not None:
        return turn
    turn = turn_from_position(position)
    if turn is not None:
        return turn
    return last_known

def resolve_color(setting: str, detected=None) -> bool:
    """Explicit colour setting, or the detected orientation for "auto" (white when unknown)."""
    if setting != "auto":
        color = normalize_turn(setting)
        if color is None:
            raise ValueError(f"Unknown colour setting: {setting!r}")
        return color
    color = normalize_turn(detected)
    return chess.WHITE if color is None else color

def force_side_to_move(position: str, color: bool) -> str:
    parts = position.split(" ")
    if len(parts) < 2:
        return position
    parts[1] = "w" if color == chess.WHITE else "b"
    return " ".join(parts)

def promotion_char(move: str, from_square: str, to_square: str) -> Optional[str]:
    if move and len(move) > 4:
        return move[4].lower()
    if not from_square or not to_square:
        return None
    from_rank = chess.square_rank(chess.parse_square(from_square))
    to_rank = chess.square_rank(chess.parse_square(to_square))
    # Queen is assumed for a bare 7->8 / 2->1 advance.
    if (from_rank == 6 and to_rank == 7) or (from_rank == 1 and to_rank == 0):
        return "q"
    return None

def decompose_move(move: str) -> Tuple[str, str, Optional[str]]:
    """Split a 4 or 5 character move token into (from, to, promotion)."""
    if not move or len(move) < 4:
        raise ValueError(f"Move token too short: {move!r}")
    from_square = move[0:2].lower()
    to_square = move[2:4].lower()
    if from_square not in chess.SQUARE_NAMES or to_square not in chess.SQUARE_NAMES:
        raise ValueError(f"Invalid squares in move token: {move!r}")
    promotion = promotion_char(move, from_square, to_square)
    if promotion is not None and promotion not in PROMOTION_PIECES:
        raise ValueError(f"Invalid promotion piece in move token: {move!r}")
    return from_square, to_square, promotion

def describe_color(color: Optional[bool]) -> str:
    if color is None:
        return "unknown"
    return COLOR_NAME[color]
