"""Internal evaluation units to centipawns, UCI scores and WDL statistics.

The win rate model is ``1 / (1 + exp((a - v) / b))`` where ``a`` and ``b``
are cubic polynomials in the material left on the board. The fitted
constants come from the fishtest WDL model; they only cover material counts
in [10, 78] and are anchored at 58.
"""

from __future__ import annotations

import math
from typing import Tuple

import chess

VALUE_MATE = 32000
VALUE_INFINITE = 32001
MAX_PLY = 246

VALUE_MATE_IN_MAX_PLY = VALUE_MATE - MAX_PLY
VALUE_TB = VALUE_MATE_IN_MAX_PLY - 1
VALUE_TB_WIN_IN_MAX_PLY = VALUE_TB - MAX_PLY

MATERIAL_WEIGHTS = {
    chess.PAWN: 1,
    chess.KNIGHT: 3,
    chess.BISHOP: 3,
    chess.ROOK: 5,
    chess.QUEEN: 9,
}

_AS = (-185.71965483, 504.85014385, -438.58295743, 474.04604627)
_BS = (89.23542728, -137.02141296, 73.28669021, 47.53376190)


def mate_in(ply: int) -> int:
    return VALUE_MATE - ply


def mated_in(ply: int) -> int:
    return -VALUE_MATE + ply


def material_count(board: chess.Board) -> int:
    return sum(
        weight * chess.popcount(board.pieces_mask(piece_type, chess.WHITE) | board.pieces_mask(piece_type, chess.BLACK))
        for piece_type, weight in MATERIAL_WEIGHTS.items()
    )


def win_rate_params(material: int) -> Tuple[float, float]:
    m = min(max(material, 10), 78) / 58.0
    a = (((_AS[0] * m + _AS[1]) * m + _AS[2]) * m) + _AS[3]
    b = (((_BS[0] * m + _BS[1]) * m + _BS[2]) * m) + _BS[3]
    return a, b


def _round_half_away(value: float) -> int:
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def to_cp(value: int, material: int) -> int:
    """Centipawns for ``value`` without special handling of mate scores.

    Via the win rate model the WDL-derived score reduces to ``v / a``.
    """

    a, _ = win_rate_params(material)
    return _round_half_away(100 * int(value) / a)


def win_rate_model(value: int, material: int) -> int:
    """Win probability for the side ``value`` favours, in per mille."""

    a, b = win_rate_params(material)
    return int(0.5 + 1000 / (1 + math.exp((a - float(value)) / b)))


def wdl_triplet(value: int, material: int) -> Tuple[int, int, int]:
    win = win_rate_model(value, material)
    loss = win_rate_model(-value, material)
    return win, 1000 - win - loss, loss


def wdl(value: int, material: int) -> str:
    win, draw, loss = wdl_triplet(value, material)
    return f" wdl {win} {draw} {loss}"


def to_score(value: int, material: int) -> str:
    """UCI ``score`` payload: ``cp <x>`` or ``mate <y>``."""

    if not -VALUE_INFINITE < value < VALUE_INFINITE:
        raise ValueError(f"score {value} outside the evaluation range")

    if abs(value) < VALUE_TB_WIN_IN_MAX_PLY:
        return f"cp {to_cp(value, material)}"
    if abs(value) <= VALUE_TB:
        ply = VALUE_TB - abs(value)
        return f"cp {20000 - ply if value > 0 else -20000 + ply}"
    if value > 0:
        return f"mate {(VALUE_MATE - value + 1) // 2}"
    return f"mate {-((VALUE_MATE + value) // 2)}"


def board_to_cp(value: int, board: chess.Board) -> int:
    return to_cp(value, material_count(board))
