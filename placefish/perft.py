from __future__ import annotations

from typing import Dict

from .notation import format_move
from .state import StateStack


def perft(stack: StateStack, depth: int) -> int:
    """Count leaf nodes ``depth`` plies below the stack's current position."""

    if depth <= 0:
        return 1
    board = stack.board
    moves = list(board.legal_moves)
    if depth == 1:
        return len(moves)
    total = 0
    for move in moves:
        with stack.applied(move):
            total += perft(stack, depth - 1)
    return total


def perft_divide(stack: StateStack, depth: int) -> Dict[str, int]:
    """Leaf counts per root move, keyed by UCI text."""

    board = stack.board
    out: Dict[str, int] = {}
    for move in list(board.legal_moves):
        text = format_move(board, move)
        with stack.applied(move):
            out[text] = perft(stack, depth - 1)
    return out
