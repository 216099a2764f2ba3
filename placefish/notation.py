"""UCI move text and move classification helpers."""

from __future__ import annotations

from enum import Enum
from typing import Optional

import chess

NONE_MOVE = "(none)"
NULL_MOVE = "0000"


class MoveKind(Enum):
    NORMAL = "normal"
    PROMOTION = "promotion"
    CASTLING = "castling"
    EN_PASSANT = "en_passant"


def classify(board: chess.Board, move: chess.Move) -> MoveKind:
    if move.promotion:
        return MoveKind.PROMOTION
    if board.is_castling(move):
        return MoveKind.CASTLING
    if board.is_en_passant(move):
        return MoveKind.EN_PASSANT
    return MoveKind.NORMAL


def format_move(board: chess.Board, move: Optional[chess.Move]) -> str:
    """Encode ``move`` as UCI text in the context of ``board``.

    Castling is printed as king-to-destination unless the board is in
    Chess960 mode, where the king-takes-rook form is used.
    """

    if move is None:
        return NONE_MOVE
    if not move:
        return NULL_MOVE
    return board.uci(move, chess960=board.chess960)


def parse_move(board: chess.Board, text: str) -> Optional[chess.Move]:
    """Return the legal move whose UCI text equals ``text``, or ``None``."""

    if len(text) == 5:
        text = text[:4] + text[4].lower()
    for move in board.legal_moves:
        if format_move(board, move) == text:
            return move
    return None


def format_variation(board: chess.Board, moves) -> str:
    replay = board.copy(stack=False)
    parts = []
    for move in moves:
        parts.append(format_move(replay, move))
        replay.push(move)
    return " ".join(parts)
