"""In-place move application with exact undo for ``chess.Board``.

``apply_move`` mutates a board the way :meth:`chess.Board.push` does but
without touching python-chess' own move stack, and hands back an
:class:`UndoRecord` holding exactly the fields the move changed.
:class:`StateStack` owns those records for one root position and only ever
undoes the record on top, so callers cannot restore positions out of order.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Optional

import chess


class ContractViolation(RuntimeError):
    """Raised when apply/undo calls are mismatched or out of order."""


@dataclass(slots=True, frozen=True)
class UndoRecord:
    move: chess.Move
    piece: chess.Piece
    placed_square: chess.Square
    captured: Optional[chess.Piece]
    capture_square: Optional[chess.Square]
    rook_from: Optional[chess.Square]
    rook_to: Optional[chess.Square]
    turn: chess.Color
    castling_rights: chess.Bitboard
    ep_square: Optional[chess.Square]
    halfmove_clock: int
    fullmove_number: int
    promoted: chess.Bitboard


def _castling_squares(
    board: chess.Board, move: chess.Move, color: chess.Color
) -> tuple[chess.Square, chess.Square, chess.Square]:
    rank = chess.square_rank(move.from_square)
    kingside = chess.square_file(move.to_square) > chess.square_file(move.from_square)
    # Chess960 encodes castling as king-takes-own-rook.
    if board.rooks & board.occupied_co[color] & chess.BB_SQUARES[move.to_square]:
        rook_from = move.to_square
    else:
        rook_from = chess.square(7 if kingside else 0, rank)
    king_to = chess.square(6 if kingside else 2, rank)
    rook_to = chess.square(5 if kingside else 3, rank)
    return king_to, rook_from, rook_to


def apply_move(board: chess.Board, move: chess.Move, *, keep_turn: bool = False) -> UndoRecord:
    """Play ``move`` on ``board`` in place and return the record that undoes it.

    The move is trusted: only the origin square is checked. With
    ``keep_turn`` the side to move is left unchanged, so one side can play
    several consecutive moves. The fullmove number then only advances when
    the mover is Black; :class:`StateStack` keeps a ply count to advance it
    every second ply instead.
    """

    piece = board.piece_at(move.from_square)
    if piece is None:
        raise ContractViolation(
            f"no piece on {chess.square_name(move.from_square)} for move {move.uci()}"
        )

    color = piece.color
    from_bb = chess.BB_SQUARES[move.from_square]
    promoted_mask = board.promoted
    was_promoted = bool(board.promoted & from_bb)

    castling = piece.piece_type == chess.KING and board.is_castling(move)
    en_passant = not castling and board.is_en_passant(move)

    record_kwargs = dict(
        move=move,
        piece=piece,
        turn=board.turn,
        castling_rights=board.castling_rights,
        ep_square=board.ep_square,
        halfmove_clock=board.halfmove_clock,
        fullmove_number=board.fullmove_number,
        promoted=promoted_mask,
    )

    if castling:
        king_to, rook_from, rook_to = _castling_squares(board, move, color)
        rook = board.remove_piece_at(rook_from)
        board.remove_piece_at(move.from_square)
        board.set_piece_at(king_to, piece)
        board.set_piece_at(rook_to, rook)
        record = UndoRecord(
            placed_square=king_to,
            captured=None,
            capture_square=None,
            rook_from=rook_from,
            rook_to=rook_to,
            **record_kwargs,
        )
        zeroing = False
    else:
        capture_square = move.to_square
        if en_passant:
            capture_square = move.to_square - 8 if color == chess.WHITE else move.to_square + 8
        captured = board.piece_at(capture_square)

        board.remove_piece_at(move.from_square)
        if captured is not None:
            board.remove_piece_at(capture_square)
        if move.promotion:
            board.set_piece_at(move.to_square, chess.Piece(move.promotion, color), promoted=True)
        else:
            board.set_piece_at(move.to_square, piece, promoted=was_promoted)

        record = UndoRecord(
            placed_square=move.to_square,
            captured=captured,
            capture_square=capture_square if captured is not None else None,
            rook_from=None,
            rook_to=None,
            **record_kwargs,
        )
        zeroing = captured is not None or piece.piece_type == chess.PAWN

    touched = from_bb ^ chess.BB_SQUARES[move.to_square]
    rights = board.castling_rights & ~touched
    if piece.piece_type == chess.KING:
        rights &= ~(chess.BB_RANK_1 if color == chess.WHITE else chess.BB_RANK_8)
    board.castling_rights = rights

    board.ep_square = None
    if piece.piece_type == chess.PAWN:
        diff = move.to_square - move.from_square
        if diff == 16 and chess.square_rank(move.from_square) == 1:
            board.ep_square = move.from_square + 8
        elif diff == -16 and chess.square_rank(move.from_square) == 6:
            board.ep_square = move.from_square - 8

    board.halfmove_clock = 0 if zeroing else board.halfmove_clock + 1
    if board.turn == chess.BLACK:
        board.fullmove_number += 1
    if not keep_turn:
        board.turn = not board.turn
    return record


def undo_move(board: chess.Board, record: UndoRecord) -> None:
    """Restore ``board`` to the state it had before ``record`` was produced."""

    board.remove_piece_at(record.placed_square)
    if record.rook_to is not None:
        rook = board.remove_piece_at(record.rook_to)
        board.set_piece_at(record.rook_from, rook)
    board.set_piece_at(record.move.from_square, record.piece)
    if record.captured is not None:
        board.set_piece_at(record.capture_square, record.captured)

    board.turn = record.turn
    board.castling_rights = record.castling_rights
    board.ep_square = record.ep_square
    board.halfmove_clock = record.halfmove_clock
    board.fullmove_number = record.fullmove_number
    board.promoted = record.promoted


def _game_ply(board: chess.Board) -> int:
    return max(2 * (board.fullmove_number - 1), 0) + (board.turn == chess.BLACK)


class StateStack:
    """LIFO ledger of undo records for moves applied to one board.

    Every push counts as one game ply, including ``keep_turn`` pushes, and
    the fullmove number is derived from that count and the side to move.
    Four kept-turn moves from move 1 with White to move therefore leave the
    board on move 3.
    """

    def __init__(self, board: chess.Board) -> None:
        self.board = board
        self._root = board.copy(stack=False)
        self._records: List[UndoRecord] = []
        self._ply = _game_ply(board)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def depth(self) -> int:
        return len(self._records)

    def push(self, move: chess.Move, *, keep_turn: bool = False) -> UndoRecord:
        record = apply_move(self.board, move, keep_turn=keep_turn)
        self._records.append(record)
        self._ply += 1
        self.board.fullmove_number = 1 + (self._ply - (self.board.turn == chess.BLACK)) // 2
        return record

    def pop(self, record: UndoRecord) -> None:
        if not self._records:
            raise ContractViolation(f"undo of {record.move.uci()} on an empty state stack")
        if self._records[-1] is not record:
            raise ContractViolation(
                f"undo of {record.move.uci()} out of order; top of stack is "
                f"{self._records[-1].move.uci()}"
            )
        self._records.pop()
        self._ply -= 1
        undo_move(self.board, record)

    @contextmanager
    def applied(self, move: chess.Move, *, keep_turn: bool = False) -> Iterator[UndoRecord]:
        record = self.push(move, keep_turn=keep_turn)
        try:
            yield record
        finally:
            self.pop(record)

    def moves(self) -> List[chess.Move]:
        return [record.move for record in self._records]

    def lineage(self) -> chess.Board:
        """Independent board replaying the applied moves from the root position.

        The copy carries python-chess history (repetition detection) and shares
        nothing with the live board, so a search thread can own it.
        """

        board = self._root.copy(stack=False)
        for move in self.moves():
            board.push(move)
        return board
