"""Exhaustive enumeration of multi-move position variants.

Both enumeration modes share one backtracking routine, :meth:`Enumerator.run`,
and differ only in their :class:`CandidatePolicy`: which moves are offered at
each level, which of them may be played, and which leaves are scored.
Every move goes through the session's :class:`~placefish.state.StateStack`,
so the position is back at its root when the run returns.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import chess

from .evaluation import Evaluator, evaluate
from .notation import MoveKind, classify
from .scoring import board_to_cp
from .state import ContractViolation, StateStack

LeafScorer = Callable[[chess.Board], int]
MoveGenerator = Callable[[chess.Board], Iterable[chess.Move]]

# White's back rank without the king square, and the four middle ranks.
RELOCATION_SOURCES: Tuple[chess.Square, ...] = (
    chess.A1, chess.B1, chess.C1, chess.D1, chess.F1, chess.G1, chess.H1,
)
RELOCATION_TARGETS: Tuple[chess.Square, ...] = tuple(
    chess.square(file_index, rank_index) for rank_index in range(2, 6) for file_index in range(8)
)
LEGAL_FORBIDDEN = chess.BB_RANK_7 | chess.BB_RANK_8

USAGE = (
    "Usage: go enumerate <choice>",
    "<choice> = 1 or 2",
    "1: Search across any 4 relocations",
    "2: Search across 4 relocations which are legal moves",
)


class UsageError(ValueError):
    """Malformed enumeration request; carries the usage text to print."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.usage = USAGE


def centipawn_scorer(evaluator: Evaluator = evaluate) -> LeafScorer:
    def score(board: chess.Board) -> int:
        return board_to_cp(evaluator(board), board)

    return score


def legal_moves(board: chess.Board) -> List[chess.Move]:
    return list(board.legal_moves)


@dataclass(slots=True, frozen=True)
class EnumerationResult:
    best_fen: Optional[str]
    best_score: Optional[int]
    best_moves: Tuple[chess.Move, ...]
    leaves: int
    baseline: int = 0

    @property
    def found(self) -> bool:
        return self.best_fen is not None


class CandidatePolicy(ABC):
    banner = ""
    depth = 4
    keep_turn = True

    @abstractmethod
    def candidates(self, board: chess.Board, path: Sequence[chess.Move]) -> Iterable[chess.Move]:
        """Moves offered at level ``len(path)`` after ``path`` was applied."""

    def is_eligible(self, board: chess.Board, move: chess.Move) -> bool:
        return True

    def accepts_leaf(self, board: chess.Board) -> bool:
        return True


class RelocationPolicy(CandidatePolicy):
    """Move ``pieces`` pieces from ``sources`` onto empty ``targets``.

    Sources and targets are both chosen as combinations and paired in
    ascending order, so every placement is visited exactly once. The moves
    never pass through legality checking; eligibility keeps kings, pawns and
    captures out, and leaves with either king in check are not scored.
    """

    banner = "Searching across any 4 relocations"

    def __init__(
        self,
        sources: Sequence[chess.Square] = RELOCATION_SOURCES,
        targets: Sequence[chess.Square] = RELOCATION_TARGETS,
        *,
        pieces: int = 4,
        keep_turn: bool = True,
        allow_checks: bool = False,
    ) -> None:
        if pieces < 1:
            raise ValueError("relocation needs at least one piece")
        self.sources = tuple(sources)
        self.targets = tuple(targets)
        self.depth = pieces
        self.keep_turn = keep_turn
        self.allow_checks = allow_checks
        self._source_index = {square: index for index, square in enumerate(self.sources)}
        self._target_index = {square: index for index, square in enumerate(self.targets)}

    @classmethod
    def for_side(cls, color: chess.Color, **kwargs) -> "RelocationPolicy":
        if color == chess.WHITE:
            return cls(**kwargs)
        return cls(
            [chess.square_mirror(square) for square in RELOCATION_SOURCES],
            [chess.square_mirror(square) for square in RELOCATION_TARGETS],
            **kwargs,
        )

    def candidates(self, board: chess.Board, path: Sequence[chess.Move]) -> Iterable[chess.Move]:
        remaining = self.depth - len(path) - 1
        source_start = target_start = 0
        if path:
            source_start = self._source_index[path[-1].from_square] + 1
            target_start = self._target_index[path[-1].to_square] + 1
        for i in range(source_start, len(self.sources) - remaining):
            for j in range(target_start, len(self.targets) - remaining):
                yield chess.Move(self.sources[i], self.targets[j])

    def is_eligible(self, board: chess.Board, move: chess.Move) -> bool:
        piece = board.piece_at(move.from_square)
        if piece is None or piece.color != board.turn:
            return False
        if piece.piece_type in (chess.KING, chess.PAWN):
            return False
        return board.piece_at(move.to_square) is None

    def accepts_leaf(self, board: chess.Board) -> bool:
        if self.allow_checks:
            return True
        return not board.is_check() and not board.was_into_check()


class LegalMovePolicy(CandidatePolicy):
    """Let the side to move play ``depth`` consecutive legal moves.

    Destinations in ``forbidden`` and move kinds outside ``allowed_kinds`` are
    skipped. The side to move is kept after every ply.
    """

    banner = "Searching across 4 legal moves"

    def __init__(
        self,
        *,
        depth: int = 4,
        forbidden: chess.Bitboard = LEGAL_FORBIDDEN,
        allowed_kinds: FrozenSet[MoveKind] = frozenset({MoveKind.NORMAL}),
        generator: MoveGenerator = legal_moves,
        keep_turn: bool = True,
    ) -> None:
        self.depth = depth
        self.forbidden = forbidden
        self.allowed_kinds = allowed_kinds
        self.generator = generator
        self.keep_turn = keep_turn

    @classmethod
    def for_side(cls, color: chess.Color, **kwargs) -> "LegalMovePolicy":
        if color == chess.BLACK:
            kwargs.setdefault("forbidden", chess.flip_vertical(LEGAL_FORBIDDEN))
        return cls(**kwargs)

    def candidates(self, board: chess.Board, path: Sequence[chess.Move]) -> Iterable[chess.Move]:
        return self.generator(board)

    def is_eligible(self, board: chess.Board, move: chess.Move) -> bool:
        if chess.BB_SQUARES[move.to_square] & self.forbidden:
            return False
        return classify(board, move) in self.allowed_kinds


POLICIES = {
    "1": RelocationPolicy,
    "2": LegalMovePolicy,
}


def resolve_mode(selector: str, color: chess.Color = chess.WHITE) -> CandidatePolicy:
    """Policy for an enumeration selector; raises :class:`UsageError` otherwise."""

    factory = POLICIES.get(selector.strip())
    if factory is None:
        raise UsageError(f"Invalid choice '{selector}'")
    return factory.for_side(color)


class Enumerator:
    """Backtracking driver scoring every leaf a policy admits."""

    def __init__(self, scorer: Optional[LeafScorer] = None, *, baseline: int = 0) -> None:
        self.scorer = scorer or centipawn_scorer()
        self.baseline = baseline

    def run(self, stack: StateStack, policy: CandidatePolicy) -> EnumerationResult:
        root_depth = stack.depth
        best = _Best(score=self.baseline)
        self._descend(stack, policy, [], best)
        if stack.depth != root_depth:
            raise ContractViolation(
                f"enumeration left the state stack at depth {stack.depth}, expected {root_depth}"
            )
        return EnumerationResult(
            best_fen=best.fen,
            best_score=best.score if best.fen is not None else None,
            best_moves=best.moves,
            leaves=best.leaves,
            baseline=self.baseline,
        )

    def _descend(
        self,
        stack: StateStack,
        policy: CandidatePolicy,
        path: List[chess.Move],
        best: "_Best",
    ) -> None:
        board = stack.board
        if len(path) == policy.depth:
            if not policy.accepts_leaf(board):
                return
            best.leaves += 1
            score = self.scorer(board)
            if score > best.score:
                best.score = score
                best.fen = board.fen()
                best.moves = tuple(path)
            return

        # Materialised up front: the board changes while we iterate.
        for move in list(policy.candidates(board, path)):
            if not policy.is_eligible(board, move):
                continue
            with stack.applied(move, keep_turn=policy.keep_turn):
                path.append(move)
                try:
                    self._descend(stack, policy, path, best)
                finally:
                    path.pop()


@dataclass(slots=True)
class _Best:
    score: int
    fen: Optional[str] = None
    moves: Tuple[chess.Move, ...] = ()
    leaves: int = 0
