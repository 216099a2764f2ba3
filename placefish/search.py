"""Background search: limits, time budgeting and the threaded search engine.

:class:`SearchEngine` runs one search at a time on its own thread and against
its own board. The command loop talks to it through ``start_thinking``,
``stop``, ``ponderhit`` and ``wait_until_idle``; the last one is a condition
variable barrier the loop blocks on before it touches the shared position.
"""

from __future__ import annotations

import os
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import chess
import chess.syzygy
from chess import polyglot

from .evaluation import PIECE_VALUES, Evaluator, evaluate
from .notation import format_move, format_variation, parse_move
from .output import ProtocolWriter
from .scoring import (
    MAX_PLY,
    VALUE_INFINITE,
    VALUE_MATE_IN_MAX_PLY,
    VALUE_TB,
    mate_in,
    mated_in,
    material_count,
    to_score,
    wdl,
)


class _SearchAborted(Exception):
    """Internal exception used to unwind the search when it has to stop."""


# ---------------------------------------------------------------------------
# Limits and configuration
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SearchLimits:
    wtime: int = 0
    btime: int = 0
    winc: int = 0
    binc: int = 0
    movestogo: int = 0
    depth: int = 0
    nodes: int = 0
    movetime: int = 0
    mate: int = 0
    perft: int = 0
    infinite: bool = False
    ponder: bool = False
    searchmoves: Tuple[str, ...] = ()
    enumerate: Optional[str] = None


_INT_LIMITS = ("wtime", "btime", "winc", "binc", "movestogo", "depth", "nodes", "movetime", "mate", "perft")


def parse_limits(args: str) -> SearchLimits:
    """Parse the keywords of a ``go`` command; malformed numbers are skipped."""

    limits = SearchLimits()
    tokens = args.split()
    iterator = iter(tokens)
    for token in iterator:
        key = token.lower()
        if key == "searchmoves":
            # Needs to be the last keyword on the line.
            limits.searchmoves = tuple(iterator)
        elif key in _INT_LIMITS:
            try:
                setattr(limits, key, int(next(iterator)))
            except (StopIteration, ValueError):
                continue
        elif key == "enumerate":
            limits.enumerate = next(iterator, "")
        elif key == "infinite":
            limits.infinite = True
        elif key == "ponder":
            limits.ponder = True
    return limits


@dataclass(slots=True, frozen=True)
class SearchTuning:
    max_depth: int = 5
    quiescence_depth: int = 4
    check_extension: int = 1
    null_move_reduction: int = 2
    null_move_min_depth: int = 3
    lmr_min_depth: int = 3
    base_time: float = 2.0
    min_time: float = 0.05
    max_time: float = 30.0
    time_factor: float = 0.05
    depth_stop_ratio: float = 0.6


TUNING_PRESETS: Dict[str, SearchTuning] = {
    "balanced": SearchTuning(),
    "fast": SearchTuning(
        max_depth=3,
        quiescence_depth=2,
        base_time=0.5,
        max_time=5.0,
        time_factor=0.03,
    ),
    "deep": SearchTuning(
        max_depth=8,
        quiescence_depth=6,
        base_time=8.0,
        max_time=120.0,
        time_factor=0.08,
        depth_stop_ratio=0.75,
    ),
}


def resolve_preset(preset: str) -> SearchTuning:
    if preset not in TUNING_PRESETS:
        raise ValueError(f"Unknown search preset '{preset}'")
    return TUNING_PRESETS[preset]


def elo_depth_cap(elo: int) -> int:
    """Depth limit used when UCI_LimitStrength is on."""

    return 1 + max(0, min(7, (elo - 1320) * 8 // (3190 - 1320)))


class TimeBudget:
    def __init__(self, *, min_time: float, max_time: float, base_time: float, time_factor: float) -> None:
        self.min_time = min_time
        self.max_time = max_time
        self.base_time = base_time
        self.time_factor = time_factor

    @classmethod
    def from_tuning(cls, tuning: SearchTuning) -> "TimeBudget":
        return cls(
            min_time=tuning.min_time,
            max_time=tuning.max_time,
            base_time=tuning.base_time,
            time_factor=tuning.time_factor,
        )

    def resolve(self, limits: SearchLimits, turn: chess.Color, move_overhead_ms: int = 0) -> Optional[float]:
        """Seconds to spend on this move, or ``None`` for no time limit."""

        if limits.infinite or limits.depth or limits.nodes or limits.mate:
            return None
        overhead = max(0, move_overhead_ms) / 1000.0
        if limits.movetime:
            return max(0.001, limits.movetime / 1000.0 - overhead)

        time_left = limits.wtime if turn == chess.WHITE else limits.btime
        increment = limits.winc if turn == chess.WHITE else limits.binc
        if not time_left:
            return self.base_time
        if limits.movestogo:
            budget = time_left / max(1, limits.movestogo)
        else:
            budget = time_left * self.time_factor
        budget += increment
        seconds = self._clamp(budget / 1000.0 - overhead)
        # Never plan to use more than the clock actually holds.
        return min(seconds, max(0.001, time_left / 1000.0 - overhead))

    def _clamp(self, seconds: float) -> float:
        return max(self.min_time, min(self.max_time, seconds))


# ---------------------------------------------------------------------------
# Transposition table
# ---------------------------------------------------------------------------

TT_EXACT = 0
TT_LOWER = 1
TT_UPPER = 2

_ENTRY_BYTES = 128


@dataclass(slots=True)
class _TTEntry:
    depth: int
    value: int
    flag: int
    move: Optional[chess.Move]


class TranspositionTable:
    def __init__(self, size_mb: int) -> None:
        self._lock = threading.Lock()
        self._table: "OrderedDict[int, _TTEntry]" = OrderedDict()
        self.capacity = 0
        self.resize(size_mb)

    def resize(self, size_mb: int) -> None:
        with self._lock:
            self.capacity = max(1024, size_mb * 1024 * 1024 // _ENTRY_BYTES)
            while len(self._table) > self.capacity:
                self._table.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._table.clear()

    def probe(self, key: int) -> Optional[_TTEntry]:
        with self._lock:
            return self._table.get(key)

    def store(self, key: int, depth: int, value: int, flag: int, move: Optional[chess.Move]) -> None:
        with self._lock:
            existing = self._table.get(key)
            if existing is not None and existing.depth > depth and flag != TT_EXACT:
                return
            self._table[key] = _TTEntry(depth, value, flag, move)
            self._table.move_to_end(key)
            if len(self._table) > self.capacity:
                self._table.popitem(last=False)

    def hashfull(self) -> int:
        with self._lock:
            return min(1000, len(self._table) * 1000 // self.capacity)


def _position_key(board: chess.Board) -> int:
    try:
        return board._transposition_key()
    except AttributeError:
        return polyglot.zobrist_hash(board)


def _value_to_tt(value: int, ply: int) -> int:
    if value >= VALUE_MATE_IN_MAX_PLY:
        return value + ply
    if value <= -VALUE_MATE_IN_MAX_PLY:
        return value - ply
    return value


def _value_from_tt(value: int, ply: int) -> int:
    if value >= VALUE_MATE_IN_MAX_PLY:
        return value - ply
    if value <= -VALUE_MATE_IN_MAX_PLY:
        return value + ply
    return value


# ---------------------------------------------------------------------------
# Alpha-beta searcher
# ---------------------------------------------------------------------------


class _Searcher:
    """Negamax alpha-beta over one board, sharing the engine's tables."""

    def __init__(
        self,
        board: chess.Board,
        *,
        evaluator: Evaluator,
        tuning: SearchTuning,
        tt: TranspositionTable,
        history: Dict[Tuple[bool, int, int], int],
        should_stop: Callable[[int], bool],
        tablebase: Optional[chess.syzygy.Tablebase] = None,
        probe_limit: int = 0,
    ) -> None:
        self.board = board
        self.evaluator = evaluator
        self.tuning = tuning
        self.tt = tt
        self.history = history
        self.should_stop = should_stop
        self.tablebase = tablebase
        self.probe_limit = probe_limit
        self.killers: Dict[int, List[Optional[chess.Move]]] = {}
        self.nodes = 0
        self.seldepth = 0
        self.tbhits = 0

    def search_move(self, move: chess.Move, depth: int, alpha: int, beta: int) -> int:
        board = self.board
        board.push(move)
        try:
            extension = self.tuning.check_extension if board.is_check() else 0
            return -self._alphabeta(depth - 1 + extension, -beta, -alpha, 1, is_pv=True)
        finally:
            board.pop()

    def search_root(
        self, moves: Sequence[chess.Move], depth: int, alpha: int, beta: int
    ) -> Tuple[int, Optional[chess.Move], List[Tuple[chess.Move, int]]]:
        best_score = -VALUE_INFINITE
        best_move: Optional[chess.Move] = None
        scored: List[Tuple[chess.Move, int]] = []
        for move in moves:
            score = self.search_move(move, depth, alpha, beta)
            scored.append((move, score))
            if score > best_score:
                best_score = score
                best_move = move
            if score > alpha:
                alpha = score
        if best_move is not None:
            self.tt.store(_position_key(self.board), depth, best_score, TT_EXACT, best_move)
        return best_score, best_move, scored

    def _tick(self) -> None:
        self.nodes += 1
        if self.nodes & 127 == 0 and self.should_stop(128):
            raise _SearchAborted()

    def _alphabeta(self, depth: int, alpha: int, beta: int, ply: int, *, is_pv: bool, allow_null: bool = True) -> int:
        board = self.board
        self._tick()
        if ply > self.seldepth:
            self.seldepth = ply

        if board.is_insufficient_material() or board.halfmove_clock >= 100 or board.is_repetition(2):
            return 0
        if ply >= MAX_PLY - 1:
            return self.evaluator(board)

        # Mate distance pruning.
        alpha = max(mated_in(ply), alpha)
        beta = min(mate_in(ply + 1), beta)
        if alpha >= beta:
            return alpha

        if (
            self.tablebase is not None
            and not board.castling_rights
            and board.halfmove_clock == 0
            and chess.popcount(board.occupied) <= self.probe_limit
        ):
            outcome = self.tablebase.get_wdl(board)
            if outcome is not None:
                self.tbhits += 1
                if outcome >= 2:
                    return VALUE_TB - ply
                if outcome <= -2:
                    return -VALUE_TB + ply
                return 0

        if depth <= 0:
            return self._quiescence(alpha, beta, ply, self.tuning.quiescence_depth)

        alpha_original = alpha
        key = _position_key(board)
        entry = self.tt.probe(key)
        tt_move = None
        if entry is not None:
            tt_move = entry.move
            if entry.depth >= depth and not is_pv:
                value = _value_from_tt(entry.value, ply)
                if entry.flag == TT_EXACT:
                    return value
                if entry.flag == TT_LOWER and value >= beta:
                    return value
                if entry.flag == TT_UPPER and value <= alpha:
                    return value

        in_check = board.is_check()
        if (
            allow_null
            and not is_pv
            and not in_check
            and depth >= self.tuning.null_move_min_depth
            and self._has_non_pawn_material(board.turn)
        ):
            null_depth = depth - 1 - self.tuning.null_move_reduction
            board.push(chess.Move.null())
            try:
                score = -self._alphabeta(null_depth, -beta, -beta + 1, ply + 1, is_pv=False, allow_null=False)
            finally:
                board.pop()
            if score >= beta and score < VALUE_MATE_IN_MAX_PLY:
                return score

        moves = self._order_moves(list(board.legal_moves), ply, tt_move)
        if not moves:
            return mated_in(ply) if in_check else 0

        best_score = -VALUE_INFINITE
        best_move: Optional[chess.Move] = None
        for index, move in enumerate(moves, 1):
            quiet = not board.is_capture(move) and not move.promotion
            mover = board.turn
            board.push(move)
            try:
                gives_check = board.is_check()
                new_depth = depth - 1 + (self.tuning.check_extension if gives_check else 0)
                child_pv = is_pv and index == 1
                reduce = (
                    depth >= self.tuning.lmr_min_depth
                    and index > 3
                    and quiet
                    and not gives_check
                    and not in_check
                )
                if reduce:
                    score = -self._alphabeta(new_depth - 1, -alpha - 1, -alpha, ply + 1, is_pv=False)
                    if score > alpha:
                        score = -self._alphabeta(new_depth, -beta, -alpha, ply + 1, is_pv=child_pv)
                else:
                    score = -self._alphabeta(new_depth, -beta, -alpha, ply + 1, is_pv=child_pv)
            finally:
                board.pop()

            if score > best_score:
                best_score = score
                best_move = move
            if score > alpha:
                alpha = score
            if alpha >= beta:
                if quiet:
                    self._record_killer(ply, move)
                    self._record_history(mover, move, depth)
                break

        if best_score >= beta:
            flag = TT_LOWER
        elif best_score > alpha_original:
            flag = TT_EXACT
        else:
            flag = TT_UPPER
        self.tt.store(key, depth, _value_to_tt(best_score, ply), flag, best_move)
        return best_score

    def _quiescence(self, alpha: int, beta: int, ply: int, depth: int) -> int:
        board = self.board
        self._tick()
        if ply > self.seldepth:
            self.seldepth = ply

        stand_pat = self.evaluator(board)
        if stand_pat >= beta or depth <= 0 or ply >= MAX_PLY - 1:
            return stand_pat
        if stand_pat > alpha:
            alpha = stand_pat

        captures = sorted(board.generate_legal_captures(), key=self._capture_score, reverse=True)
        for move in captures:
            board.push(move)
            try:
                score = -self._quiescence(-beta, -alpha, ply + 1, depth - 1)
            finally:
                board.pop()
            if score >= beta:
                return score
            if score > alpha:
                alpha = score
        return alpha

    def _capture_score(self, move: chess.Move) -> int:
        board = self.board
        victim = board.piece_type_at(move.to_square) or chess.PAWN
        attacker = board.piece_type_at(move.from_square) or chess.PAWN
        return PIECE_VALUES[victim] * 10 - PIECE_VALUES[attacker] // 10

    def _order_moves(self, moves: List[chess.Move], ply: int, tt_move: Optional[chess.Move]) -> List[chess.Move]:
        board = self.board
        killers = self.killers.get(ply, [])
        turn = board.turn

        def score(move: chess.Move) -> int:
            if move == tt_move:
                return 1_000_000
            if board.is_capture(move):
                return 500_000 + self._capture_score(move)
            if move.promotion:
                return 300_000 + PIECE_VALUES[move.promotion]
            if move in killers:
                return 200_000
            return self.history.get((turn, move.from_square, move.to_square), 0)

        moves.sort(key=score, reverse=True)
        return moves

    def _record_killer(self, ply: int, move: chess.Move) -> None:
        killers = self.killers.setdefault(ply, [])
        if move in killers:
            return
        killers.insert(0, move)
        del killers[2:]

    def _record_history(self, color: bool, move: chess.Move, depth: int) -> None:
        key = (color, move.from_square, move.to_square)
        self.history[key] = self.history.get(key, 0) + depth * depth

    def _has_non_pawn_material(self, color: chess.Color) -> bool:
        board = self.board
        return bool(
            board.occupied_co[color] & ~board.pawns & ~board.kings
        )

    def principal_variation(self, first: chess.Move, depth: int) -> List[chess.Move]:
        board = self.board.copy(stack=False)
        pv = [first]
        board.push(first)
        while len(pv) < depth:
            entry = self.tt.probe(_position_key(board))
            if entry is None or entry.move is None or entry.move not in board.legal_moves:
                break
            pv.append(entry.move)
            board.push(entry.move)
        return pv


# ---------------------------------------------------------------------------
# Threaded engine
# ---------------------------------------------------------------------------


class SessionState(Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    PONDERING = "pondering"


@dataclass(slots=True)
class SearchOutcome:
    move: Optional[chess.Move]
    ponder: Optional[chess.Move]
    score: int
    depth: int
    nodes: int
    principal_variation: Tuple[chess.Move, ...] = ()


class SearchEngine:
    """Runs searches on a background thread; one search at a time."""

    def __init__(
        self,
        writer: ProtocolWriter,
        *,
        evaluator: Evaluator = evaluate,
        tuning: Optional[SearchTuning] = None,
        threads: int = 1,
        hash_mb: int = 16,
        logger: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.writer = writer
        self.evaluator = evaluator
        self.tuning = tuning or TUNING_PRESETS["balanced"]
        self.budget = TimeBudget.from_tuning(self.tuning)
        self.tt = TranspositionTable(hash_mb)
        self.history: Dict[Tuple[bool, int, int], int] = {}
        self.tablebase: Optional[chess.syzygy.Tablebase] = None
        self.probe_limit = 7
        self._log = logger or (lambda message: None)

        self._cond = threading.Condition()
        self._stop = threading.Event()
        self._searching = False
        self._thread: Optional[threading.Thread] = None
        self.ponder = False
        self._nodes = 0
        self._nodes_lock = threading.Lock()
        self._node_limit = 0
        self._budget_seconds: Optional[float] = None
        self._deadline: Optional[float] = None
        self.last_outcome: Optional[SearchOutcome] = None

        self.threads = 1
        self._executor: Optional[ThreadPoolExecutor] = None
        self.set_threads(threads)

    # -- state ------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._cond:
            if not self._searching:
                return SessionState.IDLE
            return SessionState.PONDERING if self.ponder else SessionState.SEARCHING

    def nodes_searched(self) -> int:
        return self._nodes

    # -- configuration (only while idle) ------------------------------------

    def set_threads(self, threads: int) -> None:
        self.wait_until_idle()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.threads = max(1, int(threads))
        if self.threads > 1:
            self._executor = ThreadPoolExecutor(max_workers=self.threads, thread_name_prefix="placefish-worker")

    def resize_hash(self, size_mb: int) -> None:
        self.wait_until_idle()
        self.tt.resize(size_mb)

    def set_tablebase(self, path: str) -> int:
        """Load Syzygy tables from ``path`` (``os.pathsep`` separated); returns the file count.

        The previous tables stay in use if loading fails.
        """

        self.wait_until_idle()
        tablebase = None
        count = 0
        if path and path != "<empty>":
            tablebase = chess.syzygy.Tablebase()
            try:
                for directory in path.split(os.pathsep):
                    if directory:
                        count += tablebase.add_directory(directory)
            except Exception:
                tablebase.close()
                raise
        previous, self.tablebase = self.tablebase, tablebase
        if previous is not None:
            previous.close()
        return count

    def clear(self) -> None:
        self.wait_until_idle()
        self.tt.clear()
        self.history.clear()

    def shutdown(self) -> None:
        self.stop()
        self.wait_until_idle()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self.tablebase is not None:
            self.tablebase.close()
            self.tablebase = None

    # -- lifecycle ----------------------------------------------------------

    def start_thinking(
        self,
        board: chess.Board,
        limits: SearchLimits,
        *,
        move_overhead: int = 10,
        show_wdl: bool = False,
        depth_cap: Optional[int] = None,
    ) -> None:
        """Start searching ``board``, which the engine owns from now on."""

        self.wait_until_idle()
        budget = self.budget.resolve(limits, board.turn, move_overhead)
        with self._cond:
            self._stop.clear()
            self._searching = True
            self.ponder = limits.ponder
            self._nodes = 0
            self._node_limit = limits.nodes
            self._budget_seconds = budget
            self._deadline = None if budget is None else time.perf_counter() + budget
        worker = threading.Thread(
            target=self._run,
            args=(board, limits, show_wdl, depth_cap),
            name="placefish-search",
            daemon=True,
        )
        self._thread = worker
        worker.start()

    def stop(self) -> None:
        with self._cond:
            self._stop.set()
            self._cond.notify_all()

    def ponderhit(self) -> None:
        with self._cond:
            if not self.ponder:
                return
            self.ponder = False
            if self._budget_seconds is not None:
                self._deadline = time.perf_counter() + self._budget_seconds
            self._cond.notify_all()

    def wait_until_idle(self) -> None:
        with self._cond:
            while self._searching:
                self._cond.wait()
        worker = self._thread
        if worker is not None and worker is not threading.current_thread():
            worker.join()
            self._thread = None

    def _should_stop(self, nodes_since_check: int) -> bool:
        # Root-split workers report here concurrently.
        with self._nodes_lock:
            self._nodes += nodes_since_check
            total = self._nodes
        if self._stop.is_set():
            return True
        if self._node_limit and total >= self._node_limit:
            return True
        deadline = self._deadline
        return not self.ponder and deadline is not None and time.perf_counter() >= deadline

    # -- search thread ------------------------------------------------------

    def _run(self, board: chess.Board, limits: SearchLimits, show_wdl: bool, depth_cap: Optional[int]) -> None:
        outcome: Optional[SearchOutcome] = None
        try:
            outcome = self._iterative_deepening(board, limits, show_wdl, depth_cap)
        except Exception as exc:
            self.writer.emit(f"info string Error during search: {exc}")
        finally:
            with self._cond:
                # UCI forbids a bestmove before stop/ponderhit while pondering or infinite.
                while not self._stop.is_set() and (self.ponder or limits.infinite):
                    self._cond.wait()
                self.last_outcome = outcome
                line = "bestmove (none)"
                if outcome is not None and outcome.move is not None:
                    line = f"bestmove {format_move(board, outcome.move)}"
                    if outcome.ponder is not None:
                        replay = board.copy(stack=False)
                        replay.push(outcome.move)
                        line += f" ponder {format_move(replay, outcome.ponder)}"
                self.writer.emit(line)
                self._searching = False
                self._cond.notify_all()

    def _root_moves(self, board: chess.Board, limits: SearchLimits) -> List[chess.Move]:
        if not limits.searchmoves:
            return list(board.legal_moves)
        moves = []
        for text in limits.searchmoves:
            move = parse_move(board, text)
            if move is not None and move not in moves:
                moves.append(move)
        return moves

    def _new_searcher(self, board: chess.Board) -> _Searcher:
        return _Searcher(
            board,
            evaluator=self.evaluator,
            tuning=self.tuning,
            tt=self.tt,
            history=self.history,
            should_stop=self._should_stop,
            tablebase=self.tablebase,
            probe_limit=self.probe_limit,
        )

    def _iterative_deepening(
        self, board: chess.Board, limits: SearchLimits, show_wdl: bool, depth_cap: Optional[int]
    ) -> SearchOutcome:
        material = material_count(board)
        start = time.perf_counter()
        root_moves = self._root_moves(board, limits)
        if not root_moves:
            score = mated_in(0) if board.is_check() else 0
            self.writer.emit(f"info depth 0 score {to_score(score, material)}")
            return SearchOutcome(move=None, ponder=None, score=score, depth=0, nodes=0)

        if limits.depth:
            max_depth = limits.depth
        elif limits.infinite or limits.ponder or limits.nodes or limits.mate:
            max_depth = MAX_PLY - 1
        else:
            max_depth = self.tuning.max_depth
        if depth_cap:
            max_depth = min(max_depth, depth_cap)

        searcher = self._new_searcher(board)
        best_move = root_moves[0]
        best_score = -VALUE_INFINITE
        pv: List[chess.Move] = [best_move]
        completed = 0

        for depth in range(1, max_depth + 1):
            ordered = [best_move] + [move for move in root_moves if move != best_move]
            try:
                score, move, _ = self._search_depth(searcher, board, ordered, depth)
            except _SearchAborted:
                self._log(f"search stopped during depth {depth}")
                break
            if move is None:
                break
            best_move, best_score, completed = move, score, depth
            pv = searcher.principal_variation(best_move, depth)

            elapsed = max(1e-6, time.perf_counter() - start)
            nodes = self._nodes + searcher.nodes % 128
            info = [
                f"info depth {depth} seldepth {max(depth, searcher.seldepth)} multipv 1",
                f"score {to_score(best_score, material)}" + (wdl(best_score, material) if show_wdl else ""),
                f"nodes {nodes} nps {int(nodes / elapsed)} hashfull {self.tt.hashfull()}",
                f"tbhits {searcher.tbhits} time {int(elapsed * 1000)}",
                f"pv {format_variation(board, pv)}",
            ]
            self.writer.emit(" ".join(info))

            if limits.mate and best_score >= mate_in(2 * limits.mate):
                break
            if abs(best_score) >= VALUE_MATE_IN_MAX_PLY and not (limits.infinite or limits.ponder):
                break
            if (
                not self.ponder
                and self._budget_seconds is not None
                and not limits.movetime
                and elapsed > self._budget_seconds * self.tuning.depth_stop_ratio
            ):
                break

        return SearchOutcome(
            move=best_move,
            ponder=pv[1] if len(pv) > 1 else None,
            score=best_score,
            depth=completed,
            nodes=self._nodes + searcher.nodes % 128,
            principal_variation=tuple(pv),
        )

    def _search_depth(
        self, searcher: _Searcher, board: chess.Board, moves: Sequence[chess.Move], depth: int
    ) -> Tuple[int, Optional[chess.Move], List[Tuple[chess.Move, int]]]:
        if self._executor is None or len(moves) < 2:
            return searcher.search_root(moves, depth, -VALUE_INFINITE, VALUE_INFINITE)

        # First move sets the bound, the rest are split across the pool.
        first_score = searcher.search_move(moves[0], depth, -VALUE_INFINITE, VALUE_INFINITE)
        futures = [
            self._executor.submit(self._search_root_worker, board, move, depth, first_score)
            for move in moves[1:]
        ]
        scored = [(moves[0], first_score)]
        aborted = False
        for future in futures:
            try:
                scored.append(future.result())
            except _SearchAborted:
                aborted = True
        if aborted:
            raise _SearchAborted()
        best_move, best_score = max(scored, key=lambda item: item[1])
        self.tt.store(_position_key(board), depth, best_score, TT_EXACT, best_move)
        return best_score, best_move, scored

    def _search_root_worker(self, board: chess.Board, move: chess.Move, depth: int, alpha: int) -> Tuple[chess.Move, int]:
        local = self._new_searcher(board.copy())
        score = local.search_move(move, depth, alpha, VALUE_INFINITE)
        return move, score

    def search_sync(self, board: chess.Board, limits: SearchLimits, **kwargs) -> Optional[SearchOutcome]:
        """Start a search and block until it finishes; used by ``bench``."""

        self.start_thinking(board, replace(limits, ponder=False, infinite=False), **kwargs)
        self.wait_until_idle()
        return self.last_outcome
