"""UCI front-end: the command loop, engine options and the ``placefish`` entry point.

:class:`UCISession` owns the shared position and its state stack, dispatches
one protocol command per line and hands searches to :class:`SearchEngine`.
``engine_main`` runs either the interactive loop or a single command.
"""

from __future__ import annotations

import argparse
import os
import sys
import time
from typing import Callable, Dict, List, Optional, Sequence, TextIO

import chess
from chess import polyglot

from .enumeration import Enumerator, UsageError, centipawn_scorer, resolve_mode
from .evaluation import Evaluator, evaluate
from .notation import parse_move
from .options import Option, OptionError, OptionsMap
from .output import ProtocolWriter, ensure_line_buffered_stdout
from .perft import perft_divide
from .scoring import board_to_cp
from .search import (
    TUNING_PRESETS,
    SearchEngine,
    SearchLimits,
    SessionState,
    elo_depth_cap,
    parse_limits,
    resolve_preset,
)
from .state import ContractViolation, StateStack

ENGINE_NAME = "placefish"
ENGINE_AUTHOR = "the placefish developers"
ENGINE_VERSION = "0.1.0"

PRESET_ENV_VAR = "PLACEFISH_PRESET"

BENCH_DEPTH = 3
BENCH_FENS = (
    chess.STARTING_FEN,
    "r3k2r/p1ppqpb1/bn2pnp1/3PN3/1p2P3/2N2Q1p/PPPBBPPP/R3K2R w KQkq - 0 1",
    "8/2p5/3p4/KP5r/1R3p1k/8/4P1P1/8 w - - 0 1",
    "4rrk1/pp1n3p/3q2pQ/2p1pb2/2PP4/2P3N1/P2B2PP/4RRK1 b - - 7 19",
)

HELP_TEXT = (
    f"{ENGINE_NAME} is a chess engine speaking the Universal Chess Interface (UCI).",
    "It is meant to be driven by a GUI; useful commands when typing by hand:",
    "  uci, isready, setoption name <id> [value <x>], ucinewgame",
    "  position [startpos | fen <fen>] [moves <m1> ...]",
    "  go [wtime|btime|winc|binc|movestogo|depth|nodes|movetime|mate <n>] [infinite] [ponder]",
    "  go perft <depth>, go enumerate <1|2>, enumerate <1|2>",
    "  stop, ponderhit, d, eval, flip, bench [depth], debug on|off, quit",
)

LICENSE_TEXT = (
    f"{ENGINE_NAME} {ENGINE_VERSION} is free software distributed under the MIT license.",
    "There is NO WARRANTY, to the extent permitted by law.",
)


def board_diagram(board: chess.Board) -> List[str]:
    separator = " +---+---+---+---+---+---+---+---+"
    lines = [separator]
    for rank in range(7, -1, -1):
        cells = []
        for file_index in range(8):
            piece = board.piece_at(chess.square(file_index, rank))
            cells.append(piece.symbol() if piece else " ")
        lines.append(" | " + " | ".join(cells) + f" | {rank + 1}")
        lines.append(separator)
    lines.append("   a   b   c   d   e   f   g   h")
    lines.append("")
    lines.append(f"Fen: {board.fen()}")
    lines.append(f"Key: {polyglot.zobrist_hash(board):016X}")
    checkers = " ".join(chess.square_name(square) for square in board.checkers())
    lines.append(f"Checkers: {checkers}")
    return lines


class UCISession:
    """One engine session: the shared position, the options and the search engine."""

    def __init__(
        self,
        *,
        preset: str = "balanced",
        debug: bool = False,
        writer: Optional[ProtocolWriter] = None,
        evaluator: Evaluator = evaluate,
    ) -> None:
        self.engine_name = ENGINE_NAME
        self.engine_author = ENGINE_AUTHOR
        self.writer = writer or ProtocolWriter()
        self.debug = debug
        self.running = True
        self.evaluator = evaluator

        self.preset = preset
        self.tuning = resolve_preset(preset)
        self.engine = SearchEngine(self.writer, evaluator=evaluator, tuning=self.tuning, logger=self._log_debug)
        self.stack = StateStack(chess.Board())
        self.options = self._build_options()

        self.dispatch_table: Dict[str, Callable[[str], None]] = {
            "uci": self.handle_uci,
            "isready": self.handle_isready,
            "debug": self.handle_debug,
            "setoption": self.handle_setoption,
            "position": self.handle_position,
            "ucinewgame": self.handle_ucinewgame,
            "go": self.handle_go,
            "enumerate": self.handle_enumerate,
            "stop": self.handle_stop,
            "ponderhit": self.handle_ponderhit,
            "quit": self.handle_quit,
            "flip": self.handle_flip,
            "bench": self.handle_bench,
            "d": self.handle_d,
            "eval": self.handle_eval,
            "help": self.handle_help,
            "license": self.handle_license,
        }

    @property
    def board(self) -> chess.Board:
        return self.stack.board

    @property
    def state(self) -> SessionState:
        return self.engine.state

    def _log_debug(self, message: str) -> None:
        if not self.debug:
            return
        self.writer.emit(*(f"info string {line}" for line in message.splitlines()))

    def _build_options(self) -> OptionsMap:
        options = OptionsMap()
        engine = self.engine
        options.add("Debug Log File", Option.string("", lambda o: self.writer.open_log(o.value)))
        options.add("Threads", Option.spin(1, 1, 1024, lambda o: engine.set_threads(o.value)))
        options.add("Hash", Option.spin(16, 1, 33554432, lambda o: engine.resize_hash(o.value)))
        options.add("Clear Hash", Option.button(lambda o: engine.clear()))
        options.add("Ponder", Option.check(False))
        options.add("Move Overhead", Option.spin(10, 0, 5000))
        options.add("UCI_Chess960", Option.check(False))
        options.add("UCI_LimitStrength", Option.check(False))
        options.add("UCI_Elo", Option.spin(1320, 1320, 3190))
        options.add("UCI_ShowWDL", Option.check(False))
        options.add("SyzygyPath", Option.string("<empty>", self._on_syzygy_path))
        options.add("SyzygyProbeLimit", Option.spin(7, 0, 7, self._on_probe_limit))
        return options

    def _on_syzygy_path(self, option: Option) -> None:
        try:
            count = self.engine.set_tablebase(option.value)
        except OSError as exc:
            raise OptionError(f"cannot load tablebases from '{option.value}': {exc}") from exc
        self.writer.emit(f"info string Found {count} tablebases")

    def _on_probe_limit(self, option: Option) -> None:
        self.engine.probe_limit = option.value

    # -- loop -----------------------------------------------------------------

    def start(self) -> None:
        ensure_line_buffered_stdout()
        self.writer.emit(f"{self.engine_name} {ENGINE_VERSION} by {self.engine_author}")
        self.command_loop()

    def command_loop(self, stream: Optional[TextIO] = None) -> None:
        source = stream if stream is not None else sys.stdin
        while self.running:
            line = source.readline()
            if not line:
                break
            self.handle_line(line)
        if self.running:
            # End of input behaves like quit.
            self.handle_quit("")

    def handle_line(self, line: str) -> None:
        command = line.strip()
        if not command or command.startswith("#"):
            return
        self.writer.record_input(command)
        parts = command.split(" ", 1)
        name = parts[0].lower()
        args = parts[1] if len(parts) > 1 else ""
        handler = self.dispatch_table.get(name)
        if handler is None:
            self.handle_unknown(command)
            return
        try:
            handler(args)
        except ContractViolation:
            raise
        except UsageError as exc:
            self.writer.emit(*exc.usage)
        except Exception as exc:
            self.writer.emit(f"info string Error processing command: {exc}")

    def handle_unknown(self, command: str) -> None:
        self.writer.emit(f"Unknown command: '{command}'. Type help for more information.")

    # -- protocol commands ------------------------------------------------------

    def handle_uci(self, _: str = "") -> None:
        self.writer.emit(
            f"id name {self.engine_name} {ENGINE_VERSION}",
            f"id author {self.engine_author}",
            "",
            *self.options.uci_lines(),
            "uciok",
        )

    def handle_isready(self, _: str) -> None:
        self.writer.emit("readyok")

    def handle_debug(self, args: str) -> None:
        setting = args.strip().lower()
        if setting == "on":
            self.debug = True
        elif setting == "off":
            self.debug = False
        else:
            self.writer.emit("info string Invalid debug setting. Use 'on' or 'off'.")
            return
        self.writer.emit(f"info string Debug:{self.debug}")

    def handle_setoption(self, args: str) -> None:
        self.engine.wait_until_idle()
        option = self.options.setoption(args)
        self._log_debug(f"option set: {args.strip()} ({option.kind})")

    def handle_position(self, args: str) -> None:
        tokens = args.split()
        if not tokens:
            raise ValueError("position expects 'startpos' or 'fen <fen>'")
        moves_at = tokens.index("moves") if "moves" in tokens else len(tokens)
        if tokens[0] == "startpos":
            fen = chess.STARTING_FEN
        elif tokens[0] == "fen":
            fen = " ".join(tokens[1:moves_at])
        else:
            raise ValueError(f"Unknown position command: {tokens[0]}")

        self.engine.wait_until_idle()
        board = chess.Board(fen, chess960=self.options["UCI_Chess960"])
        self.stack = StateStack(board)
        for text in tokens[moves_at + 1:]:
            move = parse_move(self.board, text)
            if move is None:
                self.writer.emit(f"info string Invalid move in position command: {text}")
                break
            self.stack.push(move)
        self._log_debug(f"position {self.board.fen()}")

    def handle_ucinewgame(self, _: str) -> None:
        self.engine.clear()
        self._log_debug("New game: search tables cleared")

    def handle_go(self, args: str) -> None:
        limits = parse_limits(args)
        if limits.enumerate is not None:
            self._enumerate(limits.enumerate)
            return
        if limits.perft:
            self._perft(limits.perft)
            return
        depth_cap = None
        if self.options["UCI_LimitStrength"]:
            depth_cap = elo_depth_cap(self.options["UCI_Elo"])
        self.engine.start_thinking(
            self.stack.lineage(),
            limits,
            move_overhead=self.options["Move Overhead"],
            show_wdl=self.options["UCI_ShowWDL"],
            depth_cap=depth_cap,
        )

    def handle_enumerate(self, args: str) -> None:
        self._enumerate(args.strip())

    def handle_stop(self, _: str) -> None:
        self.engine.stop()
        self.engine.wait_until_idle()

    def handle_ponderhit(self, _: str) -> None:
        self.engine.ponderhit()

    def handle_quit(self, _: str) -> None:
        self.engine.shutdown()
        self.writer.close()
        self.running = False

    # -- debugging commands -----------------------------------------------------

    def handle_flip(self, _: str) -> None:
        self.engine.wait_until_idle()
        self.stack = StateStack(self.board.mirror())

    def handle_d(self, _: str) -> None:
        self.writer.emit("", *board_diagram(self.board))

    def handle_eval(self, _: str) -> None:
        board = self.board
        if board.is_check():
            self.writer.emit("Final evaluation: none (in check)")
            return
        value = self.evaluator(board)
        if board.turn == chess.BLACK:
            value = -value
        self.writer.emit(f"Final evaluation {board_to_cp(value, board) / 100:+.2f} (white side)")

    def handle_bench(self, args: str) -> None:
        depth = int(args.split()[0]) if args.split() else BENCH_DEPTH
        total_nodes = 0
        start = time.perf_counter()
        for index, fen in enumerate(BENCH_FENS, 1):
            self.writer.emit(f"Position: {index}/{len(BENCH_FENS)} ({fen})")
            outcome = self.engine.search_sync(chess.Board(fen), SearchLimits(depth=depth))
            if outcome is not None:
                total_nodes += outcome.nodes
        elapsed_ms = max(1, int((time.perf_counter() - start) * 1000))
        self.writer.emit(
            "",
            "===========================",
            f"Total time (ms) : {elapsed_ms}",
            f"Nodes searched  : {total_nodes}",
            f"Nodes/second    : {total_nodes * 1000 // elapsed_ms}",
        )

    def handle_help(self, _: str) -> None:
        self.writer.emit(*HELP_TEXT)

    def handle_license(self, _: str) -> None:
        self.writer.emit(*LICENSE_TEXT)

    # -- synchronous searches ---------------------------------------------------

    def _perft(self, depth: int) -> None:
        self.engine.wait_until_idle()
        start = time.perf_counter()
        divide = perft_divide(self.stack, depth)
        for move_text, count in divide.items():
            self.writer.emit(f"{move_text}: {count}")
        self.writer.emit("", f"Nodes searched: {sum(divide.values())}", "")
        self._log_debug(f"perft {depth} took {time.perf_counter() - start:.3f}s")

    def _enumerate(self, selector: str) -> None:
        self.engine.wait_until_idle()
        policy = resolve_mode(selector, self.board.turn)
        self.writer.emit(policy.banner)
        start = time.perf_counter()
        result = Enumerator(centipawn_scorer(self.evaluator)).run(self.stack, policy)
        self._log_debug(f"enumerated {result.leaves} variants in {time.perf_counter() - start:.3f}s")
        if not result.found:
            self.writer.emit(f"No variant improves on the baseline eval {result.baseline / 100:.2f}")
            return
        leaf = chess.Board(result.best_fen, chess960=self.board.chess960)
        side = "white" if leaf.turn == chess.WHITE else "black"
        self.writer.emit(f"Best eval is {result.best_score / 100:.2f} ({side} side)", "", *board_diagram(leaf))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=ENGINE_NAME,
        description="UCI chess engine with an exhaustive position enumerator.",
    )
    parser.add_argument(
        "--preset",
        choices=sorted(TUNING_PRESETS),
        default=os.environ.get(PRESET_ENV_VAR, "balanced"),
        help=f"search tuning preset (default from ${PRESET_ENV_VAR}, else balanced)",
    )
    parser.add_argument("--debug", action="store_true", help="start with 'debug on'")
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="run a single command and exit, e.g. 'bench 2' or 'go perft 3'",
    )
    return parser


def engine_main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    session = UCISession(preset=args.preset, debug=args.debug)
    if args.command:
        session.handle_line(" ".join(args.command))
        session.engine.wait_until_idle()
        session.handle_quit("")
        return 0
    session.start()
    return 0
