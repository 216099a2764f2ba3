import io

import chess
import pytest

from placefish.search import SessionState
from placefish.state import ContractViolation
from placefish.uci import UCISession, engine_main


def make_session(**kwargs) -> UCISession:
    return UCISession(preset="fast", **kwargs)


def lines(capsys: pytest.CaptureFixture[str]) -> list:
    return capsys.readouterr().out.splitlines()


def test_uci_lists_identity_and_options(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("uci")
    output = lines(capsys)
    assert output[0] == "id name placefish 0.1.0"
    assert output[1] == "id author the placefish developers"
    assert "option name Threads type spin default 1 min 1 max 1024" in output
    assert "option name Hash type spin default 16 min 1 max 33554432" in output
    assert "option name UCI_Elo type spin default 1320 min 1320 max 3190" in output
    assert "option name SyzygyPath type string default <empty>" in output
    assert output[-1] == "uciok"


def test_isready_always_answers(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("isready")
    assert lines(capsys) == ["readyok"]


def test_comments_and_blank_lines_are_ignored(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("# position startpos moves e2e4")
    session.handle_line("   ")
    assert lines(capsys) == []
    assert session.board.fen() == chess.STARTING_FEN


def test_unknown_command(capsys: pytest.CaptureFixture[str]) -> None:
    make_session().handle_line("castle now")
    assert lines(capsys) == ["Unknown command: 'castle now'. Type help for more information."]


def test_position_startpos_with_moves() -> None:
    session = make_session()
    session.handle_line("position startpos moves e2e4 e7e5 g1f3")
    assert session.board.fen() == "rnbqkbnr/pppp1ppp/8/4p3/4P3/5N2/PPPP1PPP/RNBQKB1R b KQkq - 1 2"
    assert session.stack.depth == 3
    assert [move.uci() for move in session.stack.lineage().move_stack] == ["e2e4", "e7e5", "g1f3"]


def test_position_stops_at_first_invalid_move(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("position startpos moves e2e4 e2e4 d7d5")
    assert session.stack.depth == 1
    assert "info string Invalid move in position command: e2e4" in lines(capsys)


def test_position_fen_and_invalid_fen(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    fen = "6k1/5ppp/8/8/8/5Q2/5PPP/6K1 w - - 0 1"
    session.handle_line(f"position fen {fen}")
    assert session.board.fen() == fen

    session.handle_line("position fen not-a-fen")
    output = lines(capsys)
    assert output and output[-1].startswith("info string Error processing command:")
    assert session.board.fen() == fen


def test_setoption_updates_engine(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("setoption name Hash value 64")
    session.handle_line("setoption name syzygyprobelimit value 5")
    assert session.options["Hash"] == 64
    assert session.engine.tt.capacity == 64 * 1024 * 1024 // 128
    assert session.engine.probe_limit == 5

    session.handle_line("setoption name Threads value 0")
    assert session.options["Threads"] == 1
    assert lines(capsys)[-1].startswith("info string Error processing command:")


def test_go_perft_runs_synchronously(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("position startpos moves e2e4")
    session.handle_line("go perft 2")
    output = lines(capsys)
    assert "Nodes searched: 600" in output
    assert "e7e5: 29" in output
    assert session.stack.depth == 1


def test_invalid_enumeration_prints_usage_and_never_evaluates(capsys: pytest.CaptureFixture[str]) -> None:
    calls = []

    def spy(board: chess.Board) -> int:
        calls.append(board.fen())
        return 0

    session = make_session(evaluator=spy)
    session.handle_line("go enumerate 3")
    session.handle_line("enumerate")
    output = lines(capsys)
    assert output.count("Usage: go enumerate <choice>") == 2
    assert "<choice> = 1 or 2" in output
    assert calls == []
    assert session.board.fen() == chess.STARTING_FEN


def test_enumeration_without_candidates_reports_baseline(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("position fen 4k3/8/8/8/8/8/8/4K3 w - - 0 1")
    session.handle_line("go enumerate 1")
    output = lines(capsys)
    assert output[0] == "Searching across any 4 relocations"
    assert output[-1] == "No variant improves on the baseline eval 0.00"


def test_legal_enumeration_reports_best_position(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    fen = "7k/8/8/8/8/8/8/K7 w - - 0 1"
    session.handle_line(f"position fen {fen}")
    session.handle_line("enumerate 2")
    output = lines(capsys)
    assert output[0] == "Searching across 4 legal moves"
    best = [line for line in output if line.startswith("Best eval is ")]
    assert len(best) == 1 and best[0].endswith("(white side)")
    assert any(line.startswith("Fen: ") for line in output)
    assert session.board.fen() == fen
    assert session.stack.depth == 0


def test_go_then_stop_returns_to_idle(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("position startpos")
    session.handle_line("go infinite")
    assert session.state is SessionState.SEARCHING
    session.handle_line("stop")
    assert session.state is SessionState.IDLE
    assert len([line for line in lines(capsys) if line.startswith("bestmove ")]) == 1


def test_go_ponder_then_ponderhit(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("setoption name Move Overhead value 0")
    session.handle_line("go ponder movetime 50")
    assert session.state is SessionState.PONDERING
    session.handle_line("ponderhit")
    session.engine.wait_until_idle()
    assert session.state is SessionState.IDLE
    assert len([line for line in lines(capsys) if line.startswith("bestmove ")]) == 1


def test_position_waits_for_running_search(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("go depth 2")
    session.handle_line("position startpos moves d2d4")
    assert session.state is SessionState.IDLE
    assert session.board.piece_type_at(chess.D4) == chess.PAWN
    assert any(line.startswith("bestmove ") for line in lines(capsys))


def test_flip_mirrors_the_position() -> None:
    session = make_session()
    session.handle_line("position startpos moves e2e4")
    session.handle_line("flip")
    assert session.board.fen() == chess.Board("rnbqkbnr/pppp1ppp/8/4p3/8/8/PPPPPPPP/RNBQKBNR w KQkq e6 0 1").fen()
    assert session.stack.depth == 0


def test_d_prints_diagram_fen_and_key(capsys: pytest.CaptureFixture[str]) -> None:
    make_session().handle_line("d")
    output = lines(capsys)
    assert " | r | n | b | q | k | b | n | r | 8" in output
    assert f"Fen: {chess.STARTING_FEN}" in output
    assert "Key: 463B96181691FC9C" in output
    assert "Checkers: " in output


def test_eval_reports_white_side(capsys: pytest.CaptureFixture[str]) -> None:
    make_session().handle_line("eval")
    output = lines(capsys)
    assert len(output) == 1
    assert output[0].startswith("Final evaluation +")
    assert output[0].endswith("(white side)")


def test_debug_toggle(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("debug on")
    session.handle_line("debug maybe")
    assert lines(capsys) == ["info string Debug:True", "info string Invalid debug setting. Use 'on' or 'off'."]
    assert session.debug


def test_debug_log_file_tees_protocol(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    log_path = tmp_path / "session.log"
    session = make_session()
    session.handle_line(f"setoption name Debug Log File value {log_path}")
    session.handle_line("isready")
    session.handle_line("quit")
    assert log_path.read_text(encoding="utf-8").splitlines() == ["<< isready", ">> readyok", "<< quit"]


def test_contract_violations_are_not_swallowed() -> None:
    session = make_session()

    def broken(_: str) -> None:
        raise ContractViolation("undo out of order")

    session.dispatch_table["d"] = broken
    with pytest.raises(ContractViolation):
        session.handle_line("d")


def test_command_loop_runs_until_quit(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.command_loop(io.StringIO("isready\nquit\nisready\n"))
    assert lines(capsys) == ["readyok"]
    assert not session.running


def test_command_loop_treats_eof_as_quit() -> None:
    session = make_session()
    session.command_loop(io.StringIO("position startpos moves e2e4\n"))
    assert not session.running
    assert session.state is SessionState.IDLE


def test_engine_main_runs_one_shot_command(capsys: pytest.CaptureFixture[str]) -> None:
    assert engine_main(["--preset", "fast", "go", "perft", "1"]) == 0
    assert "Nodes searched: 20" in lines(capsys)


def test_engine_main_reads_preset_from_environment(monkeypatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("PLACEFISH_PRESET", "deep")
    assert engine_main(["--debug", "go", "perft", "1"]) == 0
    output = lines(capsys)
    assert "Nodes searched: 20" in output
    assert any(line.startswith("info string perft 1 took") for line in output)


def test_failed_syzygy_path_keeps_previous_tables(tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line(f"setoption name SyzygyPath value {tmp_path}")
    loaded = session.engine.tablebase
    assert loaded is not None
    assert lines(capsys) == ["info string Found 0 tablebases"]

    session.handle_line(f"setoption name SyzygyPath value {tmp_path / 'missing'}")
    assert lines(capsys)[-1].startswith("info string Error processing command: cannot load tablebases")
    assert session.options["SyzygyPath"] == str(tmp_path)
    assert session.engine.tablebase is loaded


def test_overflowing_spin_value_is_rejected(capsys: pytest.CaptureFixture[str]) -> None:
    session = make_session()
    session.handle_line("setoption name Hash value inf")
    assert lines(capsys) == ["info string Error processing command: expected a number, got 'inf'"]
    assert session.options["Hash"] == 16
