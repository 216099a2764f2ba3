import time

import chess
import pytest

from placefish.output import ProtocolWriter
from placefish.search import (
    SearchEngine,
    SearchLimits,
    SessionState,
    TimeBudget,
    TranspositionTable,
    TT_EXACT,
    elo_depth_cap,
    parse_limits,
    resolve_preset,
)

BACK_RANK_MATE = "6k1/5ppp/8/8/8/8/5PPP/R5K1 w - - 0 1"


def make_engine() -> SearchEngine:
    return SearchEngine(ProtocolWriter(), tuning=resolve_preset("fast"))


def bestmove_lines(output: str) -> list:
    return [line for line in output.splitlines() if line.startswith("bestmove")]


def test_parse_limits_reads_every_keyword() -> None:
    limits = parse_limits("wtime 60000 btime 59000 winc 1000 binc 900 movestogo 30 depth 7 nodes 5000 mate 3 ponder")
    assert (limits.wtime, limits.btime, limits.winc, limits.binc) == (60000, 59000, 1000, 900)
    assert (limits.movestogo, limits.depth, limits.nodes, limits.mate) == (30, 7, 5000, 3)
    assert limits.ponder and not limits.infinite


def test_parse_limits_skips_malformed_numbers_and_keeps_searchmoves_last() -> None:
    limits = parse_limits("depth x movetime 250 infinite searchmoves e2e4 d2d4")
    assert limits.depth == 0
    assert limits.movetime == 250
    assert limits.infinite
    assert limits.searchmoves == ("e2e4", "d2d4")


def test_parse_limits_enumerate_and_perft() -> None:
    assert parse_limits("enumerate 2").enumerate == "2"
    assert parse_limits("enumerate").enumerate == ""
    assert parse_limits("perft 3").perft == 3


def test_budget_with_explicit_movetime() -> None:
    budget = TimeBudget(min_time=0.1, max_time=5.0, base_time=1.0, time_factor=0.5)
    assert budget.resolve(SearchLimits(movetime=750), chess.WHITE) == pytest.approx(0.75)
    assert budget.resolve(SearchLimits(movetime=750), chess.WHITE, 50) == pytest.approx(0.7)


def test_budget_with_incremental_clock() -> None:
    budget = TimeBudget(min_time=0.1, max_time=5.0, base_time=1.0, time_factor=0.25)
    limits = SearchLimits(wtime=4000, winc=500, movestogo=20, btime=100)
    # (4000/20 + 500) / 1000 = 0.7 seconds
    assert budget.resolve(limits, chess.WHITE) == pytest.approx(0.7)
    # Black only has 0.1s on the clock.
    assert budget.resolve(limits, chess.BLACK) == pytest.approx(0.1)


def test_budget_is_unbounded_for_depth_nodes_and_infinite() -> None:
    budget = TimeBudget(min_time=0.1, max_time=5.0, base_time=1.0, time_factor=0.25)
    assert budget.resolve(SearchLimits(infinite=True), chess.WHITE) is None
    assert budget.resolve(SearchLimits(depth=4), chess.WHITE) is None
    assert budget.resolve(SearchLimits(nodes=1000), chess.WHITE) is None
    assert budget.resolve(SearchLimits(), chess.WHITE) == 1.0


def test_unknown_preset_is_rejected() -> None:
    with pytest.raises(ValueError):
        resolve_preset("turbo")


def test_elo_depth_cap_spans_the_range() -> None:
    assert elo_depth_cap(1320) == 1
    assert elo_depth_cap(3190) == 8
    assert elo_depth_cap(2000) < elo_depth_cap(2800)


def test_transposition_table_evicts_oldest_entries() -> None:
    table = TranspositionTable(1)
    table.capacity = 2
    table.store(1, 1, 10, TT_EXACT, None)
    table.store(2, 1, 20, TT_EXACT, None)
    table.store(3, 1, 30, TT_EXACT, None)
    assert table.probe(1) is None
    assert table.probe(3).value == 30
    assert table.hashfull() == 1000
    table.clear()
    assert table.hashfull() == 0


def test_search_finds_back_rank_mate(capsys: pytest.CaptureFixture[str]) -> None:
    engine = make_engine()
    engine.start_thinking(chess.Board(BACK_RANK_MATE), SearchLimits(depth=3))
    engine.wait_until_idle()

    output = capsys.readouterr().out
    assert "score mate 1" in output
    assert bestmove_lines(output) == ["bestmove a1a8"]
    assert engine.last_outcome.move == chess.Move.from_uci("a1a8")
    assert engine.state is SessionState.IDLE


def test_search_without_legal_moves_reports_none(capsys: pytest.CaptureFixture[str]) -> None:
    engine = make_engine()
    mated = chess.Board("R5k1/5ppp/8/8/8/8/5PPP/6K1 b - - 1 1")
    engine.start_thinking(mated, SearchLimits(depth=2))
    engine.wait_until_idle()

    output = capsys.readouterr().out
    assert "info depth 0 score mate 0" in output
    assert bestmove_lines(output) == ["bestmove (none)"]


def test_searchmoves_restricts_the_root(capsys: pytest.CaptureFixture[str]) -> None:
    engine = make_engine()
    engine.start_thinking(chess.Board(BACK_RANK_MATE), SearchLimits(depth=2, searchmoves=("g1f1",)))
    engine.wait_until_idle()
    assert bestmove_lines(capsys.readouterr().out) == ["bestmove g1f1"]


def test_node_limit_ends_the_search(capsys: pytest.CaptureFixture[str]) -> None:
    engine = make_engine()
    engine.start_thinking(chess.Board(), SearchLimits(nodes=2000))
    engine.wait_until_idle()
    assert len(bestmove_lines(capsys.readouterr().out)) == 1
    assert engine.nodes_searched() >= 2000


def test_node_count_is_shared_across_root_split_workers(capsys: pytest.CaptureFixture[str]) -> None:
    engine = SearchEngine(ProtocolWriter(), tuning=resolve_preset("fast"), threads=3)
    try:
        engine.start_thinking(chess.Board(), SearchLimits(nodes=1024))
        engine.wait_until_idle()
    finally:
        engine.shutdown()
    assert engine.nodes_searched() >= 1024
    assert len(bestmove_lines(capsys.readouterr().out)) == 1


def test_infinite_search_waits_for_stop(capsys: pytest.CaptureFixture[str]) -> None:
    engine = make_engine()
    engine.start_thinking(chess.Board(), SearchLimits(infinite=True))
    time.sleep(0.2)
    assert engine.state is SessionState.SEARCHING
    assert bestmove_lines(capsys.readouterr().out) == []

    engine.stop()
    engine.wait_until_idle()
    assert engine.state is SessionState.IDLE
    assert len(bestmove_lines(capsys.readouterr().out)) == 1


def test_ponderhit_switches_to_a_timed_search(capsys: pytest.CaptureFixture[str]) -> None:
    engine = make_engine()
    engine.start_thinking(chess.Board(), SearchLimits(ponder=True, movetime=100), move_overhead=0)
    time.sleep(0.2)
    assert engine.state is SessionState.PONDERING
    assert bestmove_lines(capsys.readouterr().out) == []

    engine.ponderhit()
    assert engine.ponder is False
    engine.wait_until_idle()
    assert engine.state is SessionState.IDLE
    assert len(bestmove_lines(capsys.readouterr().out)) == 1


def test_multithreaded_root_split_agrees_on_mate(capsys: pytest.CaptureFixture[str]) -> None:
    engine = SearchEngine(ProtocolWriter(), tuning=resolve_preset("fast"), threads=3)
    try:
        engine.start_thinking(chess.Board(BACK_RANK_MATE), SearchLimits(depth=2))
        engine.wait_until_idle()
    finally:
        engine.shutdown()
    assert bestmove_lines(capsys.readouterr().out) == ["bestmove a1a8"]


def test_show_wdl_appends_statistics(capsys: pytest.CaptureFixture[str]) -> None:
    engine = make_engine()
    engine.start_thinking(chess.Board(), SearchLimits(depth=1), show_wdl=True)
    engine.wait_until_idle()
    info = [line for line in capsys.readouterr().out.splitlines() if line.startswith("info depth 1 ")]
    assert info and " wdl " in info[0]


@pytest.mark.search_slow
def test_timed_search_respects_clock(capsys: pytest.CaptureFixture[str]) -> None:
    engine = make_engine()
    start = time.perf_counter()
    engine.start_thinking(chess.Board(), SearchLimits(wtime=2000, btime=2000))
    engine.wait_until_idle()
    assert time.perf_counter() - start < 2.0
    assert len(bestmove_lines(capsys.readouterr().out)) == 1
