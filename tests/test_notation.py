import chess

from placefish.notation import MoveKind, classify, format_move, format_variation, parse_move


def test_absent_and_null_moves() -> None:
    board = chess.Board()
    assert format_move(board, None) == "(none)"
    assert format_move(board, chess.Move.null()) == "0000"


def test_castling_text_depends_on_chess960() -> None:
    fen = "r3k2r/8/8/8/8/8/8/R3K2R w KQkq - 0 1"
    standard = chess.Board(fen)
    castle = parse_move(standard, "e1g1")
    assert castle is not None
    assert format_move(standard, castle) == "e1g1"

    shuffle = chess.Board(fen, chess960=True)
    castle = parse_move(shuffle, "e1h1")
    assert castle is not None
    assert format_move(shuffle, castle) == "e1h1"
    assert classify(shuffle, castle) is MoveKind.CASTLING


def test_parse_accepts_uppercase_promotion_letter() -> None:
    board = chess.Board("k7/4P3/8/8/8/8/8/4K3 w - - 0 1")
    move = parse_move(board, "e7e8Q")
    assert move == chess.Move(chess.E7, chess.E8, promotion=chess.QUEEN)
    assert format_move(board, move) == "e7e8q"
    assert classify(board, move) is MoveKind.PROMOTION


def test_parse_rejects_illegal_text() -> None:
    board = chess.Board()
    assert parse_move(board, "e2e5") is None
    assert parse_move(board, "zz") is None


def test_classify_en_passant_and_normal() -> None:
    board = chess.Board("4k3/8/8/3pP3/8/8/8/4K3 w - d6 0 1")
    assert classify(board, chess.Move.from_uci("e5d6")) is MoveKind.EN_PASSANT
    assert classify(board, chess.Move.from_uci("e1d2")) is MoveKind.NORMAL


def test_format_variation_replays_moves() -> None:
    board = chess.Board()
    moves = [chess.Move.from_uci(text) for text in ("e2e4", "e7e5", "g1f3")]
    assert format_variation(board, moves) == "e2e4 e7e5 g1f3"
    assert board.fen() == chess.STARTING_FEN
