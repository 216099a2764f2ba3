"""Public package interface for the placefish engine."""

from .enumeration import (
    EnumerationResult,
    Enumerator,
    LegalMovePolicy,
    RelocationPolicy,
    UsageError,
    resolve_mode,
)
from .options import Option, OptionError, OptionsMap
from .scoring import to_cp, to_score, wdl
from .search import SearchEngine, SearchLimits, SessionState, parse_limits
from .state import ContractViolation, StateStack, UndoRecord, apply_move, undo_move
from .uci import UCISession, engine_main

__all__ = [
    "ContractViolation",
    "EnumerationResult",
    "Enumerator",
    "LegalMovePolicy",
    "Option",
    "OptionError",
    "OptionsMap",
    "RelocationPolicy",
    "SearchEngine",
    "SearchLimits",
    "SessionState",
    "StateStack",
    "UCISession",
    "UndoRecord",
    "UsageError",
    "apply_move",
    "engine_main",
    "parse_limits",
    "resolve_mode",
    "to_cp",
    "to_score",
    "undo_move",
    "wdl",
]
