"""UCI option store with typed, range-checked values."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple


class OptionError(ValueError):
    """Rejected ``setoption`` request."""


OnChange = Callable[["Option"], None]


@dataclass
class Option:
    kind: str
    default: Any = None
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    on_change: Optional[OnChange] = None
    value: Any = field(init=False)

    def __post_init__(self) -> None:
        if self.kind not in {"spin", "check", "string", "button"}:
            raise ValueError(f"unknown option kind '{self.kind}'")
        self.value = self.default

    @classmethod
    def spin(cls, default: int, minimum: int, maximum: int, on_change: Optional[OnChange] = None) -> "Option":
        return cls("spin", default, minimum, maximum, on_change)

    @classmethod
    def check(cls, default: bool, on_change: Optional[OnChange] = None) -> "Option":
        return cls("check", default, on_change=on_change)

    @classmethod
    def string(cls, default: str, on_change: Optional[OnChange] = None) -> "Option":
        return cls("string", default, on_change=on_change)

    @classmethod
    def button(cls, on_change: Optional[OnChange] = None) -> "Option":
        return cls("button", on_change=on_change)

    def parse(self, text: str) -> Any:
        if self.kind == "button":
            return None
        if not text:
            raise OptionError("missing value")
        if self.kind == "check":
            lowered = text.lower()
            if lowered not in {"true", "false"}:
                raise OptionError(f"expected true or false, got '{text}'")
            return lowered == "true"
        if self.kind == "spin":
            try:
                number = int(float(text))
            except (ValueError, OverflowError):
                raise OptionError(f"expected a number, got '{text}'") from None
            if not self.minimum <= number <= self.maximum:
                raise OptionError(f"value {number} outside [{self.minimum}, {self.maximum}]")
            return number
        return text

    def describe(self) -> str:
        line = f"type {self.kind}"
        if self.kind == "button":
            return line
        if self.kind == "check":
            return f"{line} default {'true' if self.default else 'false'}"
        line += f" default {self.default}"
        if self.kind == "spin":
            line += f" min {self.minimum} max {self.maximum}"
        return line


class OptionsMap:
    """Case-insensitive, insertion-ordered option registry."""

    def __init__(self) -> None:
        self._options: Dict[str, Tuple[str, Option]] = {}

    def add(self, name: str, option: Option) -> Option:
        self._options[name.lower()] = (name, option)
        return option

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._options

    def __getitem__(self, name: str) -> Any:
        return self.option(name).value

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._options.values())

    def option(self, name: str) -> Option:
        try:
            return self._options[name.lower()][1]
        except KeyError:
            raise OptionError(f"No such option: {name}") from None

    def set(self, name: str, text: str = "") -> Option:
        option = self.option(name)
        value = option.parse(text)
        previous = option.value
        if option.kind != "button":
            option.value = value
        if option.on_change is not None:
            try:
                option.on_change(option)
            except Exception:
                option.value = previous
                raise
        return option

    def setoption(self, args: str) -> Option:
        """Apply ``name <id> [value <x>]``; names and values may contain spaces."""

        tokens = args.split()
        if not tokens or tokens[0] != "name":
            raise OptionError("setoption expects 'name <id> [value <x>]'")
        name_parts: List[str] = []
        value_parts: List[str] = []
        target = name_parts
        for token in tokens[1:]:
            if token == "value" and target is name_parts:
                target = value_parts
                continue
            target.append(token)
        if not name_parts:
            raise OptionError("setoption expects 'name <id> [value <x>]'")
        return self.set(" ".join(name_parts), " ".join(value_parts))

    def uci_lines(self) -> List[str]:
        return [f"option name {name} {option.describe()}" for name, option in self._options.values()]
