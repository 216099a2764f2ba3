from __future__ import annotations

import io
import sys
import threading
from typing import Optional, TextIO


def ensure_line_buffered_stdout() -> None:
    stdout = sys.stdout
    if isinstance(stdout, io.TextIOBase) and getattr(stdout, "line_buffering", False):
        return
    buffer = getattr(stdout, "buffer", None)
    if buffer is None:
        return
    sys.stdout = io.TextIOWrapper(buffer, line_buffering=True)


class ProtocolWriter:
    """Serialises protocol lines from the command loop and the search thread.

    When a debug log file is open every input line is copied to it prefixed
    with ``<< `` and every output line with ``>> ``.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()
        self._log: Optional[TextIO] = None

    @property
    def stream(self) -> TextIO:
        # Resolved late so pytest's capsys sees the writes.
        return self._stream if self._stream is not None else sys.stdout

    def emit(self, *lines: str) -> None:
        with self._lock:
            stream = self.stream
            for line in lines:
                stream.write(line + "\n")
                if self._log is not None:
                    self._log.write(f">> {line}\n")
            stream.flush()
            if self._log is not None:
                self._log.flush()

    def record_input(self, line: str) -> None:
        with self._lock:
            if self._log is not None:
                self._log.write(f"<< {line}\n")
                self._log.flush()

    def open_log(self, path: str) -> None:
        with self._lock:
            if self._log is not None:
                self._log.close()
                self._log = None
            if path and path != "<empty>":
                self._log = open(path, "a", encoding="utf-8")

    def close(self) -> None:
        self.open_log("")
