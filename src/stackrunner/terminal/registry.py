"""Explicit registry of terminal output writers and the run-in-terminal hook."""

from __future__ import annotations

import logging as py_logging
import threading
from collections.abc import Callable

from stackrunner.errors import ExitCode, StackRunnerError

logger = py_logging.getLogger(__name__)

TerminalWriter = Callable[[str], None]
TerminalRunner = Callable[[str, str], str]


class TerminalRegistry:
    """Passed to whichever component writes terminal bytes or triggers a run.

    Writers receive decoded output for one terminal id. The runner, when bound,
    opens a terminal for ``(command, title)`` and returns its id.
    """

    def __init__(self) -> None:
        self._writers: dict[str, TerminalWriter] = {}
        self._runner: TerminalRunner | None = None
        self._lock = threading.Lock()

    def register_writer(self, terminal_id: str, writer: TerminalWriter) -> None:
        with self._lock:
            self._writers[terminal_id] = writer

    def unregister_writer(self, terminal_id: str) -> None:
        with self._lock:
            self._writers.pop(terminal_id, None)

    def clear_writers(self) -> None:
        with self._lock:
            self._writers.clear()

    def has_writer(self, terminal_id: str) -> bool:
        with self._lock:
            return terminal_id in self._writers

    def write(self, terminal_id: str, data: str) -> bool:
        with self._lock:
            writer = self._writers.get(terminal_id)
        if writer is None:
            logger.debug("Dropping output for terminal=%s; no writer registered", terminal_id)
            return False
        writer(data)
        return True

    def bind_runner(self, runner: TerminalRunner | None) -> None:
        with self._lock:
            self._runner = runner

    def run_in_terminal(self, command: str, title: str = "") -> str:
        with self._lock:
            runner = self._runner
        if runner is None:
            raise StackRunnerError(
                "No terminal runner is bound.",
                code=ExitCode.RUNTIME_ERROR,
                hint="Bind a terminal runner before requesting a run.",
            )
        return runner(command, title or command)
