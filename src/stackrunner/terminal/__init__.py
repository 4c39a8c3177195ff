"""Terminal records, process backend and lifecycle manager."""

from .models import TerminalEvent, TerminalRecord, TerminalStatus
from .pty_backend import PtyBackend, build_shell_command
from .registry import TerminalRegistry
from .service import TeardownReport, TerminalLifecycleManager

__all__ = [
    "build_shell_command",
    "PtyBackend",
    "TeardownReport",
    "TerminalEvent",
    "TerminalLifecycleManager",
    "TerminalRecord",
    "TerminalRegistry",
    "TerminalStatus",
]
