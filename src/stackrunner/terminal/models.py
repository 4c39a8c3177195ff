"""Terminal domain models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from stackrunner.catalog.models import RefreshConfig


class TerminalStatus(str, Enum):
    IDLE = "idle"
    PENDING_SPAWN = "pending_spawn"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"


FINISHED_STATUSES = frozenset({TerminalStatus.DONE, TerminalStatus.ERROR, TerminalStatus.STOPPED})
STARTABLE_STATUSES = frozenset({TerminalStatus.IDLE, TerminalStatus.PENDING_SPAWN})


@dataclass
class TerminalRecord:
    id: str
    title: str
    status: TerminalStatus
    section_id: str
    command: str | None = None
    original_command: str | None = None
    command_definition_id: int | None = None
    associated_containers: tuple[str, ...] = ()
    is_sub_section_command: bool = False
    refresh_config: RefreshConfig | None = None
    refresh_count: int = 0
    error_type: str | None = None
    error_message: str | None = None
    exit_code: int | None = None
    exit_status: str = ""

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "original_command" and "original_command" in self.__dict__:
            raise AttributeError("original_command is set once at creation")
        super().__setattr__(name, value)

    @property
    def is_config_error(self) -> bool:
        return self.error_type == "config"

    @property
    def finished(self) -> bool:
        return self.status in FINISHED_STATUSES


@dataclass(frozen=True)
class TerminalEvent:
    terminal_id: str
    step: str
    message: str
