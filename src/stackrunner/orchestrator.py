"""End-to-end orchestration from configuration state to running terminals."""

from __future__ import annotations

import logging as py_logging
from collections.abc import Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from stackrunner.catalog.models import CommandDefinition, SectionDefinition, SectionTree
from stackrunner.docker.runtime import ContainerRuntime
from stackrunner.engine.context import ConfigState
from stackrunner.engine.generator import GeneratedEntry, generate_command_list
from stackrunner.terminal.models import TerminalRecord, TerminalStatus
from stackrunner.terminal.pty_backend import ProcessBackend
from stackrunner.terminal.registry import TerminalRegistry
from stackrunner.terminal.service import TeardownReport, TerminalLifecycleManager

logger = py_logging.getLogger(__name__)


class RunOptions(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    show_test_sections: bool = False
    start_terminals: bool = True
    cols: int = Field(default=120, ge=20, le=500)
    rows: int = Field(default=32, ge=5, le=200)


class RunSession:
    """Generates the command list for a state and drives it through the lifecycle manager."""

    def __init__(
        self,
        *,
        sections: SectionTree | Sequence[SectionDefinition],
        definitions: Sequence[CommandDefinition],
        process_backend: ProcessBackend,
        container_runtime: ContainerRuntime,
        registry: TerminalRegistry | None = None,
        options: RunOptions | None = None,
    ) -> None:
        self.options = options or RunOptions()
        self.sections = sections if isinstance(sections, SectionTree) else SectionTree(sections=tuple(sections))
        self.definitions = list(definitions)
        self.backend = process_backend
        self._state = ConfigState()
        self.manager = TerminalLifecycleManager(
            process_backend=process_backend,
            container_runtime=container_runtime,
            definitions=self.definitions,
            state_provider=self.current_state,
            registry=registry,
            auto_spawn=False,
            cols=self.options.cols,
            rows=self.options.rows,
        )
        subscribe = getattr(process_backend, "subscribe", None)
        if callable(subscribe):
            subscribe(self.manager)

    def current_state(self) -> ConfigState:
        return self._state

    def generate(self, state: ConfigState) -> list[GeneratedEntry]:
        return generate_command_list(
            state.config,
            state.dropdown_values,
            attach_state=state.attach_state,
            definitions=self.definitions,
            sections=self.sections,
            show_test_sections=self.options.show_test_sections,
        )

    def launch(
        self,
        state: ConfigState,
        *,
        on_opened: Callable[[list[TerminalRecord]], None] | None = None,
    ) -> list[TerminalRecord]:
        """Open one terminal per generated entry and start them.

        ``on_opened`` runs after the records exist but before any process is
        spawned, so output writers can be registered in time.
        """
        self._state = state
        entries = self.generate(state)
        logger.debug(
            "Launching session entries=%s errors=%s",
            len(entries),
            sum(1 for entry in entries if entry.type == "error"),
        )
        records = self.manager.open_tabs(entries)
        if on_opened is not None:
            on_opened(records)
        if self.options.start_terminals:
            self.manager.start_all()
        return records

    def update_state(self, state: ConfigState) -> None:
        """Swap the state used by later refreshes without reopening terminals."""
        self._state = state

    def refresh(self, terminal_id: str) -> TerminalRecord | None:
        record = self.manager.refresh_tab(terminal_id)
        if record is not None and self.options.start_terminals:
            self.manager.start_tab(terminal_id)
        return record

    def wait(self, timeout: float | None = None) -> bool:
        join = getattr(self.backend, "join", None)
        if not callable(join):
            return True
        return bool(join(timeout))

    def failed_records(self) -> list[TerminalRecord]:
        return [record for record in self.manager.list_records() if record.status == TerminalStatus.ERROR]

    def teardown(self) -> TeardownReport:
        report = self.manager.kill_all_terminals()
        if report.success:
            logger.debug("Teardown finished killed=%s containers=%s", len(report.killed), report.containers)
        else:
            logger.warning(
                "Teardown finished with failures kills=%s container_error=%s",
                report.kill_failures,
                report.container_error or (report.container_report.error if report.container_report else ""),
            )
        return report
