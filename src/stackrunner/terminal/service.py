"""Terminal registry and lifecycle orchestration."""

from __future__ import annotations

import itertools
import logging as py_logging
import threading
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

from stackrunner.catalog.models import CommandDefinition, RefreshConfig, RefreshStep
from stackrunner.docker.runtime import ContainerRuntime, ContainerStopReport
from stackrunner.engine.context import ConfigState, evaluate_condition
from stackrunner.engine.generator import ErrorEntry, GeneratedEntry
from stackrunner.errors import ExitCode, StackRunnerError
from stackrunner.terminal.models import STARTABLE_STATUSES, TerminalEvent, TerminalRecord, TerminalStatus
from stackrunner.terminal.pty_backend import ProcessBackend
from stackrunner.terminal.registry import TerminalRegistry

logger = py_logging.getLogger(__name__)

StateProvider = Callable[[], ConfigState]

_MAX_TEARDOWN_WORKERS = 16


@dataclass
class TeardownReport:
    killed: list[str] = field(default_factory=list)
    kill_failures: dict[str, str] = field(default_factory=dict)
    containers: list[str] = field(default_factory=list)
    container_report: ContainerStopReport | None = None
    container_error: str = ""

    @property
    def success(self) -> bool:
        if self.kill_failures or self.container_error:
            return False
        return self.container_report is None or self.container_report.success


def _dedupe(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for name in names:
        if isinstance(name, str) and name and name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered


class TerminalLifecycleManager:
    """Owns every ``TerminalRecord`` and reacts to process notifications.

    Registry mutations happen under a re-entrant lock; the lock is never held
    while a collaborator is called, so a slow kill or container stop cannot
    block process notifications arriving from reader threads.
    """

    def __init__(
        self,
        *,
        process_backend: ProcessBackend,
        container_runtime: ContainerRuntime,
        definitions: Sequence[CommandDefinition] = (),
        state_provider: StateProvider | None = None,
        registry: TerminalRegistry | None = None,
        auto_spawn: bool = False,
        cols: int = 80,
        rows: int = 24,
    ) -> None:
        if cols <= 0 or rows <= 0:
            raise StackRunnerError(
                f"Invalid terminal size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
            )
        self._backend = process_backend
        self._containers = container_runtime
        self._definitions = list(definitions)
        self._state_provider = state_provider or ConfigState
        self._registry = registry
        self.auto_spawn = auto_spawn
        self.cols = cols
        self.rows = rows
        self._records: list[TerminalRecord] = []
        self._active_id: str | None = None
        self._ids = itertools.count(1)
        self._events: list[TerminalEvent] = []
        self._spawning: set[str] = set()
        self._lock = threading.RLock()
        if registry is not None:
            registry.bind_runner(self.run_command)

    @property
    def active_terminal_id(self) -> str | None:
        with self._lock:
            return self._active_id

    def list_records(self) -> list[TerminalRecord]:
        with self._lock:
            return list(self._records)

    def get(self, terminal_id: str) -> TerminalRecord | None:
        with self._lock:
            return self._find(terminal_id)

    def set_active(self, terminal_id: str) -> None:
        with self._lock:
            self._must_get(terminal_id)
            self._active_id = terminal_id

    def list_events(self) -> list[TerminalEvent]:
        with self._lock:
            return list(self._events)

    def open_tabs(self, specs: Sequence[GeneratedEntry]) -> list[TerminalRecord]:
        records = [self._new_record(spec) for spec in specs]
        with self._lock:
            self._records = records
            self._active_id = records[0].id if records else None
        if self._registry is not None:
            self._registry.clear_writers()
        self._record("*", "open-tabs", f"Opened {len(records)} terminal(s).")
        if self.auto_spawn:
            self.start_all()
        return list(records)

    def run_command(self, command: str, title: str = "") -> str:
        """Append a single ad-hoc terminal without resetting the registry."""
        record = TerminalRecord(
            id=f"term-{next(self._ids)}",
            title=title or command,
            status=TerminalStatus.IDLE,
            section_id="",
            command=command,
            original_command=command,
        )
        with self._lock:
            self._records.append(record)
            self._active_id = record.id
        self._record(record.id, "run-command", f"Added terminal '{record.title}'.")
        self.start_tab(record.id)
        return record.id

    def start_tab(self, terminal_id: str) -> TerminalRecord:
        with self._lock:
            record = self._must_get(terminal_id)
            if terminal_id in self._spawning or record.status not in STARTABLE_STATUSES or not record.command:
                return record
            self._spawning.add(terminal_id)
            record.status = TerminalStatus.PENDING_SPAWN
            command = record.command
        try:
            self._backend.spawn(command, terminal_id, self.cols, self.rows)
        except Exception as exc:
            message = getattr(exc, "message", "") or str(exc) or "Failed to spawn process."
            with self._lock:
                current = self._find(terminal_id)
                if current is record and record.status == TerminalStatus.PENDING_SPAWN:
                    record.status = TerminalStatus.ERROR
                    record.error_type = "spawn"
                    record.error_message = message
            self._record(terminal_id, "spawn-failed", message)
            return record
        finally:
            with self._lock:
                self._spawning.discard(terminal_id)
        self._record(terminal_id, "spawn", "Spawn requested.")
        return record

    def start_all(self) -> list[TerminalRecord]:
        with self._lock:
            startable = [record.id for record in self._records if record.status in STARTABLE_STATUSES]
        return [self.start_tab(terminal_id) for terminal_id in startable]

    def close_tab(self, terminal_id: str) -> TerminalRecord | None:
        record = self.get(terminal_id)
        if record is None:
            return None

        containers = _dedupe(record.associated_containers)
        if containers:
            self._stop_containers_best_effort(terminal_id, containers)
        self._kill_best_effort(terminal_id)

        with self._lock:
            index = next((i for i, item in enumerate(self._records) if item.id == terminal_id), None)
            if index is None:
                return None
            removed = self._records.pop(index)
            if not self._records:
                self._active_id = None
            elif self._active_id == terminal_id:
                self._active_id = self._records[max(index - 1, 0)].id
        if self._registry is not None:
            self._registry.unregister_writer(terminal_id)
        self._record(terminal_id, "close", "Terminal closed.")
        return removed

    def refresh_tab(self, terminal_id: str) -> TerminalRecord | None:
        record = self.get(terminal_id)
        if record is None:
            return None
        if record.original_command is None:
            self._record(terminal_id, "refresh-skip", "Terminal has no command to refresh.")
            return record

        containers = _dedupe(record.associated_containers)
        if containers:
            self._stop_containers_best_effort(terminal_id, containers)

        command = self._wrap_for_refresh(record)
        self._kill_best_effort(terminal_id)

        with self._lock:
            if self._find(terminal_id) is not record:
                self._record(terminal_id, "refresh-cancel", "Terminal was removed before refresh completed.")
                return None
            record.status = TerminalStatus.PENDING_SPAWN
            record.command = command
            record.refresh_count += 1
            record.exit_code = None
            record.exit_status = ""
            record.error_type = None
            record.error_message = None
        self._record(terminal_id, "refresh", f"Refresh #{record.refresh_count} queued.")
        if self.auto_spawn:
            self.start_tab(terminal_id)
        return record

    def kill_all_terminals(self) -> TeardownReport:
        with self._lock:
            terminal_ids = [record.id for record in self._records]
            containers = _dedupe(
                name for record in self._records for name in record.associated_containers
            )
        report = TeardownReport(containers=containers)
        if not terminal_ids:
            return report

        workers = max(1, min(_MAX_TEARDOWN_WORKERS, len(terminal_ids) + 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="teardown") as pool:
            kills = {terminal_id: pool.submit(self._backend.kill, terminal_id) for terminal_id in terminal_ids}
            stop: Future[ContainerStopReport] | None = None
            if containers:
                stop = pool.submit(self._containers.stop_containers, containers)

            for terminal_id, future in kills.items():
                try:
                    future.result()
                except Exception as exc:
                    report.kill_failures[terminal_id] = str(exc) or type(exc).__name__
                    logger.error("Kill failed during teardown terminal=%s error=%s", terminal_id, exc)
                else:
                    report.killed.append(terminal_id)
            if stop is not None:
                try:
                    report.container_report = stop.result()
                except Exception as exc:
                    report.container_error = str(exc) or type(exc).__name__
                    logger.error("Container stop failed during teardown error=%s", exc)

        self._record(
            "*",
            "kill-all",
            f"Killed {len(report.killed)} terminal(s); stopped {len(containers)} container(s).",
        )
        return report

    def clear_tabs(self) -> None:
        with self._lock:
            self._records = []
            self._active_id = None
        if self._registry is not None:
            self._registry.clear_writers()
        self._record("*", "clear", "Terminal registry cleared.")

    def on_process_started(self, terminal_id: str) -> None:
        with self._lock:
            record = self._find(terminal_id)
            if record is None or record.status not in STARTABLE_STATUSES:
                return
            record.status = TerminalStatus.RUNNING
        self._record(terminal_id, "started", "Process is running.")

    def on_process_ended(self, terminal_id: str, exit_code: int | None, signal: int | None = None) -> None:
        with self._lock:
            record = self._find(terminal_id)
            if record is None or record.status != TerminalStatus.RUNNING:
                return
            if signal:
                record.status = TerminalStatus.STOPPED
                record.exit_status = f"Terminated by signal {signal}"
            elif exit_code not in (0, None):
                record.status = TerminalStatus.ERROR
                record.exit_status = f"Exited with error code {exit_code}"
            else:
                record.status = TerminalStatus.DONE
                record.exit_status = "Exited successfully"
            record.exit_code = exit_code
            status_text = record.exit_status
        self._record(terminal_id, "ended", status_text)

    def _new_record(self, spec: GeneratedEntry) -> TerminalRecord:
        terminal_id = f"term-{next(self._ids)}"
        if isinstance(spec, ErrorEntry):
            return TerminalRecord(
                id=terminal_id,
                title=spec.title or spec.section_id,
                status=TerminalStatus.ERROR,
                section_id=spec.section_id,
                command_definition_id=spec.command_definition_id,
                error_type="config",
                error_message=spec.message,
            )
        return TerminalRecord(
            id=terminal_id,
            title=spec.tab_title or spec.section_id,
            status=TerminalStatus.IDLE,
            section_id=spec.section_id,
            command=spec.command,
            original_command=spec.command,
            command_definition_id=spec.command_definition_id,
            associated_containers=tuple(spec.associated_containers),
            is_sub_section_command=spec.is_sub_section_command,
            refresh_config=spec.refresh_config,
        )

    def _refresh_config_for(self, record: TerminalRecord) -> RefreshConfig | None:
        definition_id = record.command_definition_id
        with self._lock:
            definitions = self._definitions
        if definition_id is not None and 0 <= definition_id < len(definitions):
            return definitions[definition_id].command.refresh_config
        return record.refresh_config

    def _wrap_for_refresh(self, record: TerminalRecord) -> str:
        base = record.original_command or ""
        refresh_config = self._refresh_config_for(record)
        if refresh_config is None:
            return base
        state = self._state_provider()

        def gated(steps: Sequence[RefreshStep]) -> str:
            return "".join(
                step.command
                for step in steps
                if step.condition is None
                or evaluate_condition(
                    step.condition,
                    state.config,
                    record.section_id,
                    state.attach_state,
                    state.dropdown_values,
                )
            )

        return gated(refresh_config.prepend_commands) + base + gated(refresh_config.append_commands)

    def _stop_containers_best_effort(self, terminal_id: str, containers: list[str]) -> None:
        try:
            result = self._containers.stop_containers(containers)
        except Exception as exc:
            logger.error("Container stop failed terminal=%s containers=%s error=%s", terminal_id, containers, exc)
            self._record(terminal_id, "containers-failed", str(exc) or type(exc).__name__)
            return
        if result.success:
            self._record(terminal_id, "containers", f"Stopped containers: {', '.join(containers)}.")
        else:
            failed = ", ".join(item.container_name for item in result.failed) or result.error
            self._record(terminal_id, "containers-failed", f"Failed to stop: {failed}.")

    def _kill_best_effort(self, terminal_id: str) -> None:
        try:
            self._backend.kill(terminal_id)
        except Exception as exc:
            logger.error("Kill request failed terminal=%s error=%s", terminal_id, exc)
            self._record(terminal_id, "kill-failed", str(exc) or type(exc).__name__)

    def _find(self, terminal_id: str) -> TerminalRecord | None:
        for record in self._records:
            if record.id == terminal_id:
                return record
        return None

    def _must_get(self, terminal_id: str) -> TerminalRecord:
        record = self._find(terminal_id)
        if record is None:
            raise StackRunnerError(
                f"Terminal not found: {terminal_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Select an existing terminal.",
            )
        return record

    def _record(self, terminal_id: str, step: str, message: str) -> None:
        with self._lock:
            self._events.append(TerminalEvent(terminal_id=terminal_id, step=step, message=message))
        logger.info("runtime-event terminal=%s step=%s message=%s", terminal_id, step, message)
