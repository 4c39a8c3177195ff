"""Public CLI contract and entrypoint."""

from __future__ import annotations

import argparse
import json
import logging as py_logging
import sys
import threading
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TextIO

from .catalog.models import parse_definitions, parse_sections
from .config import AppConfig, load_config, load_state, read_json_document
from .docker.runtime import ContainerRuntime, DockerRuntime
from .engine.context import ConfigState
from .engine.generator import ErrorEntry, GeneratedEntry, generate_command_list
from .errors import ExitCode, StackRunnerError, user_facing_error
from .logging import configure_logging, default_log_path
from .orchestrator import RunOptions, RunSession
from .terminal.models import TerminalRecord
from .terminal.pty_backend import ProcessBackend, PtyBackend
from .terminal.registry import TerminalRegistry

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")
_WAIT_SLICE_SECONDS = 0.5


def _log_level_type(value: str) -> str:
    normalized = value.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    if normalized not in _VALID_LOG_LEVELS:
        accepted = ", ".join(_VALID_LOG_LEVELS)
        raise argparse.ArgumentTypeError(f"--log-level must be one of: {accepted}")
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackrunner",
        description="Generate and run the shell commands selected by a configuration state.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    parser.add_argument("--sections", type=Path, default=None, help="Section tree JSON document")
    parser.add_argument("--commands", type=Path, default=None, help="Command catalogue JSON document")
    parser.add_argument("--state", type=Path, default=None, help="Configuration state JSON document")
    parser.add_argument(
        "--show-test-sections",
        action="store_true",
        default=None,
        help="Include sections flagged as test sections",
    )
    parser.add_argument(
        "--run",
        action="store_true",
        help="Spawn a terminal per generated command and stream its output",
    )
    parser.add_argument("--log-level", type=_log_level_type, default=None)
    parser.add_argument("--log-file", type=Path, default=None)
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = build_parser()
    return parser.parse_args(argv)


def _resolve_path(cli_value: Path | None, configured: str, *, flag: str) -> Path:
    if cli_value is not None:
        return cli_value.expanduser()
    if configured:
        return Path(configured).expanduser()
    raise StackRunnerError(
        f"Missing {flag} document.",
        code=ExitCode.INVALID_ARGS,
        hint=f"Pass {flag} or set it in config.toml.",
    )


def entry_to_json(entry: GeneratedEntry) -> str:
    payload: dict[str, object] = {"type": entry.type, "sectionId": entry.section_id}
    if isinstance(entry, ErrorEntry):
        payload.update(title=entry.title, message=entry.message)
    else:
        payload.update(
            command=entry.command,
            commandDefinitionId=entry.command_definition_id,
            tabTitle=entry.tab_title,
            isSubSectionCommand=entry.is_sub_section_command,
            associatedContainers=list(entry.associated_containers),
            refreshConfig=(
                entry.refresh_config.model_dump(by_alias=True, exclude_none=True)
                if entry.refresh_config is not None
                else None
            ),
        )
    return json.dumps(payload, ensure_ascii=False)


class _PrefixedWriter:
    """Line-buffers terminal output and prints it prefixed by the tab title."""

    def __init__(self, title: str, out: TextIO, lock: threading.Lock) -> None:
        self._title = title
        self._out = out
        self._lock = lock
        self._pending = ""

    def __call__(self, data: str) -> None:
        text = self._pending + data.replace("\r\n", "\n").replace("\r", "\n")
        *lines, self._pending = text.split("\n")
        self._emit(lines)

    def flush(self) -> None:
        if self._pending:
            self._emit([self._pending])
            self._pending = ""

    def _emit(self, lines: list[str]) -> None:
        if not lines:
            return
        with self._lock:
            for line in lines:
                print(f"[{self._title}] {line}", file=self._out)
            self._out.flush()


def run_session(
    session: RunSession,
    state: ConfigState,
    registry: TerminalRegistry,
    *,
    out: TextIO,
) -> int:
    logger = py_logging.getLogger("stackrunner.cli")
    lock = threading.Lock()
    writers: list[_PrefixedWriter] = []

    def attach_writers(records: list[TerminalRecord]) -> None:
        for record in records:
            if record.is_config_error:
                print(f"[{record.title}] {record.error_message}", file=out)
                continue
            writer = _PrefixedWriter(record.title, out, lock)
            writers.append(writer)
            registry.register_writer(record.id, writer)

    session.launch(state, on_opened=attach_writers)

    try:
        while not session.wait(_WAIT_SLICE_SECONDS):
            pass
    except KeyboardInterrupt:
        logger.warning("Interrupted; tearing down terminals")
        report = session.teardown()
        session.wait(_WAIT_SLICE_SECONDS * 4)
        for writer in writers:
            writer.flush()
        if not report.success:
            code = ExitCode.PROCESS_ERROR if report.kill_failures else ExitCode.CONTAINER_ERROR
            raise StackRunnerError(
                "Teardown finished with failures.",
                code=code,
                hint="Inspect logs for the failed kill or container stop.",
            ) from None
        return int(ExitCode.SUCCESS)

    for writer in writers:
        writer.flush()
    failed = session.failed_records()
    if failed:
        for record in failed:
            detail = record.error_message or record.exit_status
            logger.error("Terminal failed title=%s detail=%s", record.title, detail)
        return int(ExitCode.PROCESS_ERROR)
    return int(ExitCode.SUCCESS)


def run_cli_flow(
    namespace: argparse.Namespace,
    app_config: AppConfig,
    *,
    out: TextIO | None = None,
    backend_factory: Callable[[TerminalRegistry], ProcessBackend] | None = None,
    container_runtime: ContainerRuntime | None = None,
) -> int:
    stream = out or sys.stdout
    sections_path = _resolve_path(namespace.sections, app_config.sections_file, flag="--sections")
    commands_path = _resolve_path(namespace.commands, app_config.commands_file, flag="--commands")
    state_path = _resolve_path(namespace.state, app_config.state_file, flag="--state")

    sections = parse_sections(read_json_document(sections_path, what="section tree"))
    definitions = parse_definitions(read_json_document(commands_path, what="command catalogue"))
    state = load_state(state_path)

    show_test_sections = (
        namespace.show_test_sections
        if namespace.show_test_sections is not None
        else app_config.show_test_sections
    )

    if not namespace.run:
        entries = generate_command_list(
            state.config,
            state.dropdown_values,
            attach_state=state.attach_state,
            definitions=definitions,
            sections=sections,
            show_test_sections=show_test_sections,
        )
        for entry in entries:
            print(entry_to_json(entry), file=stream)
        return int(ExitCode.SUCCESS)

    registry = TerminalRegistry()
    if backend_factory is not None:
        backend = backend_factory(registry)
    else:
        backend = PtyBackend(registry=registry, shell=app_config.shell)
    runtime = container_runtime or DockerRuntime(
        stop_timeout_seconds=float(app_config.container_stop_timeout_seconds)
    )
    session = RunSession(
        sections=sections,
        definitions=definitions,
        process_backend=backend,
        container_runtime=runtime,
        registry=registry,
        options=RunOptions(
            show_test_sections=show_test_sections,
            cols=app_config.terminal_cols,
            rows=app_config.terminal_rows,
        ),
    )
    return run_session(session, state, registry, out=stream)


def main(
    argv: Sequence[str] | None = None,
    *,
    out: TextIO | None = None,
) -> int:
    log_path = default_log_path()
    logger = configure_logging(log_file=log_path)
    parser = build_parser()
    try:
        namespace = parser.parse_args(argv)
    except SystemExit as exc:
        if exc.code not in (None, 0):
            logger.warning("Argument parsing failed with exit code %s", exc.code)
        return int(exc.code or 0)

    app_config = load_config(namespace.config)
    if namespace.log_file is not None:
        log_path = namespace.log_file.expanduser()
    logger = configure_logging(level=namespace.log_level or app_config.log_level, log_file=log_path)

    try:
        logger.debug("Starting CLI flow run=%s", namespace.run)
        return run_cli_flow(namespace, app_config, out=out)
    except StackRunnerError as exc:
        logger.error(
            "Handled StackRunnerError (code=%s): %s",
            int(exc.code),
            exc.message,
            exc_info=logger.isEnabledFor(py_logging.DEBUG),
        )
        print(user_facing_error(exc.message, hint=exc.hint), file=sys.stderr)
        return int(exc.code)
    except Exception:
        logger.exception("Unhandled exception in CLI entrypoint")
        try:
            hint = f"Inspect logs: {log_path}"
            print(user_facing_error("Unexpected runtime failure", hint=hint), file=sys.stderr)
        except Exception:
            pass
        return int(ExitCode.RUNTIME_ERROR)


def run(argv: Sequence[str] | None = None) -> int:
    return main(argv)
