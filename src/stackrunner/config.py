"""XDG config loading/saving and the JSON runtime-state document."""

from __future__ import annotations

import json
import sys
from collections.abc import Mapping
from contextlib import suppress
from pathlib import Path
from typing import Any, Literal, cast

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from stackrunner.engine.context import AttachState, ConfigState
from stackrunner.errors import ExitCode, StackRunnerError

DEFAULT_CONFIG_PATH = Path("~/.config/stackrunner/config.toml").expanduser()
DEFAULT_COLS = 120
DEFAULT_ROWS = 32
DEFAULT_STOP_TIMEOUT = 30
DEFAULT_LOG_LEVEL: Literal["DEBUG", "INFO", "WARN", "ERROR"] = "INFO"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "ERROR"}
_PATH_FIELDS = ("sections_file", "commands_file", "state_file")


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    sections_file: str = ""
    commands_file: str = ""
    state_file: str = ""
    show_test_sections: bool = False
    auto_spawn: bool = True
    terminal_cols: int = Field(default=DEFAULT_COLS, ge=20, le=500)
    terminal_rows: int = Field(default=DEFAULT_ROWS, ge=5, le=200)
    shell: str = ""
    container_stop_timeout_seconds: int = Field(default=DEFAULT_STOP_TIMEOUT, ge=1, le=300)
    log_level: Literal["DEBUG", "INFO", "WARN", "ERROR"] = DEFAULT_LOG_LEVEL

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.upper()
            return "WARN" if normalized == "WARNING" else normalized
        return value


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _bounded_int(value: object, low: int, high: int) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if low <= value <= high else None


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    for name in _PATH_FIELDS:
        value = raw.get(name)
        if isinstance(value, str):
            setattr(cfg, name, value.strip())

    show_test_sections = raw.get("show_test_sections", cfg.show_test_sections)
    if isinstance(show_test_sections, bool):
        cfg.show_test_sections = show_test_sections

    auto_spawn = raw.get("auto_spawn", cfg.auto_spawn)
    if isinstance(auto_spawn, bool):
        cfg.auto_spawn = auto_spawn

    cols = _bounded_int(raw.get("terminal_cols"), 20, 500)
    if cols is not None:
        cfg.terminal_cols = cols

    rows = _bounded_int(raw.get("terminal_rows"), 5, 200)
    if rows is not None:
        cfg.terminal_rows = rows

    shell = raw.get("shell", cfg.shell)
    if isinstance(shell, str):
        cfg.shell = shell.strip()

    timeout = _bounded_int(raw.get("container_stop_timeout_seconds"), 1, 300)
    if timeout is not None:
        cfg.container_stop_timeout_seconds = timeout

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str):
        normalized = log_level.upper()
        if normalized == "WARNING":
            normalized = "WARN"
        if normalized in _VALID_LOG_LEVELS:
            cfg.log_level = cast(Literal["DEBUG", "INFO", "WARN", "ERROR"], normalized)

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return AppConfig()
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()
    return _sanitize(raw)


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        f"sections_file = {_toml_scalar(config.sections_file)}",
        f"commands_file = {_toml_scalar(config.commands_file)}",
        f"state_file = {_toml_scalar(config.state_file)}",
        f"show_test_sections = {_toml_scalar(config.show_test_sections)}",
        f"auto_spawn = {_toml_scalar(config.auto_spawn)}",
        f"terminal_cols = {_toml_scalar(config.terminal_cols)}",
        f"terminal_rows = {_toml_scalar(config.terminal_rows)}",
        f"shell = {_toml_scalar(config.shell)}",
        f"container_stop_timeout_seconds = {_toml_scalar(config.container_stop_timeout_seconds)}",
        f"log_level = {_toml_scalar(config.log_level)}",
    ]
    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved


def read_json_document(path: str | Path, *, what: str) -> Any:
    resolved = Path(path).expanduser()
    try:
        text = resolved.read_text(encoding="utf-8")
    except OSError as exc:
        raise StackRunnerError(
            f"Cannot read {what}: {resolved}",
            code=ExitCode.CONFIG_ERROR,
            hint=str(exc) or "Check the file path.",
        ) from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise StackRunnerError(
            f"Invalid JSON in {what}: {resolved}",
            code=ExitCode.CONFIG_ERROR,
            hint=f"Line {exc.lineno}, column {exc.colno}: {exc.msg}",
        ) from exc


def _bool_map(value: object) -> dict[str, bool]:
    if not isinstance(value, Mapping):
        return {}
    return {key: bool(flag) for key, flag in value.items() if isinstance(key, str)}


def parse_state(raw: object) -> ConfigState:
    if not isinstance(raw, Mapping):
        raise StackRunnerError(
            "State document must be a JSON object.",
            code=ExitCode.CONFIG_ERROR,
            hint='Use {"config": {...}, "attachState": {...}, "dropdownValues": {...}}.',
        )
    config = raw.get("config", {})
    if not isinstance(config, Mapping):
        raise StackRunnerError(
            "State document 'config' must be an object keyed by section id.",
            code=ExitCode.CONFIG_ERROR,
        )
    sections = {key: value for key, value in config.items() if isinstance(key, str) and isinstance(value, Mapping)}
    dropdowns = raw.get("dropdownValues", {})
    return ConfigState(
        config=sections,
        attach_state=AttachState(
            values=_bool_map(raw.get("attachState")),
            warnings=_bool_map(raw.get("attachWarnings")),
        ),
        dropdown_values=dict(dropdowns) if isinstance(dropdowns, Mapping) else {},
    )


def load_state(path: str | Path) -> ConfigState:
    return parse_state(read_json_document(path, what="state file"))
