from __future__ import annotations

import io
import json
from contextlib import redirect_stderr
from pathlib import Path

import pytest

from stackrunner import cli
from stackrunner.config import AppConfig, save_config
from stackrunner.errors import ExitCode

_SECTIONS = [
    {"id": "api", "title": "API"},
    {"id": "worker", "title": "Worker"},
]
_COMMANDS = [
    {
        "sectionId": "api",
        "conditions": {"enabled": True},
        "command": {"base": "uvicorn app:api --port ${port}", "tabTitle": "API", "associatedContainers": ["db"]},
    },
    {
        "sectionId": "worker",
        "conditions": {"enabled": True, "mode": "queue"},
        "command": {"base": "celery worker", "tabTitle": "Worker"},
    },
]
_STATE = {
    "config": {"api": {"enabled": True, "port": 8000}, "worker": {"enabled": True, "mode": "cron"}},
    "attachState": {},
    "dropdownValues": {},
}


@pytest.fixture
def documents(isolated_home: Path) -> dict[str, Path]:
    paths = {
        "sections": isolated_home / "sections.json",
        "commands": isolated_home / "commands.json",
        "state": isolated_home / "state.json",
        "config": isolated_home / "config.toml",
    }
    paths["sections"].write_text(json.dumps(_SECTIONS), encoding="utf-8")
    paths["commands"].write_text(json.dumps(_COMMANDS), encoding="utf-8")
    paths["state"].write_text(json.dumps(_STATE), encoding="utf-8")
    return paths


def _doc_args(documents: dict[str, Path]) -> list[str]:
    return [
        "--config",
        str(documents["config"]),
        "--sections",
        str(documents["sections"]),
        "--commands",
        str(documents["commands"]),
        "--state",
        str(documents["state"]),
    ]


def test_cli_help_includes_public_flags() -> None:
    help_text = cli.build_parser().format_help()

    for flag in (
        "--config",
        "--sections",
        "--commands",
        "--state",
        "--show-test-sections",
        "--run",
        "--log-level",
        "--log-file",
    ):
        assert flag in help_text


def test_invalid_log_level_returns_invalid_args(isolated_home: Path) -> None:
    stream = io.StringIO()
    with redirect_stderr(stream):
        code = cli.main(["--log-level", "trace"])

    assert code == int(ExitCode.INVALID_ARGS)
    assert "--log-level must be one of" in stream.getvalue()


def test_missing_documents_report_invalid_args(isolated_home: Path) -> None:
    stream = io.StringIO()
    with redirect_stderr(stream):
        code = cli.main(["--config", str(isolated_home / "absent.toml")])

    assert code == int(ExitCode.INVALID_ARGS)
    assert "Missing --sections document" in stream.getvalue()
    assert "Next step" in stream.getvalue()


def test_listing_prints_generated_entries_as_json_lines(documents: dict[str, Path]) -> None:
    out = io.StringIO()

    code = cli.main(_doc_args(documents), out=out)

    assert code == int(ExitCode.SUCCESS)
    lines = [json.loads(line) for line in out.getvalue().splitlines()]
    assert lines[0] == {
        "type": "command",
        "sectionId": "api",
        "command": "uvicorn app:api --port 8000",
        "commandDefinitionId": 0,
        "tabTitle": "API",
        "isSubSectionCommand": False,
        "associatedContainers": ["db"],
        "refreshConfig": None,
    }
    assert lines[1] == {
        "type": "error",
        "sectionId": "worker",
        "title": "Worker",
        "message": "No suitable command found for the current configuration.",
    }


def test_document_paths_can_come_from_config_file(documents: dict[str, Path]) -> None:
    save_config(
        AppConfig(
            sections_file=str(documents["sections"]),
            commands_file=str(documents["commands"]),
            state_file=str(documents["state"]),
        ),
        documents["config"],
    )
    out = io.StringIO()

    code = cli.main(["--config", str(documents["config"])], out=out)

    assert code == int(ExitCode.SUCCESS)
    assert len(out.getvalue().splitlines()) == 2


def test_invalid_catalogue_maps_to_config_error(documents: dict[str, Path]) -> None:
    documents["commands"].write_text(json.dumps([{"sectionId": "api"}]), encoding="utf-8")
    stream = io.StringIO()

    with redirect_stderr(stream):
        code = cli.main(_doc_args(documents), out=io.StringIO())

    assert code == int(ExitCode.CONFIG_ERROR)
    assert "Invalid command catalogue document" in stream.getvalue()


def test_unexpected_errors_map_to_runtime_error(
    documents: dict[str, Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def explode(*_args: object, **_kwargs: object) -> list[object]:
        raise RuntimeError("boom")

    monkeypatch.setattr(cli, "generate_command_list", explode)
    stream = io.StringIO()

    with redirect_stderr(stream):
        code = cli.main(_doc_args(documents), out=io.StringIO())

    assert code == int(ExitCode.RUNTIME_ERROR)
    assert "Unexpected runtime failure" in stream.getvalue()


def test_log_file_flag_writes_debug_log(documents: dict[str, Path]) -> None:
    log_file = documents["config"].parent / "logs" / "run.log"

    code = cli.main([*_doc_args(documents), "--log-file", str(log_file)], out=io.StringIO())

    assert code == int(ExitCode.SUCCESS)
    assert "Starting CLI flow" in log_file.read_text(encoding="utf-8")
