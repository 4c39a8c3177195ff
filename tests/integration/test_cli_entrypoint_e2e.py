from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest


def _env_with_pythonpath(home: Path) -> dict[str, str]:
    env = dict(os.environ)
    existing = env.get("PYTHONPATH", "")
    src_path = str(Path("src").resolve())
    env["PYTHONPATH"] = f"{src_path}{os.pathsep}{existing}" if existing else src_path
    env["HOME"] = str(home)
    env.pop("STACKRUNNER_LOG_LEVEL", None)
    return env


def _write_documents(root: Path, commands: list[dict], state: dict) -> list[str]:
    sections = root / "sections.json"
    catalogue = root / "commands.json"
    state_file = root / "state.json"
    sections.write_text(json.dumps([{"id": "greeter", "title": "Greeter"}, {"id": "failer"}]), encoding="utf-8")
    catalogue.write_text(json.dumps(commands), encoding="utf-8")
    state_file.write_text(json.dumps(state), encoding="utf-8")
    return [
        "--config",
        str(root / "config.toml"),
        "--sections",
        str(sections),
        "--commands",
        str(catalogue),
        "--state",
        str(state_file),
        "--log-file",
        str(root / "stackrunner.log"),
    ]


def test_cli_module_reports_invalid_args_via_exit_code(tmp_path: Path) -> None:
    completed = subprocess.run(
        [sys.executable, "-m", "stackrunner", "--log-level", "loud", "--log-file", str(tmp_path / "sr.log")],
        capture_output=True,
        text=True,
        check=False,
        env=_env_with_pythonpath(tmp_path),
    )

    assert completed.returncode == 2
    assert "--log-level must be one of" in completed.stderr


def test_cli_module_lists_commands(tmp_path: Path) -> None:
    args = _write_documents(
        tmp_path,
        [{"sectionId": "greeter", "conditions": {"enabled": True}, "command": {"base": "echo ${greeting}"}}],
        {"config": {"greeter": {"enabled": True, "greeting": "hi"}}},
    )

    completed = subprocess.run(
        [sys.executable, "-m", "stackrunner", *args],
        capture_output=True,
        text=True,
        check=False,
        env=_env_with_pythonpath(tmp_path),
    )

    assert completed.returncode == 0, completed.stderr
    entries = [json.loads(line) for line in completed.stdout.splitlines()]
    assert [entry["command"] for entry in entries] == ["echo hi"]


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX pty backend")
def test_cli_module_runs_terminals_and_streams_output(tmp_path: Path) -> None:
    args = _write_documents(
        tmp_path,
        [
            {
                "sectionId": "greeter",
                "conditions": {"enabled": True},
                "command": {"base": "echo hello-from-pty", "tabTitle": "Greeter"},
            }
        ],
        {"config": {"greeter": {"enabled": True}}},
    )

    completed = subprocess.run(
        [sys.executable, "-m", "stackrunner", *args, "--run"],
        capture_output=True,
        text=True,
        check=False,
        timeout=60,
        env=_env_with_pythonpath(tmp_path),
    )

    assert completed.returncode == 0, completed.stderr
    assert "[Greeter] hello-from-pty" in completed.stdout
    assert "[Greeter] Process exited with code 0" in completed.stdout


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX pty backend")
def test_cli_module_run_exits_non_zero_when_a_terminal_fails(tmp_path: Path) -> None:
    args = _write_documents(
        tmp_path,
        [
            {
                "sectionId": "failer",
                "conditions": {"enabled": True},
                "command": {"base": "exit 3", "tabTitle": "Failer"},
            }
        ],
        {"config": {"failer": {"enabled": True}}},
    )

    completed = subprocess.run(
        [sys.executable, "-m", "stackrunner", *args, "--run"],
        capture_output=True,
        text=True,
        check=False,
        timeout=60,
        env=_env_with_pythonpath(tmp_path),
    )

    assert completed.returncode == 5
    assert "[Failer] Process exited with code 3" in completed.stdout
