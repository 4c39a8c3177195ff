from __future__ import annotations

import pytest

from stackrunner.errors import ExitCode, StackRunnerError
from stackrunner.terminal import TerminalRegistry


def test_write_routes_to_registered_writer() -> None:
    registry = TerminalRegistry()
    received: list[str] = []
    registry.register_writer("t1", received.append)

    assert registry.write("t1", "hello") is True
    assert registry.write("t2", "dropped") is False
    assert received == ["hello"]


def test_unregister_and_clear_writers() -> None:
    registry = TerminalRegistry()
    registry.register_writer("t1", lambda _data: None)
    registry.register_writer("t2", lambda _data: None)

    registry.unregister_writer("t1")
    registry.unregister_writer("missing")
    assert not registry.has_writer("t1")
    assert registry.has_writer("t2")

    registry.clear_writers()
    assert not registry.has_writer("t2")


def test_run_in_terminal_requires_bound_runner() -> None:
    registry = TerminalRegistry()

    with pytest.raises(StackRunnerError) as exc:
        registry.run_in_terminal("ls")

    assert exc.value.code == ExitCode.RUNTIME_ERROR


def test_run_in_terminal_defaults_title_to_command() -> None:
    registry = TerminalRegistry()
    calls: list[tuple[str, str]] = []

    def runner(command: str, title: str) -> str:
        calls.append((command, title))
        return "term-9"

    registry.bind_runner(runner)

    assert registry.run_in_terminal("ls -la") == "term-9"
    assert registry.run_in_terminal("ls", "Listing") == "term-9"
    assert calls == [("ls -la", "ls -la"), ("ls", "Listing")]

    registry.bind_runner(None)
    with pytest.raises(StackRunnerError):
        registry.run_in_terminal("ls")
