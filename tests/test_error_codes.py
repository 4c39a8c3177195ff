from __future__ import annotations

from stackrunner.errors import ExitCode, StackRunnerError, user_facing_error
from stackrunner.logging import LOG_LEVELS, configure_logging


def test_exit_codes_are_deterministic() -> None:
    assert int(ExitCode.SUCCESS) == 0
    assert int(ExitCode.INVALID_ARGS) == 2
    assert int(ExitCode.CONFIG_ERROR) == 3
    assert int(ExitCode.RUNTIME_ERROR) == 4
    assert int(ExitCode.PROCESS_ERROR) == 5
    assert int(ExitCode.CONTAINER_ERROR) == 6
    assert int(ExitCode.VALIDATION_ERROR) == 7


def test_stackrunner_error_string_contains_hint() -> None:
    err = StackRunnerError("docker not found", code=ExitCode.CONTAINER_ERROR, hint="Install docker")

    assert str(err) == "docker not found Hint: Install docker"
    assert str(StackRunnerError("plain")) == "plain"
    assert StackRunnerError("plain").code == ExitCode.RUNTIME_ERROR


def test_user_facing_error_template() -> None:
    assert user_facing_error("Missing --state document", hint="Pass --state") == (
        "Error: Missing --state document. Next step: Pass --state"
    )
    assert user_facing_error("Boom") == "Error: Boom."


def test_logging_levels(monkeypatch) -> None:
    monkeypatch.delenv("STACKRUNNER_LOG_LEVEL", raising=False)

    logger = configure_logging("WARN")

    assert logger.level == LOG_LEVELS["WARN"]
