from __future__ import annotations

import logging as py_logging
from collections.abc import Iterator
from pathlib import Path

import pytest

_SECURITY_TEST_FILES = {
    "test_expression.py",
    "test_expression_properties.py",
}


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    del config
    for item in items:
        path = Path(str(getattr(item, "path", item.fspath)))
        name = path.name

        if "integration" in path.parts:
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)

        if name in _SECURITY_TEST_FILES:
            item.add_marker(pytest.mark.security)


@pytest.fixture(autouse=True)
def _reset_stackrunner_logger() -> Iterator[None]:
    # configure_logging() detaches the package logger from root; caplog needs it attached.
    yield
    logger = py_logging.getLogger("stackrunner")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(py_logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("STACKRUNNER_LOG_LEVEL", raising=False)
    return tmp_path
