"""Docker CLI implementation of the container runtime collaborator."""

from __future__ import annotations

import logging as py_logging
import subprocess
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Protocol

logger = py_logging.getLogger(__name__)

SubprocessRunner = Callable[..., subprocess.CompletedProcess]

STOP_TIMEOUT_SECONDS = 30.0
INSPECT_TIMEOUT_SECONDS = 5.0
_MAX_PARALLEL_STOPS = 8


@dataclass(frozen=True)
class ContainerStopResult:
    container_name: str
    success: bool
    error: str = ""
    stdout: str = ""
    stderr: str = ""


@dataclass
class ContainerStopReport:
    success: bool
    results: list[ContainerStopResult] = field(default_factory=list)
    error: str = ""

    @property
    def summary(self) -> dict[str, int]:
        successful = sum(1 for item in self.results if item.success)
        return {
            "total": len(self.results),
            "successful": successful,
            "failed": len(self.results) - successful,
        }

    @property
    def failed(self) -> list[ContainerStopResult]:
        return [item for item in self.results if not item.success]


class ContainerRuntime(Protocol):
    def stop_containers(self, names: Sequence[str]) -> ContainerStopReport: ...

    def get_container_status(self, name: str) -> str: ...


class DockerRuntime:
    def __init__(
        self,
        *,
        runner: SubprocessRunner = subprocess.run,
        docker_binary: str = "docker",
        stop_timeout_seconds: float = STOP_TIMEOUT_SECONDS,
    ) -> None:
        self._runner = runner
        self.docker_binary = docker_binary
        self.stop_timeout_seconds = stop_timeout_seconds

    def stop_containers(self, names: Sequence[str]) -> ContainerStopReport:
        targets = [name for name in names if isinstance(name, str) and name]
        logger.debug("Attempting to stop containers: %s", targets)
        if not targets:
            return ContainerStopReport(success=False, error="No containers specified to stop")

        workers = max(1, min(_MAX_PARALLEL_STOPS, len(targets)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="docker-stop") as pool:
            results = list(pool.map(self._stop_one_safely, targets))

        report = ContainerStopReport(success=all(item.success for item in results), results=results)
        if not report.success:
            logger.warning(
                "Some containers failed to stop failed=%s",
                [item.container_name for item in report.failed],
            )
        return report

    def stop_container(self, name: str) -> ContainerStopResult:
        cmd = [self.docker_binary, "stop", name]
        logger.debug("Running docker stop command=%s", cmd)
        try:
            result = self._runner(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.stop_timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            logger.error("docker stop timed out container=%s", name)
            return ContainerStopResult(container_name=name, success=False, error="Command timed out.")
        stdout = (result.stdout or "").strip()
        stderr = (result.stderr or "").strip()
        if result.returncode != 0:
            logger.error("docker stop failed container=%s stderr=%s", name, stderr)
            return ContainerStopResult(
                container_name=name,
                success=False,
                error=stderr or f"docker stop exited with {result.returncode}",
                stdout=stdout,
                stderr=stderr,
            )
        logger.debug("Stopped container %s", name)
        return ContainerStopResult(container_name=name, success=True, stdout=stdout, stderr=stderr)

    def get_container_status(self, name: str) -> str:
        if not name:
            return "unknown"
        cmd = [self.docker_binary, "inspect", "--format", "{{.State.Status}}", name]
        try:
            result = self._runner(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=INSPECT_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Failed to get status for container %s: %s", name, exc)
            return "unknown"
        if result.returncode != 0:
            logger.warning("Failed to get status for container %s: %s", name, (result.stderr or "").strip())
            return "unknown"
        return (result.stdout or "").strip() or "unknown"

    def is_docker_available(self) -> bool:
        try:
            result = self._runner(
                [self.docker_binary, "--version"],
                capture_output=True,
                text=True,
                check=False,
                timeout=INSPECT_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("Docker not available: %s", exc)
            return False
        return result.returncode == 0

    def _stop_one_safely(self, name: str) -> ContainerStopResult:
        try:
            return self.stop_container(name)
        except Exception as exc:
            logger.error("Error stopping container %s: %s", name, exc)
            return ContainerStopResult(container_name=name, success=False, error=str(exc) or type(exc).__name__)
