"""PTY-backed process backend: one shell process per terminal id."""

from __future__ import annotations

import atexit
import codecs
import logging as py_logging
import os
import signal as py_signal
import subprocess
import sys
import threading
from collections.abc import Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Protocol

from stackrunner.errors import ExitCode, StackRunnerError
from stackrunner.terminal.registry import TerminalRegistry

logger = py_logging.getLogger(__name__)

PtySpawn = Callable[[list[str], str | None, dict[str, str] | None], object]

_READ_CHUNK = 4096
_KILL_SIGNAL = int(getattr(py_signal, "SIGKILL", 9))


class ProcessListener(Protocol):
    def on_process_started(self, terminal_id: str) -> None: ...

    def on_process_ended(self, terminal_id: str, exit_code: int | None, signal: int | None) -> None: ...


class ProcessBackend(Protocol):
    def spawn(self, command: str, terminal_id: str, cols: int, rows: int) -> None: ...

    def kill(self, terminal_id: str) -> bool: ...

    def input(self, terminal_id: str, data: str) -> None: ...

    def resize(self, terminal_id: str, cols: int, rows: int) -> None: ...


def build_shell_command(command: str, *, shell: str = "", platform: str = sys.platform) -> list[str]:
    if not command.strip():
        raise StackRunnerError(
            "Terminal command cannot be empty.",
            code=ExitCode.VALIDATION_ERROR,
            hint="Provide a command for the terminal.",
        )
    if platform == "win32":
        return [shell or os.environ.get("COMSPEC", "cmd.exe"), "/c", command]
    return [shell or os.environ.get("SHELL", "/bin/bash"), "-c", command]


class _PosixPtyProcess:
    """Minimal PTY process with the same surface the pywinpty process exposes."""

    def __init__(self, argv: list[str], cwd: str | None, env: dict[str, str] | None) -> None:
        import pty

        master_fd, slave_fd = pty.openpty()
        try:
            self._proc = subprocess.Popen(
                argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=env,
                start_new_session=True,
                close_fds=True,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)
        self._fd = master_fd
        self._closed = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pid(self) -> int:
        return self._proc.pid

    def read(self, size: int = _READ_CHUNK) -> str:
        while True:
            try:
                data = os.read(self._fd, size)
            except OSError:
                # EIO once the child side is gone.
                return ""
            if not data:
                return ""
            text = self._decoder.decode(data)
            if text:
                return text

    def write(self, payload: str) -> None:
        os.write(self._fd, payload.encode("utf-8"))

    def set_size(self, cols: int, rows: int) -> None:
        import fcntl
        import struct
        import termios

        fcntl.ioctl(self._fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))

    def isalive(self) -> bool:
        return self._proc.poll() is None

    def terminate(self) -> None:
        try:
            os.killpg(os.getpgid(self._proc.pid), _KILL_SIGNAL)
        except (ProcessLookupError, PermissionError, OSError):
            self._proc.kill()

    def wait(self) -> int:
        return self._proc.wait()

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            with suppress(OSError):
                os.close(self._fd)


def _spawn_with_posix_pty(command: list[str], cwd: str | None, env: dict[str, str] | None) -> object:
    return _PosixPtyProcess(command, cwd, env)


def _spawn_with_pywinpty(command: list[str], cwd: str | None, env: dict[str, str] | None) -> object:
    try:
        from winpty import PtyProcess
    except Exception as exc:
        raise StackRunnerError(
            "pywinpty backend is unavailable.",
            code=ExitCode.PROCESS_ERROR,
            hint="Install the pywinpty dependency on Windows.",
        ) from exc

    kwargs: dict[str, object] = {}
    if cwd:
        kwargs["cwd"] = cwd
    if env:
        kwargs["env"] = env
    return PtyProcess.spawn(subprocess.list2cmdline(command), **kwargs)


def default_spawn() -> PtySpawn:
    return _spawn_with_pywinpty if sys.platform == "win32" else _spawn_with_posix_pty


@dataclass
class _Session:
    terminal_id: str
    process: object | None
    killed: bool = False
    reader: threading.Thread | None = field(default=None, repr=False)


class PtyBackend:
    def __init__(
        self,
        spawn: PtySpawn | None = None,
        *,
        registry: TerminalRegistry | None = None,
        shell: str = "",
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self._spawn = spawn or default_spawn()
        self._registry = registry
        self._shell = shell
        self._cwd = cwd
        self._env = env
        self._sessions: dict[str, _Session] = {}
        self._readers: list[threading.Thread] = []
        self._listeners: list[ProcessListener] = []
        self._lock = threading.Lock()
        atexit.register(self.kill_all)

    def subscribe(self, listener: ProcessListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def spawn(self, command: str, terminal_id: str, cols: int = 80, rows: int = 24) -> None:
        argv = build_shell_command(command, shell=self._shell)
        env = {**os.environ, **(self._env or {}), "LANG": "en_US.UTF-8", "TERM": "xterm-256color"}
        session = _Session(terminal_id=terminal_id, process=None)
        with self._lock:
            if terminal_id in self._sessions:
                raise StackRunnerError(
                    f"Terminal already has a process: {terminal_id}",
                    code=ExitCode.VALIDATION_ERROR,
                    hint="Kill the current process before spawning a new one.",
                )
            # Reserve the id so a concurrent spawn for it is rejected.
            self._sessions[terminal_id] = session

        try:
            process = self._spawn(argv, self._cwd, env)
        except StackRunnerError:
            self._release(session)
            raise
        except Exception as exc:
            self._release(session)
            raise StackRunnerError(
                f"Failed to start process for terminal {terminal_id}.",
                code=ExitCode.PROCESS_ERROR,
                hint=str(exc) or "Check the shell installation.",
            ) from exc

        with suppress(Exception):
            _set_size(process, cols, rows)

        with self._lock:
            session.process = process
            cancelled = session.killed
        if cancelled:
            logger.info("Terminal killed while spawning terminal=%s", terminal_id)
            _terminate(process)
            with suppress(Exception):
                process.close()
            return
        logger.info("Spawned process terminal=%s command=%s", terminal_id, command)
        self._notify_started(terminal_id)

        reader = threading.Thread(
            target=self._pump,
            args=(session,),
            name=f"pty-reader-{terminal_id}",
            daemon=True,
        )
        session.reader = reader
        with self._lock:
            self._readers = [item for item in self._readers if item.is_alive()]
            self._readers.append(reader)
        reader.start()

    def input(self, terminal_id: str, data: str) -> None:
        session = self._require_session(terminal_id)
        try:
            session.process.write(data)
        except Exception as exc:
            raise StackRunnerError(
                f"Failed to write to terminal {terminal_id}.",
                code=ExitCode.PROCESS_ERROR,
                hint=str(exc) or "Verify terminal process health.",
            ) from exc

    def interrupt(self, terminal_id: str) -> None:
        # Ctrl+C passthrough for interactive commands.
        self.input(terminal_id, "\x03")

    def resize(self, terminal_id: str, cols: int, rows: int) -> None:
        if cols <= 0 or rows <= 0:
            raise StackRunnerError(
                f"Invalid PTY size: {cols}x{rows}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Use positive terminal row/column values.",
            )
        session = self._require_session(terminal_id)
        try:
            _set_size(session.process, cols, rows)
        except Exception as exc:
            raise StackRunnerError(
                f"Failed to resize terminal {terminal_id}.",
                code=ExitCode.PROCESS_ERROR,
                hint=str(exc) or "Verify PTY backend supports resizing.",
            ) from exc

    def kill(self, terminal_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(terminal_id, None)
            process = None
            if session is not None:
                session.killed = True
                process = session.process
        if session is None:
            logger.info("No active process to kill terminal=%s", terminal_id)
            return False
        logger.info("Killing process terminal=%s", terminal_id)
        # A session still spawning has no process yet; spawn() terminates it.
        if process is not None:
            _terminate(process)
        return True

    def kill_all(self) -> int:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            for session in sessions:
                session.killed = True
            processes = [session.process for session in sessions if session.process is not None]
        for process in processes:
            _terminate(process)
        if sessions:
            logger.info("Killed %s PTY processes during cleanup", len(sessions))
        return len(sessions)

    def is_running(self, terminal_id: str) -> bool:
        with self._lock:
            return terminal_id in self._sessions

    def active_terminal_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for every live reader thread; True when all finished."""
        with self._lock:
            readers = list(self._readers)
        for reader in readers:
            reader.join(timeout)
        with self._lock:
            self._readers = [reader for reader in self._readers if reader.is_alive()]
        return not any(reader.is_alive() for reader in readers)

    def _release(self, session: _Session) -> None:
        with self._lock:
            if self._sessions.get(session.terminal_id) is session:
                del self._sessions[session.terminal_id]

    def _require_session(self, terminal_id: str) -> _Session:
        with self._lock:
            session = self._sessions.get(terminal_id)
        if session is None or session.process is None:
            raise StackRunnerError(
                f"Terminal not running: {terminal_id}",
                code=ExitCode.VALIDATION_ERROR,
                hint="Start the terminal before sending input.",
            )
        return session

    def _pump(self, session: _Session) -> None:
        process = session.process
        try:
            while True:
                try:
                    chunk = process.read(_READ_CHUNK)
                except EOFError:
                    break
                except Exception:
                    logger.debug("Read failed terminal=%s", session.terminal_id, exc_info=True)
                    break
                if not chunk:
                    break
                if isinstance(chunk, bytes):
                    chunk = chunk.decode("utf-8", errors="replace")
                self._emit_output(session.terminal_id, chunk)
        finally:
            exit_code, signal = _exit_info(process, killed=session.killed)
            with suppress(Exception):
                process.close()
            with self._lock:
                current = self._sessions.get(session.terminal_id)
                if current is session:
                    del self._sessions[session.terminal_id]
            if current is not None and current is not session:
                # A respawn already owns this terminal id.
                logger.debug("Suppressing stale exit terminal=%s", session.terminal_id)
                return
            suffix = f", signal {signal}" if signal else ""
            code_text = "unknown" if exit_code is None else str(exit_code)
            self._emit_output(session.terminal_id, f"\r\nProcess exited with code {code_text}{suffix}\r\n")
            logger.info(
                "Process ended terminal=%s exit_code=%s signal=%s",
                session.terminal_id,
                exit_code,
                signal,
            )
            self._notify_ended(session.terminal_id, exit_code, signal)

    def _emit_output(self, terminal_id: str, data: str) -> None:
        if self._registry is None:
            return
        try:
            self._registry.write(terminal_id, data)
        except Exception:
            logger.exception("Terminal writer failed terminal=%s", terminal_id)

    def _notify_started(self, terminal_id: str) -> None:
        for listener in self._snapshot_listeners():
            try:
                listener.on_process_started(terminal_id)
            except Exception:
                logger.exception("Process-started listener failed terminal=%s", terminal_id)

    def _notify_ended(self, terminal_id: str, exit_code: int | None, signal: int | None) -> None:
        for listener in self._snapshot_listeners():
            try:
                listener.on_process_ended(terminal_id, exit_code, signal)
            except Exception:
                logger.exception("Process-ended listener failed terminal=%s", terminal_id)

    def _snapshot_listeners(self) -> list[ProcessListener]:
        with self._lock:
            return list(self._listeners)


def _set_size(process: object, cols: int, rows: int) -> None:
    if hasattr(process, "setwinsize"):
        process.setwinsize(rows, cols)
    elif hasattr(process, "set_size"):
        process.set_size(cols, rows)


def _is_alive(process: object) -> bool:
    if hasattr(process, "isalive"):
        try:
            return bool(process.isalive())
        except Exception:
            return True
    return True


def _terminate(process: object) -> None:
    if not _is_alive(process):
        return
    if hasattr(process, "terminate"):
        try:
            process.terminate(True)
        except TypeError:
            with suppress(Exception):
                process.terminate()
        except Exception:
            logger.debug("terminate() failed", exc_info=True)
    elif hasattr(process, "kill"):
        with suppress(Exception):
            process.kill()


def _exit_info(process: object, *, killed: bool) -> tuple[int | None, int | None]:
    code: int | None = None
    if hasattr(process, "wait"):
        with suppress(Exception):
            code = process.wait()
    if code is None:
        raw = getattr(process, "exitstatus", None)
        code = raw if isinstance(raw, int) else None
    if code is not None and code < 0:
        return None, -code
    if killed:
        return code, _KILL_SIGNAL
    return code, None
