"""Owning wrapper around one external process and its captured output."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import IO, Callable

from bbdownweb.supervisor.errors import ClosedHandleError, SpawnError
from bbdownweb.supervisor.log_tail import TAIL_WINDOW_BYTES, read_tail

logger = logging.getLogger("bbdownweb.supervisor.process_handle")

CAPTURE_PREFIX = "bbdown-"


def describe_returncode(returncode: int) -> str:
    """Render a process return code the way a shell user expects to read it."""
    if returncode >= 0:
        return f"exit status {returncode}"
    signum = -returncode
    name = signal.strsignal(signum) if hasattr(signal, "strsignal") else None
    if not name:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
    return f"signal: {name.lower()}"


class ProcessHandle:
    """One running (or finished) process plus the file holding its output."""

    def __init__(
        self,
        process: subprocess.Popen,
        output: IO[bytes],
        *,
        label: str = "",
        tail_window: int = TAIL_WINDOW_BYTES,
    ) -> None:
        self.label = label or f"pid {process.pid}"
        self.tail_window = tail_window
        self.output_path = Path(output.name)
        self.pid = process.pid
        self._process: subprocess.Popen | None = process
        self._output: IO[bytes] | None = output
        self._lock = threading.Lock()
        self._returncode: int | None = None
        self._waiter: Future | None = None

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._process is None

    @property
    def returncode(self) -> int | None:
        with self._lock:
            process = self._process
        if process is None:
            return self._returncode
        code = process.poll()
        if code is not None:
            self._returncode = code
        return code

    def is_running(self) -> bool:
        with self._lock:
            if self._process is None:
                return False
        return self.returncode is None

    def terminal_description(self) -> str | None:
        """Return exit status text once the process has finished."""
        code = self.returncode
        if code is None:
            return None
        return describe_returncode(code)

    def tail(self) -> bytes:
        """Read the most recent output window without consuming it."""
        with self._lock:
            if self._output is None:
                raise ClosedHandleError()
            return read_tail(self._output.fileno(), self.tail_window)

    def start_waiter(self, on_exit: Callable[[int], None] | None = None) -> Future:
        """Observe process exit from a daemon thread; resolves with the return code."""
        with self._lock:
            if self._waiter is not None:
                return self._waiter
            process = self._process
            if process is None:
                raise ClosedHandleError()
            future: Future = Future()
            self._waiter = future

        def _wait() -> None:
            logger.info("%s started pid=%s output=%s", self.label, process.pid, self.output_path)
            try:
                code = process.wait()
            except Exception as exc:
                logger.error("%s wait failed: %s", self.label, exc)
                future.set_exception(exc)
                return
            self._returncode = code
            if code == 0:
                logger.info("%s finish output=%s", self.label, self.output_path)
            else:
                logger.info(
                    "%s fails %s output=%s", self.label, describe_returncode(code), self.output_path
                )
            if on_exit is not None:
                try:
                    on_exit(code)
                except Exception as exc:
                    logger.error("%s exit callback failed: %s", self.label, exc)
            future.set_result(code)

        thread = threading.Thread(target=_wait, name=f"waiter-{process.pid}", daemon=True)
        thread.start()
        return future

    def wait(self, timeout: float | None = None) -> int:
        """Block until the waiter observed exit (or the process is reaped directly)."""
        with self._lock:
            waiter = self._waiter
            process = self._process
        if waiter is not None:
            return waiter.result(timeout=timeout)
        if process is None:
            if self._returncode is None:
                raise ClosedHandleError()
            return self._returncode
        code = process.wait(timeout=timeout)
        self._returncode = code
        return code

    def close(self) -> None:
        """Kill, reap and discard the capture file; later calls do nothing."""
        with self._lock:
            process, output = self._process, self._output
            self._process = None
            self._output = None
        if process is None:
            return
        if process.poll() is None:
            try:
                process.kill()
            except OSError as exc:
                logger.debug("%s kill failed: %s", self.label, exc)
        try:
            self._returncode = process.wait()
        except Exception as exc:
            logger.debug("%s wait during close failed: %s", self.label, exc)
        if output is not None:
            output.close()
            try:
                os.unlink(output.name)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Unable to remove capture file %s: %s", output.name, exc)
        logger.info("%s closed", self.label)


def spawn_process(
    executable: str,
    args: list[str],
    *,
    cwd: str | Path | None = None,
    label: str = "",
    tail_window: int = TAIL_WINDOW_BYTES,
) -> ProcessHandle:
    """Start ``executable`` with stdout and stderr captured into one temp file."""
    try:
        output = tempfile.NamedTemporaryFile(mode="w+b", prefix=CAPTURE_PREFIX, delete=False)
    except OSError as exc:
        raise SpawnError(str(exc)) from exc
    command = [executable, *args]
    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=output,
            stderr=subprocess.STDOUT,
            cwd=str(cwd) if cwd is not None else None,
        )
    except (OSError, ValueError) as exc:
        output.close()
        try:
            os.unlink(output.name)
        except OSError:
            pass
        raise SpawnError(str(exc)) from exc
    logger.debug("Spawned %s pid=%s", " ".join(command), process.pid)
    return ProcessHandle(process, output, label=label or executable, tail_window=tail_window)
