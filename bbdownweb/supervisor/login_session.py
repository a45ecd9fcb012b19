"""Single-occupant slot for the interactive QR-code login process."""

from __future__ import annotations

import base64
import logging
import threading
import time
from pathlib import Path
from typing import Callable

from bbdownweb.supervisor.errors import ClosedHandleError, SupervisorIOError
from bbdownweb.supervisor.process_handle import ProcessHandle, spawn_process

logger = logging.getLogger("bbdownweb.supervisor.login_session")

NO_PROCESS_SENTINEL = "process not exists"
PROGRESS_FILLER = "█"
ARTIFACT_POLL_INTERVAL_SECONDS = 0.1


class LoginSession:
    """Holds at most one login process; a new start replaces the old one.

    Every start bumps a generation counter and schedules an expiry timer bound
    to that generation. The timer only closes the handle when the slot still
    belongs to its generation, so a late timer can never kill a newer login.
    """

    def __init__(
        self,
        executable: str,
        args: list[str],
        artifact_path: Path,
        *,
        cwd: Path | None = None,
        ttl_seconds: float = 60.0,
        artifact_timeout: float = 3.0,
        poll_interval: float = ARTIFACT_POLL_INTERVAL_SECONDS,
        spawn: Callable[..., ProcessHandle] = spawn_process,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        self.executable = executable
        self.args = list(args)
        self.artifact_path = Path(artifact_path)
        self.cwd = cwd
        self.ttl_seconds = ttl_seconds
        self.artifact_timeout = artifact_timeout
        self.poll_interval = poll_interval
        self._spawn = spawn
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._handle: ProcessHandle | None = None
        self._timer: threading.Timer | None = None
        self._generation = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._handle is not None

    @property
    def handle(self) -> ProcessHandle | None:
        with self._lock:
            return self._handle

    def start(self) -> str:
        """Replace any running login, then return the QR artifact as base64 text."""
        with self._lock:
            self._release_locked()
            try:
                self.artifact_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Unable to remove stale artifact %s: %s", self.artifact_path, exc)
            handle = self._spawn(self.executable, self.args, cwd=self.cwd, label="login")
            self._generation += 1
            generation = self._generation
            self._handle = handle
            handle.start_waiter()
            timer = self._timer_factory(self.ttl_seconds, self._expire, args=(generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()
        logger.info("Login session %d started", generation)
        return base64.b64encode(self._wait_for_artifact()).decode("ascii")

    def log(self) -> str:
        """Return the current login output, or the sentinel when no login runs."""
        handle = self.handle
        if handle is None:
            return NO_PROCESS_SENTINEL
        try:
            data = handle.tail()
        except ClosedHandleError:
            return NO_PROCESS_SENTINEL
        text = data.decode("utf-8").replace(PROGRESS_FILLER, "")
        description = handle.terminal_description()
        if description is not None:
            text = f"{text}\n{description}"
        return text

    def close(self) -> None:
        with self._lock:
            self._release_locked()

    def _expire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._handle is None:
                return
            logger.info("Login session %d expired after %.0fs", generation, self.ttl_seconds)
            self._release_locked()

    def _release_locked(self) -> None:
        timer, handle = self._timer, self._handle
        self._timer = None
        self._handle = None
        if timer is not None:
            timer.cancel()
        if handle is not None:
            handle.close()

    def _wait_for_artifact(self) -> bytes:
        deadline = time.monotonic() + self.artifact_timeout
        last_size = -1
        while True:
            try:
                size = self.artifact_path.stat().st_size
            except FileNotFoundError:
                size = -1
            except OSError as exc:
                raise SupervisorIOError(f"cannot stat {self.artifact_path}: {exc}") from exc
            if size > 0 and size == last_size:
                break
            last_size = size
            if time.monotonic() >= deadline:
                if size > 0:
                    break
                raise SupervisorIOError(f"login artifact {self.artifact_path} was not produced")
            time.sleep(self.poll_interval)
        try:
            return self.artifact_path.read_bytes()
        except OSError as exc:
            raise SupervisorIOError(f"cannot read {self.artifact_path}: {exc}") from exc
