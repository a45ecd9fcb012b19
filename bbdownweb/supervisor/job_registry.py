"""In-memory registry of download jobs keyed by the submitted URL."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable
from urllib.parse import quote_plus

from bbdownweb.supervisor.alerts import AlertQueue
from bbdownweb.supervisor.errors import ClosedHandleError, SpawnError
from bbdownweb.supervisor.process_handle import ProcessHandle, spawn_process

logger = logging.getLogger("bbdownweb.supervisor.job_registry")

STATE_RUNNING = "running"

SpawnFn = Callable[..., ProcessHandle]


@dataclass
class Job:
    """A submission and the process downloading it."""

    key: str
    process: ProcessHandle
    started_at: float = field(default_factory=time.time)
    sequence: int = 0

    @property
    def quoted_key(self) -> str:
        return quote_plus(self.key)

    @property
    def state(self) -> str:
        return self.process.terminal_description() or STATE_RUNNING


@dataclass(frozen=True)
class JobView:
    """Point-in-time listing row for one job."""

    key: str
    quoted_key: str
    started_at: float
    elapsed_seconds: float
    state: str
    job: Job

    @property
    def elapsed_display(self) -> str:
        return format_duration(self.elapsed_seconds)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "started_at": self.started_at,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "elapsed": self.elapsed_display,
            "state": self.state,
        }


def format_duration(seconds: float) -> str:
    """Format like ``1h2m3s`` / ``4m5s`` / ``6.2s``."""
    seconds = max(0.0, seconds)
    if seconds < 60:
        return f"{seconds:.1f}s"
    whole = int(seconds)
    hours, rem = divmod(whole, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    return f"{minutes}m{secs}s"


class JobRegistry:
    """Deduplicating job map; one lock guards every map operation."""

    def __init__(
        self,
        executable: str,
        build_args: Callable[[str], list[str]],
        alerts: AlertQueue | None = None,
        *,
        spawn: SpawnFn = spawn_process,
        clock: Callable[[], float] = time.time,
        tail_window: int | None = None,
    ) -> None:
        self.executable = executable
        self.build_args = build_args
        self.alerts = alerts if alerts is not None else AlertQueue()
        self._spawn = spawn
        self._clock = clock
        self._tail_window = tail_window
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._counter = 0

    def submit(self, key: str) -> Job | None:
        """Start a job for ``key`` unless one exists; failures become alerts."""
        with self._lock:
            existing = self._jobs.get(key)
            if existing is not None:
                self.alerts.push(f"url exists {key}")
                return existing
            kwargs: dict = {"label": key}
            if self._tail_window is not None:
                kwargs["tail_window"] = self._tail_window
            try:
                handle = self._spawn(self.executable, self.build_args(key), **kwargs)
            except SpawnError as exc:
                logger.warning("Failed to start job %s: %s", key, exc)
                self.alerts.push(f"url({key}) fails: {exc}")
                return None
            self._counter += 1
            job = Job(key=key, process=handle, started_at=self._clock(), sequence=self._counter)
            self._jobs[key] = job
            handle.start_waiter()
        logger.info("Add new job %s", key)
        return job

    def lookup(self, key: str) -> Job | None:
        with self._lock:
            return self._jobs.get(key)

    def delete(self, key: str) -> bool:
        """Remove ``key`` and reclaim its process; unknown keys are ignored."""
        with self._lock:
            job = self._jobs.pop(key, None)
        if job is None:
            return False
        job.process.close()
        logger.info("Deleted job %s", key)
        return True

    def snapshot(self) -> list[JobView]:
        """Return all jobs ordered by start time with derived state and elapsed time."""
        with self._lock:
            jobs = list(self._jobs.values())
        now = self._clock()
        views = [
            JobView(
                key=job.key,
                quoted_key=job.quoted_key,
                started_at=job.started_at,
                elapsed_seconds=now - job.started_at,
                state=job.state,
                job=job,
            )
            for job in jobs
        ]
        views.sort(key=lambda view: (view.started_at, view.job.sequence))
        return views

    def read_status(self, key: str) -> str | None:
        """Return the log tail of ``key`` plus exit status, or None when unknown."""
        job = self.lookup(key)
        if job is None:
            return None
        try:
            data = job.process.tail()
        except ClosedHandleError:
            return None
        text = data.decode("utf-8")
        description = job.process.terminal_description()
        if description is not None:
            text = f"{text}\n{description}"
        return text

    def close_all(self) -> int:
        """Remove and reclaim every job; returns how many were closed."""
        with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for job in jobs:
            job.process.close()
        if jobs:
            logger.info("Closed %d jobs", len(jobs))
        return len(jobs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
