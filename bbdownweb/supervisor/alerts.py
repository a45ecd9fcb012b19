"""Drain-once queue of transient notices shown on the next listing."""

from __future__ import annotations

import threading


class AlertQueue:
    """Lock-protected list of alert strings."""

    def __init__(self) -> None:
        self._alerts: list[str] = []
        self._lock = threading.Lock()

    def push(self, message: str) -> None:
        with self._lock:
            self._alerts.append(message)

    def drain(self) -> list[str]:
        """Return every alert pushed since the previous drain, oldest first."""
        with self._lock:
            alerts = self._alerts
            self._alerts = []
        return alerts

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)
