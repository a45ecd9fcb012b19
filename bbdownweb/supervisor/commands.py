"""Argument templates for the wrapped BBDown executable."""

from __future__ import annotations

from bbdownweb.supervisor.settings import ServiceSettings


def build_download_args(url: str, settings: ServiceSettings) -> list[str]:
    """Return BBDown arguments for one download; ``url`` is passed through untouched."""
    return [
        "--multi-thread",
        "--work-dir",
        settings.download_dir,
        "--encoding-priority",
        settings.encoding_priority,
        "--delay-per-page",
        str(settings.delay_per_page),
        url,
    ]


def build_login_args() -> list[str]:
    return ["login"]
