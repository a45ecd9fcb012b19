"""Service configuration: defaults, optional JSON file, environment, CLI flags."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping

from platformdirs import user_config_dir

from bbdownweb.supervisor.log_tail import TAIL_WINDOW_BYTES

CONFIG_PATH = Path(user_config_dir("bbdown-web")) / "config.json"
DEFAULT_ADDR = ":9280"
DEFAULT_ENCODING_PRIORITY = "hevc,av1,avc"
DEFAULT_LOGIN_TTL_SECONDS = 60.0
DEFAULT_ARTIFACT_TIMEOUT_SECONDS = 3.0
LOGIN_ARTIFACT_NAME = "qrcode.png"

ENV_OVERRIDES = {
    "AUTH_USER": "auth_user",
    "AUTH_PWD": "auth_password",
    "BBDOWN_WEB_ADDR": "addr",
    "BBDOWN_WEB_BBDOWN": "bbdown",
    "BBDOWN_WEB_DOWNLOAD": "download_dir",
}


@dataclass(frozen=True)
class ServiceSettings:
    host: str
    port: int
    bbdown: str
    download_dir: str
    auth_user: str = ""
    auth_password: str = ""
    encoding_priority: str = DEFAULT_ENCODING_PRIORITY
    delay_per_page: int = 5
    login_ttl_seconds: float = DEFAULT_LOGIN_TTL_SECONDS
    login_workdir: str = "."
    login_artifact: str = LOGIN_ARTIFACT_NAME
    artifact_timeout_seconds: float = DEFAULT_ARTIFACT_TIMEOUT_SECONDS
    tail_window_bytes: int = TAIL_WINDOW_BYTES

    @property
    def addr(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def artifact_path(self) -> Path:
        return Path(self.login_workdir) / self.login_artifact

    @property
    def has_credentials(self) -> bool:
        return bool(self.auth_user) and bool(self.auth_password)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload.pop("auth_password", None)
        return payload


def resolve_default_bbdown(cwd: Path | None = None) -> str:
    """Prefer a BBDown binary next to the working directory, else rely on PATH."""
    base = cwd or Path.cwd()
    if (base / "BBDown").exists():
        return "./BBDown"
    return "BBDown"


def parse_listen_address(addr: str) -> tuple[str, int]:
    """Split ``host:port``; an empty host listens on every interface."""
    raw = str(addr).strip()
    if ":" not in raw:
        raise ValueError(f"listen address must be host:port, got {raw!r}")
    host, _, port_str = raw.rpartition(":")
    host = host.strip("[]") or "0.0.0.0"
    try:
        port = int(port_str)
    except ValueError as exc:
        raise ValueError(f"invalid port in listen address: {raw!r}") from exc
    if not 0 < port < 65536:
        raise ValueError(f"port out of range: {port}")
    return host, port


def default_settings() -> dict[str, Any]:
    return {
        "addr": DEFAULT_ADDR,
        "bbdown": resolve_default_bbdown(),
        "download_dir": "./",
        "auth_user": "",
        "auth_password": "",
        "encoding_priority": DEFAULT_ENCODING_PRIORITY,
        "delay_per_page": 5,
        "login_ttl_seconds": DEFAULT_LOGIN_TTL_SECONDS,
        "login_workdir": ".",
        "login_artifact": LOGIN_ARTIFACT_NAME,
        "artifact_timeout_seconds": DEFAULT_ARTIFACT_TIMEOUT_SECONDS,
        "tail_window_bytes": TAIL_WINDOW_BYTES,
    }


def validate_settings(raw: Mapping[str, Any]) -> ServiceSettings:
    """Validate merged configuration values and build immutable settings."""
    if not isinstance(raw, Mapping):
        raise ValueError("settings must be object")
    host, port = parse_listen_address(raw.get("addr", DEFAULT_ADDR))
    bbdown = str(raw.get("bbdown", "")).strip()
    if not bbdown:
        raise ValueError("bbdown path must not be empty")
    download_dir = str(raw.get("download_dir", "./")).strip() or "./"
    try:
        delay_per_page = int(raw.get("delay_per_page", 5))
        login_ttl = float(raw.get("login_ttl_seconds", DEFAULT_LOGIN_TTL_SECONDS))
        artifact_timeout = float(raw.get("artifact_timeout_seconds", DEFAULT_ARTIFACT_TIMEOUT_SECONDS))
        tail_window = int(raw.get("tail_window_bytes", TAIL_WINDOW_BYTES))
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid numeric setting: {exc}") from exc
    if delay_per_page < 0:
        raise ValueError("delay_per_page must be >= 0")
    if login_ttl <= 0:
        raise ValueError("login_ttl_seconds must be positive")
    if artifact_timeout < 0:
        raise ValueError("artifact_timeout_seconds must be >= 0")
    if tail_window <= 0:
        raise ValueError("tail_window_bytes must be positive")
    login_artifact = str(raw.get("login_artifact", LOGIN_ARTIFACT_NAME)).strip() or LOGIN_ARTIFACT_NAME
    return ServiceSettings(
        host=host,
        port=port,
        bbdown=bbdown,
        download_dir=download_dir,
        auth_user=str(raw.get("auth_user", "") or ""),
        auth_password=str(raw.get("auth_password", "") or ""),
        encoding_priority=str(raw.get("encoding_priority", DEFAULT_ENCODING_PRIORITY)).strip()
        or DEFAULT_ENCODING_PRIORITY,
        delay_per_page=delay_per_page,
        login_ttl_seconds=login_ttl,
        login_workdir=str(raw.get("login_workdir", ".")).strip() or ".",
        login_artifact=login_artifact,
        artifact_timeout_seconds=artifact_timeout,
        tail_window_bytes=tail_window,
    )


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        return {}
    if not isinstance(raw, dict):
        return {}
    return raw


def load_settings(
    path: Path = CONFIG_PATH,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ServiceSettings:
    """Merge defaults, config file, environment and explicit overrides, in that order."""
    merged = default_settings()
    merged.update(_read_config_file(path))
    env = os.environ if environ is None else environ
    for env_name, key in ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value:
            merged[key] = value
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = value
    return validate_settings(merged)
