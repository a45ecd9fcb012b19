"""FastAPI front end over the job registry and the login session."""

from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel

from bbdownweb.supervisor.alerts import AlertQueue
from bbdownweb.supervisor.commands import build_download_args, build_login_args
from bbdownweb.supervisor.errors import SpawnError, SupervisorIOError
from bbdownweb.supervisor.job_registry import JobRegistry
from bbdownweb.supervisor.login_session import LoginSession
from bbdownweb.supervisor.settings import ServiceSettings
from bbdownweb.web.pages import render_index, render_login, render_status

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger("bbdownweb.web.app")

AUTH_REALM = "bbdown"
basic_auth = HTTPBasic(auto_error=False)


class JobModel(BaseModel):
    key: str
    started_at: float
    elapsed_seconds: float
    elapsed: str
    state: str


class JobListResponse(BaseModel):
    items: List[JobModel]
    alerts: List[str]


def _credentials_match(credentials: Optional[HTTPBasicCredentials], settings: ServiceSettings) -> bool:
    if credentials is None:
        return False
    user_ok = secrets.compare_digest(credentials.username.encode("utf-8"), settings.auth_user.encode("utf-8"))
    password_ok = secrets.compare_digest(
        credentials.password.encode("utf-8"), settings.auth_password.encode("utf-8")
    )
    return user_ok and password_ok


async def _read_form(request: Request) -> dict[str, str]:
    raw = await request.body()
    parsed = parse_qs(raw.decode("utf-8", errors="replace"), keep_blank_values=True)
    return {name: values[0] for name, values in parsed.items() if values}


def build_services(settings: ServiceSettings) -> tuple[JobRegistry, LoginSession]:
    """Construct the job registry (with its alert queue) and the login slot."""
    registry = JobRegistry(
        settings.bbdown,
        lambda url: build_download_args(url, settings),
        AlertQueue(),
        tail_window=settings.tail_window_bytes,
    )
    session = LoginSession(
        settings.bbdown,
        build_login_args(),
        settings.artifact_path,
        cwd=Path(settings.login_workdir),
        ttl_seconds=settings.login_ttl_seconds,
        artifact_timeout=settings.artifact_timeout_seconds,
    )
    return registry, session


def create_app(
    settings: ServiceSettings,
    registry: JobRegistry | None = None,
    session: LoginSession | None = None,
) -> FastAPI:
    """Build the web app around injected (or freshly built) supervisor services."""
    if registry is None or session is None:
        default_registry, default_session = build_services(settings)
        if registry is None:
            registry = default_registry
        if session is None:
            session = default_session
    alerts = registry.alerts

    def require_auth(credentials: Optional[HTTPBasicCredentials] = Depends(basic_auth)) -> None:
        if not _credentials_match(credentials, settings):
            raise HTTPException(
                status_code=401,
                detail="Unauthorised.",
                headers={"WWW-Authenticate": f'Basic realm="{AUTH_REALM}"'},
            )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        logger.info("Shutting down jobs and login session...")
        await asyncio.to_thread(session.close)
        await asyncio.to_thread(registry.close_all)

    app = FastAPI(title="BBDown Web", lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.session = session
    router = APIRouter(dependencies=[Depends(require_auth)])

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url)
        return await call_next(request)

    @router.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        jobs = registry.snapshot()
        return HTMLResponse(render_index(jobs, alerts.drain()))

    @router.get("/api/jobs", response_model=JobListResponse)
    async def list_jobs() -> JobListResponse:
        items = [JobModel(**view.to_dict()) for view in registry.snapshot()]
        return JobListResponse(items=items, alerts=alerts.drain())

    @router.post("/jobs/submit")
    async def submit(request: Request) -> RedirectResponse:
        form = await _read_form(request)
        url = form.get("url", "").strip()
        if url:
            await asyncio.to_thread(registry.submit, url)
        return RedirectResponse("/", status_code=303)

    @router.post("/jobs/delete")
    async def delete(request: Request) -> RedirectResponse:
        form = await _read_form(request)
        key = form.get("job", "").strip()
        if key:
            await asyncio.to_thread(registry.delete, key)
        return RedirectResponse("/", status_code=303)

    @router.get("/jobs/status")
    async def status(job: str = ""):
        key = job.strip()
        try:
            text = await asyncio.to_thread(registry.read_status, key)
        except SupervisorIOError as exc:
            logger.error("Failed to read log for %s: %s", key, exc)
            return PlainTextResponse(f"{exc}\n", status_code=500)
        if text is None:
            return PlainTextResponse("", status_code=404)
        return HTMLResponse(render_status(key, text))

    @router.get("/login")
    async def login():
        try:
            image = await asyncio.to_thread(session.start)
        except (SpawnError, SupervisorIOError) as exc:
            logger.error("Login failed: %s", exc)
            return PlainTextResponse(f"{exc}\n", status_code=500)
        return HTMLResponse(render_login(image))

    @router.get("/login/log", response_class=PlainTextResponse)
    async def login_log():
        try:
            text = await asyncio.to_thread(session.log)
        except SupervisorIOError as exc:
            return PlainTextResponse(f"{exc}\n", status_code=500)
        return PlainTextResponse(f"{text}\n")

    @app.get("/ping", response_class=PlainTextResponse)
    async def ping() -> PlainTextResponse:
        return PlainTextResponse("OK")

    app.include_router(router)
    return app
