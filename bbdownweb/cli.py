import os
from pathlib import Path
from typing import Optional

import httpx
import typer
import uvicorn

from bbdownweb.supervisor.settings import CONFIG_PATH, load_settings
from bbdownweb.web.app import create_app

app = typer.Typer()

DEFAULT_SERVER_URL = "http://127.0.0.1:9280"


def _client_auth() -> Optional[tuple[str, str]]:
    user = os.getenv("AUTH_USER", "")
    password = os.getenv("AUTH_PWD", "")
    if user and password:
        return (user, password)
    return None


@app.command()
def serve(
    addr: Optional[str] = typer.Option(None, "--addr", help="http server listen address"),
    bbdown: Optional[str] = typer.Option(None, "--bbdown", help="BBDown path"),
    download: Optional[str] = typer.Option(None, "--download", help="download path"),
    config: Path = typer.Option(CONFIG_PATH, "--config", help="Optional JSON config file"),
):
    """Serve the download console until interrupted."""
    try:
        settings = load_settings(
            config,
            overrides={"addr": addr, "bbdown": bbdown, "download_dir": download},
        )
    except ValueError as exc:
        typer.echo(f"Invalid configuration: {exc}")
        raise typer.Exit(code=1)
    if not settings.has_credentials:
        typer.echo("AUTH_USER or AUTH_PWD is empty")
        raise typer.Exit(code=1)
    typer.echo(f"serve at {settings.addr}")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level="info")


@app.command()
def ping(url: str = typer.Option(DEFAULT_SERVER_URL, "--url", help="Server base URL")):
    """Check that a server is answering."""
    try:
        response = httpx.get(f"{url}/ping", timeout=5.0)
    except httpx.HTTPError as exc:
        typer.echo(f"Server not reachable: {exc}")
        raise typer.Exit(code=1)
    if response.status_code != 200:
        typer.echo(f"Server unhealthy (HTTP {response.status_code})")
        raise typer.Exit(code=1)
    typer.echo(response.text.strip())


@app.command()
def jobs(url: str = typer.Option(DEFAULT_SERVER_URL, "--url", help="Server base URL")):
    """List jobs on a running server (credentials from AUTH_USER/AUTH_PWD)."""
    try:
        response = httpx.get(f"{url}/api/jobs", auth=_client_auth(), timeout=5.0)
    except httpx.HTTPError as exc:
        typer.echo(f"Server not reachable: {exc}")
        raise typer.Exit(code=1)
    if response.status_code != 200:
        typer.echo(f"Failed to list jobs (HTTP {response.status_code})")
        raise typer.Exit(code=1)
    payload = response.json()
    for alert in payload.get("alerts", []):
        typer.echo(f"! {alert}")
    items = payload.get("items", [])
    if not items:
        typer.echo("No jobs.")
        return
    for item in items:
        typer.echo(f"{item['elapsed']:>10}  {item['state']:<20}  {item['key']}")


@app.command()
def submit(
    target: str = typer.Argument(..., help="Video URL or id passed to BBDown"),
    url: str = typer.Option(DEFAULT_SERVER_URL, "--url", help="Server base URL"),
):
    """Submit a download to a running server."""
    try:
        response = httpx.post(
            f"{url}/jobs/submit",
            data={"url": target},
            auth=_client_auth(),
            timeout=10.0,
        )
    except httpx.HTTPError as exc:
        typer.echo(f"Server not reachable: {exc}")
        raise typer.Exit(code=1)
    if response.status_code not in (200, 303):
        typer.echo(f"Submit failed (HTTP {response.status_code})")
        raise typer.Exit(code=1)
    typer.echo(f"Submitted {target}")


if __name__ == "__main__":
    app()
