"""HTTP-level tests for the download console."""

from __future__ import annotations

import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from bbdownweb.supervisor.alerts import AlertQueue
from bbdownweb.supervisor.errors import SpawnError
from bbdownweb.supervisor.job_registry import JobRegistry
from bbdownweb.supervisor.login_session import LoginSession
from bbdownweb.supervisor.settings import validate_settings
from bbdownweb.web.app import create_app

AUTH = ("admin", "secret")
DOWNLOAD_SCRIPT = "print('downloading', flush=True)"
QR_SCRIPT = "import pathlib, time; pathlib.Path('qrcode.png').write_bytes(b'PNG'); time.sleep(30)"


class WebAppTests(unittest.TestCase):
    """Drive the routes with Python child processes standing in for BBDown."""

    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmpdir.cleanup)
        workdir = Path(self._tmpdir.name)
        self.settings = validate_settings(
            {
                "addr": "127.0.0.1:9280",
                "bbdown": sys.executable,
                "auth_user": AUTH[0],
                "auth_password": AUTH[1],
                "login_workdir": str(workdir),
            }
        )
        self.alerts = AlertQueue()
        self.registry = JobRegistry(sys.executable, lambda url: ["-c", DOWNLOAD_SCRIPT], self.alerts)
        self.session = LoginSession(
            sys.executable,
            ["-c", QR_SCRIPT],
            workdir / "qrcode.png",
            cwd=workdir,
            artifact_timeout=5.0,
            poll_interval=0.05,
        )
        self.addCleanup(self.session.close)
        self.addCleanup(self.registry.close_all)
        app = create_app(self.settings, registry=self.registry, session=self.session)
        self.client = TestClient(app)

    def test_requires_basic_auth(self) -> None:
        response = self.client.get("/")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.headers["www-authenticate"], 'Basic realm="bbdown"')
        response = self.client.get("/", auth=("admin", "wrong"))
        self.assertEqual(response.status_code, 401)

    def test_ping_is_public(self) -> None:
        response = self.client.get("/ping")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text, "OK")

    def test_wrong_method_rejected(self) -> None:
        response = self.client.get("/jobs/submit", auth=AUTH)
        self.assertEqual(response.status_code, 405)

    def test_submit_redirects_and_lists_job(self) -> None:
        response = self.client.post(
            "/jobs/submit", data={"url": "  BV1abc  "}, auth=AUTH, follow_redirects=False
        )
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers["location"], "/")
        self.assertIsNotNone(self.registry.lookup("BV1abc"))

        page = self.client.get("/", auth=AUTH)
        self.assertEqual(page.status_code, 200)
        self.assertIn("BV1abc", page.text)
        self.assertIn("/jobs/status?job=BV1abc", page.text)

    def test_blank_submit_is_ignored(self) -> None:
        self.client.post("/jobs/submit", data={"url": "   "}, auth=AUTH, follow_redirects=False)
        self.assertEqual(len(self.registry), 0)

    def test_duplicate_alert_shown_once(self) -> None:
        for _ in range(2):
            self.client.post("/jobs/submit", data={"url": "A"}, auth=AUTH, follow_redirects=False)
        first = self.client.get("/", auth=AUTH)
        self.assertIn("url exists A", first.text)
        second = self.client.get("/", auth=AUTH)
        self.assertNotIn("url exists A", second.text)

    def test_api_jobs_returns_plain_data(self) -> None:
        self.registry.submit("A")
        self.registry.submit("A")
        payload = self.client.get("/api/jobs", auth=AUTH).json()
        self.assertEqual([item["key"] for item in payload["items"]], ["A"])
        self.assertIn(payload["items"][0]["state"], {"running", "exit status 0"})
        self.assertEqual(payload["alerts"], ["url exists A"])

    def test_status_unknown_job_is_404(self) -> None:
        response = self.client.get("/jobs/status", params={"job": "nope"}, auth=AUTH)
        self.assertEqual(response.status_code, 404)

    def test_status_shows_log_and_exit_state(self) -> None:
        job = self.registry.submit("https://b23.tv/x?p=1")
        assert job is not None
        job.process.wait(timeout=10)
        response = self.client.get("/jobs/status", params={"job": "https://b23.tv/x?p=1"}, auth=AUTH)
        self.assertEqual(response.status_code, 200)
        self.assertIn("downloading", response.text)
        self.assertIn("exit status 0", response.text)

    def test_delete_removes_job(self) -> None:
        job = self.registry.submit("D")
        assert job is not None
        response = self.client.post("/jobs/delete", data={"job": "D"}, auth=AUTH, follow_redirects=False)
        self.assertEqual(response.status_code, 303)
        self.assertIsNone(self.registry.lookup("D"))
        self.assertTrue(job.process.closed)

    def test_login_log_before_login(self) -> None:
        response = self.client.get("/login/log", auth=AUTH)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.text.strip(), "process not exists")

    def test_login_renders_qr_image(self) -> None:
        response = self.client.get("/login", auth=AUTH)
        self.assertEqual(response.status_code, 200)
        self.assertIn("data:image/png;base64,UE5H", response.text)
        self.assertTrue(self.session.is_active)

    def test_login_spawn_failure_is_500(self) -> None:
        with mock.patch.object(self.session, "start", side_effect=SpawnError("no BBDown")):
            response = self.client.get("/login", auth=AUTH)
        self.assertEqual(response.status_code, 500)
        self.assertIn("no BBDown", response.text)

    def test_shutdown_closes_everything(self) -> None:
        app = create_app(self.settings, registry=self.registry, session=self.session)
        with TestClient(app) as client:
            client.post("/jobs/submit", data={"url": "S"}, auth=AUTH, follow_redirects=False)
            job = self.registry.lookup("S")
        assert job is not None
        self.assertTrue(job.process.closed)
        self.assertEqual(len(self.registry), 0)


if __name__ == "__main__":
    unittest.main()
