"""HTML pages for the download console."""

from __future__ import annotations

from html import escape

from bbdownweb.supervisor.job_registry import JobView


def _render_base(title: str, content: str, head: str = "") -> str:
    return f"""<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{escape(title)}</title>
  {head}
  <style>
    body {{ font-family: system-ui, sans-serif; margin: 2rem auto; max-width: 960px; color: #1e2a2f; }}
    nav a {{ margin-right: 1rem; }}
    table {{ border-collapse: collapse; width: 100%; }}
    th, td {{ border-bottom: 1px solid #dacfbf; padding: .4rem; text-align: left; }}
    .alert {{ background: #fbe3d6; border: 1px solid #d67443; padding: .5rem; margin: .5rem 0; }}
    pre {{ background: #f4efe7; padding: 1rem; white-space: pre-wrap; word-break: break-all; }}
  </style>
</head>
<body>
  <nav><a href="/">Jobs</a><a href="/login">Login</a></nav>
  {content}
</body>
</html>
"""


def _render_job_row(view: JobView) -> str:
    key = escape(view.key)
    return f"""    <tr>
      <td><a href="/jobs/status?job={escape(view.quoted_key)}">{key}</a></td>
      <td>{escape(view.elapsed_display)}</td>
      <td>{escape(view.state)}</td>
      <td>
        <form method="post" action="/jobs/delete">
          <input type="hidden" name="job" value="{key}" />
          <button type="submit">Delete</button>
        </form>
      </td>
    </tr>"""


def render_index(jobs: list[JobView], alerts: list[str]) -> str:
    alert_html = "\n".join(f'  <div class="alert">{escape(alert)}</div>' for alert in alerts)
    rows = "\n".join(_render_job_row(view) for view in jobs)
    if not rows:
        rows = '    <tr><td colspan="4">No jobs yet.</td></tr>'
    content = f"""<h1>BBDown</h1>
{alert_html}
  <form method="post" action="/jobs/submit">
    <input type="text" name="url" size="60" placeholder="https://www.bilibili.com/video/BV..." />
    <button type="submit">Download</button>
  </form>
  <table>
    <thead><tr><th>URL</th><th>Elapsed</th><th>State</th><th></th></tr></thead>
    <tbody>
{rows}
    </tbody>
  </table>"""
    return _render_base("BBDown", content)


def render_status(key: str, log_text: str) -> str:
    content = f"""<h1>{escape(key)}</h1>
  <pre>{escape(log_text)}</pre>"""
    return _render_base(f"BBDown - {key}", content, head='<meta http-equiv="refresh" content="3" />')


def render_login(image_b64: str) -> str:
    content = f"""<h1>Login</h1>
  <p>Scan the QR code with the Bilibili app.</p>
  <img alt="login qrcode" src="data:image/png;base64,{escape(image_b64)}" />
  <pre id="login-log"></pre>
  <script>
    async function refreshLoginLog() {{
      const resp = await fetch("/login/log");
      document.getElementById("login-log").textContent = await resp.text();
    }}
    refreshLoginLog();
    setInterval(refreshLoginLog, 2000);
  </script>"""
    return _render_base("BBDown - Login", content)
