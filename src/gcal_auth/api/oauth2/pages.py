# Human-readable pages for browser-facing OAuth steps.
# Created: 2026-10-18

from __future__ import annotations

from html import escape

_PAGE_HTML = """<!DOCTYPE html>
<html><head><title>{title}</title>
<style>
body {{ font-family: system-ui; max-width: 600px; margin: 50px auto; padding: 20px; }}
h2 {{ color: {color}; margin-bottom: 8px; }}
.code {{ background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 16px 0;
  font-family: monospace; word-break: break-all; border: 1px solid #e5e7eb; }}
.muted {{ color: #6b7280; font-size: 14px; }}
</style></head><body>
<h2>{title}</h2>
{body}
<p class="muted">You can close this window.</p>
</body></html>"""


def error_page(error: str, description: str) -> str:
    body = f"<p><strong>{escape(error)}</strong></p><p>{escape(description)}</p>"
    return _PAGE_HTML.format(title="Authorization Failed", color="#d32f2f", body=body)


def code_page(code: str, state: str) -> str:
    """Landing page for clients that use this server's own redirect URI."""
    body = (
        "<p>Authorization code received:</p>"
        f'<div class="code">{escape(code)}</div>'
        + (f'<p class="muted">state: {escape(state)}</p>' if state else "")
        + "<p>Paste the code into your MCP client to finish signing in.</p>"
    )
    return _PAGE_HTML.format(title="Authorization Successful", color="#2e7d32", body=body)


def wants_html(accept: str | None) -> bool:
    """True for browser navigations (Accept lists text/html)."""
    return "text/html" in (accept or "")
