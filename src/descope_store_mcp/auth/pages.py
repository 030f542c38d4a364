"""
HTML pages for the standalone social login flow.
"""

from html import escape
from typing import Any, Optional

from .descope import PROVIDERS

_STYLE = """
    <style>
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 640px;
            margin: 0 auto;
            padding: 2rem;
            line-height: 1.6;
            background: #f8f9fa;
        }
        .container {
            background: white;
            padding: 2rem;
            border-radius: 8px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }
        h1 {
            color: #2c3e50;
            border-bottom: 3px solid #3498db;
            padding-bottom: 0.5rem;
        }
        .provider {
            display: block;
            color: white;
            text-decoration: none;
            text-align: center;
            padding: 0.75rem;
            margin: 0.5rem 0;
            border-radius: 4px;
            font-weight: bold;
        }
        .status {
            background: #e8f5e8;
            border: 1px solid #4caf50;
            color: #2e7d32;
            padding: 1rem;
            border-radius: 4px;
            margin: 1rem 0;
        }
        .token {
            background: #f5f5f5;
            border: 1px solid #ddd;
            padding: 1rem;
            border-radius: 4px;
            font-family: 'Monaco', 'Menlo', monospace;
            word-break: break-all;
        }
    </style>
"""


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(title)}</title>
{_STYLE}
</head>
<body>
    <div class="container">
{body}
    </div>
</body>
</html>
"""


def render_login_page() -> str:
    """Provider picker; every entry links to /login/{provider}."""
    buttons = "\n".join(
        f'        <a class="provider" style="background: {info.color}" '
        f'href="/login/{provider.value}">Continue with {escape(info.label)}</a>'
        for provider, info in PROVIDERS.items()
    )
    body = f"""        <h1>🛍️ Descope Store MCP</h1>
        <p>Sign in to get an access token for the store tools.</p>
{buttons}"""
    return _page("Sign in - Descope Store MCP", body)


def render_success_page(
    access_token: str,
    provider: str,
    expires_in: int,
    user: Optional[dict[str, Any]] = None,
) -> str:
    """Show the bearer token minted by a completed social login."""
    user = user or {}
    who = user.get("email") or user.get("name") or user.get("userId") or "your account"
    body = f"""        <h1>✅ Signed in</h1>
        <div class="status">Authenticated as {escape(str(who))} via {escape(provider)}</div>
        <p>Use this bearer token for requests to <code>/mcp</code>. It expires in {expires_in // 60} minutes.</p>
        <div class="token">{escape(access_token)}</div>
        <p><code>Authorization: Bearer &lt;token&gt;</code></p>"""
    return _page("Signed in - Descope Store MCP", body)
