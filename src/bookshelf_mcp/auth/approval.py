"""Consent page shown before redirecting to GitHub."""

from __future__ import annotations

from html import escape
from typing import Optional

from starlette.responses import HTMLResponse

from .models import ClientInfo


def render_approval_dialog(
    client: Optional[ClientInfo],
    client_id: str,
    server_name: str,
    state: str,
    action_url: str = "/authorize",
) -> HTMLResponse:
    """Render the approval form.

    The encoded AuthorizationRequest travels in the hidden ``state`` field and
    comes back on POST /authorize.
    """
    client_name = escape(client.client_name if client and client.client_name else client_id)
    redirect_uris = escape(", ".join(client.redirect_uris) if client else "unknown")

    html = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(server_name)} | Authorization Request</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            max-width: 600px;
            margin: 0 auto;
            padding: 2rem;
            line-height: 1.6;
            background: #f8f9fa;
        }}
        .container {{
            background: white;
            padding: 2rem;
            border-radius: 8px;
            box-shadow: 0 2px 10px rgba(0,0,0,0.1);
        }}
        h1 {{
            color: #2c3e50;
            border-bottom: 3px solid #3498db;
            padding-bottom: 0.5rem;
        }}
        .client {{
            background: #f5f5f5;
            border: 1px solid #ddd;
            padding: 1rem;
            border-radius: 4px;
            margin: 1rem 0;
        }}
        button {{ padding: 0.6rem 1.4rem; border-radius: 4px; border: 1px solid #ccc; }}
        button.approve {{ background: #3498db; color: white; border-color: #3498db; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>📚 {escape(server_name)}</h1>
        <p><strong>{client_name}</strong> is requesting access to your reading profile.</p>
        <div class="client">
            <div><strong>Client ID:</strong> {escape(client_id)}</div>
            <div><strong>Redirect URIs:</strong> {redirect_uris}</div>
        </div>
        <p>If you approve, you will be redirected to GitHub to sign in.</p>
        <form method="post" action="{escape(action_url)}">
            <input type="hidden" name="state" value="{escape(state)}">
            <button type="submit" name="action" value="deny">Cancel</button>
            <button type="submit" name="action" value="approve" class="approve">Approve</button>
        </form>
    </div>
</body>
</html>
"""
    return HTMLResponse(html)
