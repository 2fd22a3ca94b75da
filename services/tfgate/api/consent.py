"""HTML consent page for `terraform login`.

The page re-submits the authorize parameters as hidden fields to
POST /oauth/authorize, adding consented=true when the user approves.
"""

from html import escape

from fastapi.responses import HTMLResponse

# Parameters carried through the consent form unchanged
CONSENT_FIELDS = (
    "response_type",
    "client_id",
    "redirect_uri",
    "state",
    "code_challenge",
    "code_challenge_method",
)


def render_consent_page(
    action: str, params: dict[str, str], username: str | None = None
) -> HTMLResponse:
    """Render the consent form posting params back to action."""
    hidden = "\n".join(
        f'        <input type="hidden" name="{name}" value="{escape(params[name])}">'
        for name in CONSENT_FIELDS
        if name in params
    )
    who = f" as <strong>{escape(username)}</strong>" if username else ""
    return HTMLResponse(
        content=f"""<!DOCTYPE html>
<html>
<head>
    <title>Authorize Terraform CLI</title>
    <style>
        body {{ font-family: system-ui, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px; text-align: center; }}
        .prompt {{ background: #f8fafc; padding: 16px; border-radius: 8px; margin: 16px 0; }}
        button {{ background: #3b82f6; color: white; border: none; border-radius: 6px; padding: 10px 24px; font-size: 16px; cursor: pointer; }}
    </style>
</head>
<body>
    <h1>Authorize Terraform CLI</h1>
    <div class="prompt">
        <p>The terraform CLI is requesting an API token{who}.</p>
        <p>Only continue if you just ran <code>terraform login</code>.</p>
    </div>
    <form method="post" action="{escape(action)}">
{hidden}
        <button type="submit" name="consented" value="true">Accept</button>
    </form>
</body>
</html>""",
        headers={"Cache-Control": "no-store"},
    )
