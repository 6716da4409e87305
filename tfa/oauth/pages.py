"""Minimal HTML for the login entry, its error panel and token delivery."""

import json
from html import escape

from tfa.oauth.delivery import TokenDelivery

_PAGE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta name="referrer" content="no-referrer">
<title>{title}</title>
</head>
<body>
{body}
</body>
</html>
"""


def _page(title: str, body: str) -> str:
    return _PAGE.format(title=escape(title), body=body)


def _hidden(name: str, value: str | None) -> str:
    return f'<input type="hidden" name="{name}" value="{escape(value or "")}">'


def render_login_page(
    *,
    redirect_url: str,
    client_public_key: str,
    state: str | None,
    callback_origin: str | None,
    error: str | None = None,
) -> str:
    """Credential + TOTP form that posts back to /oauth."""
    notice = f'<p role="alert">{escape(error)}</p>' if error else ""
    body = f"""<main>
<h1>Sign in</h1>
{notice}
<form method="post" action="/oauth" autocomplete="off">
{_hidden("redirectUrl", redirect_url)}
{_hidden("clientPublicKey", client_public_key)}
{_hidden("state", state)}
{_hidden("callbackOrigin", callback_origin)}
<label>Username <input name="username" required></label>
<label>Password <input name="password" type="password" required></label>
<label>Code <input name="totpCode" inputmode="numeric" pattern="[0-9]*" maxlength="6"></label>
<button type="submit">Continue</button>
</form>
</main>"""
    return _page("Sign in", body)


def render_error_panel(title: str, description: str) -> str:
    """Refusal page; never echoes the offending request values."""
    body = f"""<main>
<h1>{escape(title)}</h1>
<p>{escape(description)}</p>
</main>"""
    return _page(title, body)


def _script_json(value: object) -> str:
    """JSON safe to inline inside a script element."""
    return (
        json.dumps(value)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )


def render_delivery_page(delivery: TokenDelivery) -> str:
    """Hands the envelope to the opener, else redirects with it in the fragment."""
    data = _script_json(delivery.model_dump(by_alias=True))
    body = f"""<p>Completing sign in&hellip;</p>
<script>
(function () {{
  var delivery = {data};
  var message = delivery.postMessage;
  if (message && window.opener && !window.opener.closed) {{
    window.opener.postMessage(
      {{ type: message.type, state: message.state, encryptedToken: message.encryptedToken }},
      message.targetOrigin
    );
    window.close();
    return;
  }}
  window.location.replace(delivery.redirectUrl);
}})();
</script>"""
    return _page("Signing in", body)
