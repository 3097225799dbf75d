import logging
from html import escape
from typing import Any, Dict

import requests

from readify import config
from readify.errors import ProviderError
from readify.keys import get_resend_api_key

logger = logging.getLogger(__name__)


def _welcome_html(name: str, setup_link: str) -> str:
    return (
        f"<h1>Welcome to Readify, {escape(name or 'there')}!</h1>"
        "<p>An account has been created for you. Use the link below to sign in "
        "and finish setting up your account.</p>"
        f'<p><a href="{escape(setup_link, quote=True)}">Complete your account setup</a></p>'
    )


def send_welcome_email(to: str, name: str, setup_link: str) -> Dict[str, Any]:
    """Sends the account-setup mail through the Resend REST API."""
    headers = {"Authorization": f"Bearer {get_resend_api_key()}", "Content-Type": "application/json"}
    body = {
        "from": f"Readify <{config.FROM_EMAIL}>",
        "to": [to],
        "subject": "Welcome to Readify! Complete Your Account Setup",
        "html": _welcome_html(name, setup_link),
    }
    try:
        r = requests.post(config.RESEND_API_URL, headers=headers, json=body, timeout=config.PROVIDER_TIMEOUT)
    except requests.RequestException as e:
        raise ProviderError(f"Failed to send welcome email: {e}")
    if not r.ok:
        logger.error(f"[EMAIL] Resend Error ({r.status_code}): {r.text[:500]}")
        raise ProviderError("Failed to send welcome email.", status=r.status_code, body=r.text or "")

    try:
        data = r.json()
    except ValueError as e:
        raise ProviderError(f"Resend returned invalid JSON: {e}", status=r.status_code, body=r.text or "")
    logger.info(f"[EMAIL] Welcome email sent successfully: {data.get('id')}")
    return data
