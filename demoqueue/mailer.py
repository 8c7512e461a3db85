"""Transactional email through the Resend HTTP API."""

import os
from html import escape
from typing import Optional, Tuple

import requests
from flask import current_app

RESEND_EMAILS_URL = "https://api.resend.com/emails"
DEFAULT_FROM = "Demo Queue <onboarding@resend.dev>"


def resend_send_email(*, to_email: str, subject: str, html: str, text: Optional[str] = None) -> Tuple[bool, str]:
    """Returns (ok, message): the Resend id on success, otherwise the reason.

    Without RESEND_API_KEY nothing is sent.
    """
    api_key = (os.getenv("RESEND_API_KEY") or "").strip()
    if not api_key:
        return False, "RESEND_API_KEY is not set"

    payload = {
        "from": (os.getenv("RESEND_FROM") or DEFAULT_FROM).strip(),
        "to": [to_email],
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text

    try:
        resp = requests.post(
            RESEND_EMAILS_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json=payload,
            timeout=10,
        )
    except requests.RequestException as e:
        current_app.logger.warning("Resend request to %s failed: %s", to_email, e)
        return False, str(e)

    if not resp.ok:
        return False, f"{resp.status_code}: {resp.text}"
    data = resp.json() if resp.content else {}
    return True, str(data.get("id", "sent"))


def send_submission_confirmation(to_email: str, display_name: str) -> Tuple[bool, str]:
    name = display_name or "there"
    html = f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h2>Demo Submission Confirmed</h2>
          <p>Hi {escape(name)},</p>
          <p>Your demo was successfully submitted and is now in the review queue.</p>
          <p>You'll be notified once a curator has reviewed your submission.</p>
          <p>Thanks for sharing your music!</p>
        </div>
    """
    text = (
        f"Hi {name},\n\n"
        "Your demo was successfully submitted and is now in the review queue.\n"
        "Thanks for sharing your music!"
    )
    return resend_send_email(to_email=to_email, subject="Demo Submission Confirmed", html=html, text=text)
