from __future__ import annotations

import base64
import json
import logging
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

from flask import current_app
from markupsafe import escape

logger = logging.getLogger(__name__)


class MailjetError(RuntimeError):
    pass


class MailjetNotConfigured(MailjetError):
    pass


@dataclass(frozen=True)
class MailjetClient:
    api_key: str
    api_secret: str
    sender_email: str
    sender_name: str
    base_url: str = "https://api.mailjet.com"
    timeout_seconds: int = 20

    def _auth_header(self) -> str:
        token = f"{self.api_key}:{self.api_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(token).decode("ascii")

    def send(self, *, to: str, subject: str, text: str, html: str, reply_to: str | None = None, retries: int = 2) -> dict[str, Any]:
        message: dict[str, Any] = {
            "From": {"Email": self.sender_email, "Name": self.sender_name},
            "To": [{"Email": to}],
            "Subject": subject,
            "TextPart": text,
            "HTMLPart": html,
        }
        if reply_to:
            message["ReplyTo"] = {"Email": reply_to}
        body = json.dumps({"Messages": [message]}).encode("utf-8")

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(self.base_url.rstrip("/") + "/v3.1/send", data=body, method="POST")
                req.add_header("Authorization", self._auth_header())
                req.add_header("Content-Type", "application/json")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8"))
                    except Exception as e:
                        raise MailjetError("Invalid JSON from Mailjet") from e
            except urllib.error.HTTPError as e:
                if e.code == 429 or e.code >= 500:
                    time.sleep(min(2 * (attempt + 1), 6))
                    last_err = MailjetError(f"HTTP {e.code} from Mailjet")
                    continue
                try:
                    detail = e.read().decode("utf-8", errors="ignore")
                except Exception:
                    detail = ""
                raise MailjetError(f"HTTP {e.code} from Mailjet: {detail[:300]}") from e
            except OSError as e:  # URLError and socket errors
                last_err = e
                time.sleep(min(1 * (attempt + 1), 3))
                continue
        raise MailjetError(f"Mailjet send failed after retries: {last_err}")


def client_from_config(config: dict) -> MailjetClient:
    missing = [
        k
        for k in ("MAILJET_API_KEY", "MAILJET_SECRET_KEY", "MAILJET_SENDER_EMAIL", "APP_BASE_URL")
        if not config.get(k)
    ]
    if missing:
        raise MailjetNotConfigured(f"Email service is not configured (missing {', '.join(missing)})")
    return MailjetClient(
        api_key=config["MAILJET_API_KEY"],
        api_secret=config["MAILJET_SECRET_KEY"],
        sender_email=config["MAILJET_SENDER_EMAIL"],
        sender_name=config.get("MAILJET_SENDER_NAME") or "The Virtual Armory",
    )


def _link(path: str, token: str) -> str:
    return f"{current_app.config['APP_BASE_URL']}{path}?token={token}"


def _send(*, to: str, subject: str, text: str, html: str, reply_to: str | None = None) -> None:
    try:
        client = client_from_config(current_app.config)
    except MailjetNotConfigured:
        logger.warning("Email not sent (service not configured): to=%s subject=%s", to, subject)
        raise
    client.send(to=to, subject=subject, text=text, html=html, reply_to=reply_to)
    logger.info("Email sent: to=%s subject=%s", to, subject)


def send_verification_email(email: str, token: str) -> None:
    link = _link("/verify-email", token)
    _send(
        to=email,
        subject="Verify your Virtual Armory account",
        text=f"Please verify your account by clicking this link: {link}",
        html=(
            "<h3>Welcome to Virtual Armory!</h3>"
            "<p>Please verify your account by clicking the link below:</p>"
            f'<p><a href="{link}">Verify Account</a></p>'
            "<p>If you did not create this account, please ignore this email.</p>"
        ),
    )


def send_email_change_verification(email: str, token: str) -> None:
    link = _link("/verify-email", token)
    _send(
        to=email,
        subject="Verify your new email address",
        text=f"Please confirm your new email address by clicking this link: {link}",
        html=(
            "<h3>Confirm your new email address</h3>"
            "<p>You asked to change the email address on your Virtual Armory account.</p>"
            f'<p><a href="{link}">Confirm Email</a></p>'
            "<p>If you did not request this change, please ignore this email.</p>"
        ),
    )


def send_password_reset_email(email: str, token: str) -> None:
    link = _link("/reset-password", token)
    _send(
        to=email,
        subject="Reset your Virtual Armory password",
        text=f"Reset your password using this link (valid for 60 minutes): {link}",
        html=(
            "<h3>Password reset</h3>"
            "<p>Click the link below to choose a new password. The link is valid for 60 minutes.</p>"
            f'<p><a href="{link}">Reset Password</a></p>'
            "<p>If you did not request a reset, please ignore this email.</p>"
        ),
    )


def send_contact_email(name: str, email: str, subject: str, message: str) -> None:
    admin_email = current_app.config.get("ADMIN_EMAIL")
    if not admin_email:
        raise MailjetNotConfigured("ADMIN_EMAIL is required for contact messages")
    _send(
        to=admin_email,
        subject=f"Contact form: {subject}",
        text=f"From: {name} <{email}>\n\n{message}",
        html=f"<p><strong>From:</strong> {escape(name)} &lt;{escape(email)}&gt;</p><p>{escape(message)}</p>",
        reply_to=email,
    )


def deliver(send_fn, *args: str) -> bool:
    """Call one of the send_* helpers; log and report failure instead of raising."""
    try:
        send_fn(*args)
        return True
    except MailjetError as e:
        logger.error("Email delivery failed (%s): %s", getattr(send_fn, "__name__", send_fn), e)
        return False
