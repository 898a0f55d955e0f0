"""
mailer/smtp.py -- SMTP delivery of verification and password reset emails.

Supports implicit TLS (SMTP_SSL, port 465) and STARTTLS (port 587). When no
SMTP host is configured the mailer runs in dev mode: messages are logged
(recipient masked) instead of sent, and the link itself is logged only when
DEBUG is on.

Unlike the audit sink, delivery failures are raised as MailDeliveryError --
registration must report them, password reset requests swallow them.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import urlencode

from auth.tokens import mask_email
from core.config import Settings, get_settings

logger = logging.getLogger("authkeep.mailer")


class MailDeliveryError(Exception):
    """Raised when an email could not be handed to the SMTP server."""


class SMTPMailer:
    """Sends transactional emails through a configured SMTP server."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.smtp_host and self.settings.mail_from)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def send_verification(self, email: str, raw_token: str) -> None:
        link = _with_token(self.settings.verification_url, raw_token)
        minutes = self.settings.verification_token_expire_minutes
        subject = "Verify your email address"
        text_body = (
            "Thanks for signing up.\n\n"
            f"Confirm your email address by opening this link:\n{link}\n\n"
            f"The link expires in {minutes} minutes. If you did not sign up, ignore this email."
        )
        html_body = _html_template(
            heading="Verify your email address",
            intro="Thanks for signing up. Confirm your email address to activate your account.",
            button="Verify email",
            link=link,
            footer=f"The link expires in {minutes} minutes. If you did not sign up, ignore this email.",
        )
        self._send(email, subject, html_body, text_body, link)

    def send_password_reset(self, email: str, raw_token: str) -> None:
        link = _with_token(self.settings.reset_password_url, raw_token)
        minutes = self.settings.reset_token_expire_minutes
        subject = "Reset your password"
        text_body = (
            "We received a request to reset your password.\n\n"
            f"Choose a new password here:\n{link}\n\n"
            f"The link expires in {minutes} minutes. If you did not request a reset, ignore this email."
        )
        html_body = _html_template(
            heading="Reset your password",
            intro="We received a request to reset your password.",
            button="Reset password",
            link=link,
            footer=f"The link expires in {minutes} minutes. If you did not request a reset, ignore this email.",
        )
        self._send(email, subject, html_body, text_body, link)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(self, to_email: str, subject: str, html_body: str, text_body: str, link: str) -> None:
        settings = self.settings
        if not self.is_configured:
            logger.info("SMTP not configured; not sending %r to %s", subject, mask_email(to_email))
            if settings.debug:
                logger.debug("Dev mode link for %s: %s", mask_email(to_email), link)
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{settings.mail_from_name} <{settings.mail_from}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if settings.smtp_starttls:
                with smtplib.SMTP(
                    settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds
                ) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.sendmail(settings.mail_from, [to_email], msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    settings.smtp_host, settings.smtp_port, context=context, timeout=settings.smtp_timeout_seconds
                ) as server:
                    self._login(server)
                    server.sendmail(settings.mail_from, [to_email], msg.as_string())
        except (smtplib.SMTPException, ssl.SSLError, OSError) as exc:
            logger.error(
                "Failed to send %r to %s via %s:%d: %s",
                subject,
                mask_email(to_email),
                settings.smtp_host,
                settings.smtp_port,
                exc,
            )
            raise MailDeliveryError(f"Could not deliver {subject!r}") from exc

        logger.info("Sent %r to %s", subject, mask_email(to_email))

    def _login(self, server: smtplib.SMTP) -> None:
        if self.settings.smtp_user and self.settings.smtp_password:
            server.login(self.settings.smtp_user, self.settings.smtp_password)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _with_token(base_url: str, raw_token: str) -> str:
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode({'token': raw_token})}"


def _html_template(*, heading: str, intro: str, button: str, link: str, footer: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #1f2933;">
  <h2>{heading}</h2>
  <p>{intro}</p>
  <p>
    <a href="{link}"
       style="display: inline-block; padding: 10px 18px; background: #2563eb;
              color: #fff; text-decoration: none; border-radius: 6px;">
      {button}
    </a>
  </p>
  <p style="font-size: 13px; color: #52606d;">{footer}</p>
</body>
</html>
"""
