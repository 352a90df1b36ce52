from __future__ import annotations

import smtplib
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Optional
from uuid import UUID

from jinja2 import Environment, FileSystemLoader, select_autoescape

from restohub.core.logging_setup import logger


@dataclass
class EmailConfig:
    host: str
    port: int
    username: str | None
    password: str | None
    sender: str
    starttls: bool


class NotificationService:
    def __init__(
        self,
        email_config: Optional[EmailConfig] = None,
        public_app_url: str | None = None,
        template_root: Path | None = None,
    ) -> None:
        self.email_config = email_config
        self.public_app_url = (public_app_url or "").rstrip("/") or None
        self.template_root = template_root or Path(__file__).resolve().parent.parent / "templates"
        self.template_env = Environment(
            loader=FileSystemLoader(self.template_root),
            autoescape=select_autoescape(["html", "xml"]),
        )

    @classmethod
    def from_settings(cls, settings) -> "NotificationService":
        service = cls(public_app_url=settings.resolved_public_app_url())
        if settings.smtp_host and settings.smtp_sender:
            service.email_config = EmailConfig(
                host=settings.smtp_host,
                port=int(settings.smtp_port),
                username=settings.smtp_username,
                password=settings.smtp_password,
                sender=settings.smtp_sender,
                starttls=bool(settings.smtp_starttls),
            )
        return service

    def _email_sender_available(self) -> bool:
        return self.email_config is not None

    def _render_template(self, template_name: str, context: dict) -> str:
        template = self.template_env.get_template(template_name)
        return template.render(**context)

    def send_ownership_transfer_otp(
        self,
        *,
        to: str,
        store_name: str,
        otp: str,
        expires_at: datetime,
        max_attempts: int,
    ) -> bool:
        """E-mail the transfer code to the prospective owner; returns False when not delivered."""
        if not self._email_sender_available():
            logger.warning("[send_ownership_transfer_otp] email sender not configured, OTP not delivered to %s", to)
            return False

        html_body = self._render_template(
            "ownership_transfer_otp.html",
            {
                "store_name": store_name,
                "otp": otp,
                "expires_at": expires_at.strftime("%Y-%m-%d %H:%M"),
                "max_attempts": max_attempts,
                "app_url": self.public_app_url,
            },
        )
        text_body = (
            f"The owner of {store_name} wants to transfer the store to your account.\n"
            f"Confirmation code: {otp}\n"
            f"The code expires at {expires_at:%Y-%m-%d %H:%M} UTC.\n"
        )
        return self._deliver(to=to, subject=f"Confirm the ownership transfer of {store_name}", html_body=html_body, text_body=text_body)

    def send_staff_invitation(self, email: str, token: str, store_id: UUID) -> bool:
        if not self._email_sender_available():
            logger.warning("[send_staff_invitation] email sender not configured, invitation not sent to %s", email)
            return False
        invite_link = f"{self.public_app_url or ''}/invitations/{token}?store={store_id}"
        html_body = self._render_template("staff_invitation.html", {"invite_link": invite_link})
        text_body = f"You have been invited to join a store on RestoHub.\nAccept the invitation: {invite_link}\n"
        return self._deliver(to=email, subject="You have been invited to RestoHub", html_body=html_body, text_body=text_body)

    def _deliver(self, *, to: str, subject: str, html_body: str, text_body: str) -> bool:
        try:
            self._send_email(to=to, subject=subject, html_body=html_body, text_body=text_body)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("[notification] failed to send '%s' to %s: %s", subject, to, exc)
            return False
        logger.info("[notification] '%s' sent to %s", subject, to)
        return True

    def _send_email(self, *, to: str, subject: str, html_body: str, text_body: str | None = None) -> None:
        if not self.email_config:
            raise RuntimeError("Email sender not configured")

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.email_config.sender
        message["To"] = to
        message.set_content(text_body or "", subtype="plain", charset="utf-8")
        message.add_alternative(html_body, subtype="html", charset="utf-8")

        with smtplib.SMTP(self.email_config.host, self.email_config.port, timeout=30) as smtp:
            if self.email_config.starttls:
                smtp.starttls()
            if self.email_config.username and self.email_config.password:
                smtp.login(self.email_config.username, self.email_config.password)
            smtp.send_message(message)
