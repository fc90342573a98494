"""
mail/sender.py -- SMTP delivery of rendered emails.

SMTPSender opens one connection per message. Registration mail volume is
tiny, and a fresh connection never trips over a server-side idle timeout.

Mailer ties rendering and delivery together: render_and_send() is the only
call the registration service makes.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any

from mail.renderer import EmailRenderer

logger = logging.getLogger("selfadmin.mail")


class MailSendError(RuntimeError):
    """The message could not be handed over to the SMTP server."""


class SMTPSender:
    def __init__(
        self,
        host: str,
        port: int = 25,
        username: str = "",
        password: str = "",
        starttls: bool = False,
        timeout: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def send(self, from_addr: str, to_addr: str, subject: str, html_body: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = from_addr
        msg["To"] = to_addr
        msg.set_content(html_body, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.starttls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailSendError(f"Could not send mail via {self.host}:{self.port}: {exc}") from exc


class Mailer:
    def __init__(self, renderer: EmailRenderer, sender: SMTPSender) -> None:
        self.renderer = renderer
        self.sender = sender

    def render_and_send(
        self,
        template: str,
        from_addr: str,
        to_addr: str,
        locale: str,
        variables: dict[str, Any],
    ) -> None:
        subject, body = self.renderer.render(template, locale, variables)
        self.sender.send(from_addr, to_addr, subject, body)
        logger.info("Sent %s mail (locale=%s)", template, locale)
