"""
notifications.py

SMTP delivery of reminder e-mails (implements AbstractNotifier).

Templates are small HTML fragments; every interpolated value is escaped.
A send failure is raised to the caller, which decides whether to skip or
retry.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from email.utils import parseaddr
from html import escape
from typing import Any, Dict

from application import AbstractNotifier
from config import Config

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    pass


def _details_list(rows: Dict[str, Any]) -> str:
    items = "\n".join(
        f"      <li><strong>{escape(label)}:</strong> {escape(str(value))}</li>"
        for label, value in rows.items()
    )
    return f"    <ul>\n{items}\n    </ul>"


def render_upcoming_audit(details: Dict[str, Any]) -> tuple[str, str]:
    subject = f"Upcoming Audit: {details['audit_reference']}"
    html = "\n".join([
        "    <h2>Upcoming Audit Reminder</h2>",
        "    <p>An audit is due within the next 30 days.</p>",
        "    <h3>Audit Details:</h3>",
        _details_list({
            "Audit Reference": details["audit_reference"],
            "Vessel": details["vessel_name"],
            "Audit Type": details["audit_type"],
            "Next Due Date": details["next_due_date"],
            "Days Remaining": details["days_remaining"],
        }),
        "    <p>Please ensure necessary preparations are made.</p>",
    ])
    return subject, html


def _finding_rows(details: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "Finding ID": f"#{details['finding_id']}",
        "Audit Reference": details["audit_reference"],
        "Category": details["category"],
        "Description": details["description"],
        "Responsible Person": details["responsible_person"],
        "Target Date": details["target_date"],
    }


def render_finding_due(details: Dict[str, Any]) -> tuple[str, str]:
    subject = f"Finding Due Reminder: #{details['finding_id']}"
    rows = _finding_rows(details)
    rows["Days Remaining"] = details["days_remaining"]
    html = "\n".join([
        "    <h2>Finding Due Reminder</h2>",
        "    <p>A finding is due within 7 days.</p>",
        "    <h3>Finding Details:</h3>",
        _details_list(rows),
        "    <p>Please ensure the corrective action is completed on time.</p>",
    ])
    return subject, html


def render_finding_overdue(details: Dict[str, Any]) -> tuple[str, str]:
    subject = f"Overdue Finding: #{details['finding_id']}"
    rows = _finding_rows(details)
    rows["Days Overdue"] = details["days_overdue"]
    html = "\n".join([
        "    <h2>Overdue Finding Alert</h2>",
        '    <p style="color: red;"><strong>A finding is overdue and requires immediate attention.</strong></p>',
        "    <h3>Finding Details:</h3>",
        _details_list(rows),
        "    <p>Please take immediate action to close this finding.</p>",
    ])
    return subject, html


class SmtpNotifier(AbstractNotifier):
    """
    Sends through the SMTP server named in Config.  EMAIL_SECURE selects
    implicit TLS (SMTP_SSL, usually port 465); otherwise STARTTLS is
    attempted when the server offers it.
    """

    def __init__(self, config: Config, timeout: float = 30.0):
        self.config = config
        self.timeout = timeout

    def send(self, to: str, subject: str, html: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.config.EMAIL_FROM
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("This message requires an HTML-capable mail client.")
        msg.add_alternative(html, subtype="html")

        cfg = self.config
        try:
            if cfg.EMAIL_SECURE:
                server = smtplib.SMTP_SSL(cfg.EMAIL_HOST, cfg.EMAIL_PORT, timeout=self.timeout)
            else:
                server = smtplib.SMTP(cfg.EMAIL_HOST, cfg.EMAIL_PORT, timeout=self.timeout)
            with server:
                # extensions are only known after EHLO
                server.ehlo()
                if not cfg.EMAIL_SECURE and server.has_extn("starttls"):
                    server.starttls()
                    server.ehlo()
                if cfg.EMAIL_USER:
                    server.login(cfg.EMAIL_USER, cfg.EMAIL_PASSWORD)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email to %s: %s", to, exc)
            raise EmailDeliveryError("Failed to send email") from exc
        logger.info("Email '%s' sent to %s", subject, parseaddr(to)[1] or to)

    def upcoming_audit(self, to: str, details: Dict[str, Any]) -> None:
        self.send(to, *render_upcoming_audit(details))

    def finding_due(self, to: str, details: Dict[str, Any]) -> None:
        self.send(to, *render_finding_due(details))

    def finding_overdue(self, to: str, details: Dict[str, Any]) -> None:
        self.send(to, *render_finding_overdue(details))
