"""SMTP email sender for assignment notifications.

Delivers "form assigned", "forms assigned" digest and reminder emails via
an SMTP relay.  Exactly one delivery attempt is made per message; the
caller decides what a failure means.

Safety: recipient addresses are never logged, only the caller-supplied
reference (an evaluator id).
"""
from __future__ import annotations

import html
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from string import Template
from typing import Literal

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"

NotificationKind = Literal["single", "digest", "reminder"]


# ---------------------------------------------------------------------------
# DeliveryReceipt
# ---------------------------------------------------------------------------

@dataclass
class DeliveryReceipt:
    """Record of a single notification delivery attempt."""

    reference: str
    kind: NotificationKind
    status: Literal["SENT", "FAILED", "SKIPPED"]
    timestamp: datetime
    smtp_response: str | None
    attempt_count: int


@dataclass(frozen=True)
class ReminderItem:
    form_title: str
    subject_name: str
    link: str


# ---------------------------------------------------------------------------
# Template rendering
# ---------------------------------------------------------------------------

def _load_template(template_dir: str | Path, kind: str) -> str:
    """Return the HTML template for *kind*, falling back to ``default_email.html``."""
    template_dir = Path(template_dir)
    kind_path = template_dir / f"{kind}_email.html"
    if kind_path.is_file():
        return kind_path.read_text(encoding="utf-8")

    default_path = template_dir / "default_email.html"
    if default_path.is_file():
        return default_path.read_text(encoding="utf-8")

    raise FileNotFoundError(
        f"No template found for {kind!r} and no default_email.html in {template_dir}"
    )


def _render(template_html: str, markup: dict[str, str] | None = None, **values: object) -> str:
    """Substitute escaped *values* and pre-rendered *markup* into the template."""
    escaped = {key: html.escape(str(value)) for key, value in values.items()}
    escaped.update(markup or {})
    return Template(template_html).safe_substitute(**escaped)


def _render_items(items: list[ReminderItem]) -> str:
    return "\n".join(
        f'      <li><a href="{html.escape(item.link)}">{html.escape(item.form_title)}</a>'
        f" for {html.escape(item.subject_name)}</li>"
        for item in items
    )


# ---------------------------------------------------------------------------
# EmailSender
# ---------------------------------------------------------------------------

class EmailSender:
    """Send assignment notification emails via SMTP."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int = 25,
        sender_address: str = "noreply@feedback360.local",
        template_dir: str | Path | None = None,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender_address = sender_address
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR

    # -- public interface -----------------------------------------------------

    def send_single(
        self,
        evaluator_email: str,
        evaluator_name: str,
        subject_name: str,
        survey_title: str,
        link: str,
        credential_display: str,
        *,
        tenant_name: str = "",
        reference: str = "",
    ) -> DeliveryReceipt:
        body = _render(
            _load_template(self.template_dir, "single"),
            evaluator_name=evaluator_name,
            subject_name=subject_name,
            survey_title=survey_title,
            tenant_name=tenant_name,
            link=link,
            credential_display=credential_display,
        )
        return self._deliver(
            "single",
            evaluator_email,
            f"Feedback requested: {subject_name}",
            body,
            reference,
        )

    def send_digest(
        self,
        evaluator_email: str,
        evaluator_name: str,
        count: int,
        survey_title: str,
        dashboard_link: str,
        credential_display: str,
        *,
        tenant_name: str = "",
        reference: str = "",
    ) -> DeliveryReceipt:
        body = _render(
            _load_template(self.template_dir, "digest"),
            evaluator_name=evaluator_name,
            count=count,
            survey_title=survey_title,
            tenant_name=tenant_name,
            link=dashboard_link,
            credential_display=credential_display,
        )
        return self._deliver(
            "digest",
            evaluator_email,
            f"{count} feedback forms assigned to you",
            body,
            reference,
        )

    def send_reminder(
        self,
        evaluator_email: str,
        evaluator_name: str,
        items: list[ReminderItem],
        total_count: int,
        dashboard_link: str,
        *,
        tenant_name: str = "",
        reference: str = "",
    ) -> DeliveryReceipt:
        hidden = max(total_count - len(items), 0)
        body = _render(
            _load_template(self.template_dir, "reminder"),
            markup={
                "items_html": _render_items(items),
                "more_html": f"<p>+{hidden} more</p>" if hidden else "",
            },
            evaluator_name=evaluator_name,
            count=total_count,
            tenant_name=tenant_name,
            link=dashboard_link,
        )
        return self._deliver(
            "reminder",
            evaluator_email,
            f"Reminder: {total_count} pending feedback form(s)",
            body,
            reference,
        )

    # -- transport ------------------------------------------------------------

    def _deliver(
        self,
        kind: NotificationKind,
        recipient: str,
        subject_line: str,
        body: str,
        reference: str,
    ) -> DeliveryReceipt:
        if not recipient:
            logger.info("No recipient address for %s notification %s, skipping", kind, reference)
            return DeliveryReceipt(
                reference=reference,
                kind=kind,
                status="SKIPPED",
                timestamp=datetime.now(timezone.utc),
                smtp_response=None,
                attempt_count=0,
            )

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject_line
        msg["From"] = self.sender_address
        msg["To"] = recipient
        msg.attach(MIMEText(body, "html"))

        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.sendmail(self.sender_address, [recipient], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP error for %s notification %s: %s", kind, reference, exc)
            return DeliveryReceipt(
                reference=reference,
                kind=kind,
                status="FAILED",
                timestamp=datetime.now(timezone.utc),
                smtp_response=str(exc),
                attempt_count=1,
            )

        logger.info("Delivered %s notification %s", kind, reference)
        return DeliveryReceipt(
            reference=reference,
            kind=kind,
            status="SENT",
            timestamp=datetime.now(timezone.utc),
            smtp_response="250 OK",
            attempt_count=1,
        )
