from __future__ import annotations

import html
import logging
import smtplib
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from ..errors import EscalationSendError
from ..models.config_models import MailConfig
from ..models.report_result import ArtifactError
from ..models.rows import NormalizedRow
from .render import DAYS_OVERDUE, STANDARD, ReportSection, columns_for, render_table, sanitize_html
from .validation import invalid_addresses

"""Escalation evaluation and mail dispatch.

A row is escalated iff it has a resolvable due date and is overdue by at least
``threshold`` days: (today - due).days >= threshold.

Sending goes through a MailSender collaborator. Validation or send failures
are logged and returned as an ArtifactError; they never abort the report.
"""

__all__ = [
    "days_overdue",
    "evaluate_escalations",
    "MailSender",
    "SmtpMailSender",
    "EscalationOutcome",
    "dispatch_escalations",
    "build_mail_sender",
]

logger = logging.getLogger(__name__)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def days_overdue(row: NormalizedRow, today: date) -> int | None:
    if row.due_date is None:
        return None
    return (_as_date(today) - row.due_date.date()).days


def evaluate_escalations(rows: Sequence[NormalizedRow], threshold: int, today: date) -> list[NormalizedRow]:
    """Rows overdue by at least ``threshold`` days, in input order."""
    if threshold < 1:
        raise ValueError(f"escalation threshold must be a positive number of days, got {threshold}")
    escalated: list[NormalizedRow] = []
    for row in rows:
        overdue = days_overdue(row, today)
        if overdue is not None and overdue >= threshold:
            escalated.append(row)
    return escalated


class MailSender:
    """Mail collaborator interface."""

    def send(self, recipients: Sequence[str], subject: str, html_body: str) -> None:
        raise NotImplementedError


class SmtpMailSender(MailSender):
    """Plain SMTP transport (optionally STARTTLS + login)."""

    def __init__(self, config: MailConfig, timeout: float = 30.0) -> None:
        self.config = config
        self.timeout = timeout

    def send(self, recipients: Sequence[str], subject: str, html_body: str) -> None:
        cfg = self.config
        if not cfg.configured:
            raise EscalationSendError("no mail transport configured (smtp_server/sender)")
        msg = MIMEMultipart("alternative")
        msg["From"] = cfg.sender or ""
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.attach(MIMEText(html_body, "html", "utf-8"))
        try:
            with smtplib.SMTP(cfg.smtp_server or "", cfg.smtp_port, timeout=self.timeout) as server:
                if cfg.use_tls:
                    server.starttls()
                if cfg.user:
                    server.login(cfg.user, cfg.password or "")
                server.sendmail(cfg.sender or "", list(recipients), msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise EscalationSendError(f"mail dispatch failed: {e}") from e
        logger.info("mail sent to: %s", ", ".join(recipients))


def build_mail_sender(config: MailConfig) -> MailSender:
    return SmtpMailSender(config)


@dataclass(frozen=True)
class EscalationOutcome:
    escalated: list[NormalizedRow]
    sent: bool = False
    error: ArtifactError | None = None


def render_escalation_body(rows: Sequence[NormalizedRow], sheet: str, threshold: int, today: date) -> str:
    section = ReportSection(
        title="",
        columns=[*columns_for([k for r in rows for k in r.fields], with_due=False), DAYS_OVERDUE],
        rows=list(rows),
        extra={DAYS_OVERDUE: [days_overdue(r, today) for r in rows]},
    )
    intro = (
        f"<p>{len(rows)} item(s) on sheet <strong>{_text(sheet)}</strong> are overdue by "
        f"{threshold} or more days as of {_as_date(today).isoformat()}.</p>"
    )
    return sanitize_html(f"<html><body>{intro}\n{render_table(section, STANDARD)}</body></html>")


def _text(value: str) -> str:
    return html.escape(sanitize_html(value))


def dispatch_escalations(
    rows: Sequence[NormalizedRow],
    *,
    recipients: Sequence[str],
    threshold: int,
    today: date,
    has_date_column: bool,
    sender: MailSender,
    sheet: str,
) -> EscalationOutcome:
    """Evaluate and, when applicable, mail the escalation set.

    Mail is attempted only when recipients are given, the sheet has a date
    column and the recipient list validates.
    """
    escalated = evaluate_escalations(rows, threshold, today) if has_date_column else []
    if not recipients or not has_date_column:
        return EscalationOutcome(escalated=escalated)
    bad = invalid_addresses(recipients)
    if bad:
        msg = f"invalid escalation recipients: {', '.join(bad)}"
        logger.warning("escalation skipped sheet=%s: %s", sheet, msg)
        return EscalationOutcome(escalated, error=ArtifactError("escalation", "EscalationSendError", msg))
    if not escalated:
        logger.info("no escalations sheet=%s threshold=%d", sheet, threshold)
        return EscalationOutcome(escalated=escalated)
    subject = f"Escalation: {len(escalated)} overdue item(s) in {sheet}"
    try:
        sender.send(recipients, subject, render_escalation_body(escalated, sheet, threshold, today))
    except EscalationSendError as e:
        logger.error("escalation send failed sheet=%s: %s", sheet, e.message)
        return EscalationOutcome(escalated, error=ArtifactError("escalation", e.kind, e.message))
    return EscalationOutcome(escalated=escalated, sent=True)
