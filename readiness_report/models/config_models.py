from __future__ import annotations

import re
from dataclasses import dataclass, field

from ..excel.aliases import ColumnAliasTable

"""Config dataclasses for the report generator.

ReportConfig comes from config/report.yml (static, loaded once at start);
ReportSettings is the user-editable settings.json shape. Both are frozen and
passed by value into jobs.
"""

__all__ = [
    "MailConfig",
    "ArchivePolicy",
    "ReportConfig",
    "ReportSettings",
    "split_addresses",
]

DEFAULT_SPECIAL_SHEETS: tuple[str, ...] = ("Release Checklist", "Go-Live Readiness")

_ADDRESS_SPLIT = re.compile(r"[;,]")


def split_addresses(joined: str | None) -> list[str]:
    """Split a semicolon/comma joined address string, trimming and dropping empties."""
    if not joined:
        return []
    return [a.strip() for a in _ADDRESS_SPLIT.split(joined) if a.strip()]


@dataclass(frozen=True)
class MailConfig:
    """SMTP transport. ``smtp_server=None`` means no transport is configured."""
    smtp_server: str | None = None
    smtp_port: int = 25
    sender: str | None = None
    use_tls: bool = False
    user: str | None = None
    password: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.smtp_server and self.sender)


@dataclass(frozen=True)
class ArchivePolicy:
    retries: int = 3  # 初回の後の再試行回数
    backoff_seconds: float = 1.0


@dataclass(frozen=True)
class ReportConfig:
    """Root application configuration."""
    aliases: ColumnAliasTable = field(default_factory=ColumnAliasTable)
    required_fields: tuple[str, ...] = ("Status",)
    special_sheets: tuple[str, ...] = DEFAULT_SPECIAL_SHEETS
    header_match_threshold: int = 2
    escalation_days: int = 7
    job_timeout_seconds: float = 600.0
    poll_interval_seconds: float = 0.2
    archive: ArchivePolicy = field(default_factory=ArchivePolicy)
    mail: MailConfig = field(default_factory=MailConfig)


@dataclass(frozen=True)
class ReportSettings:
    """settings.json: {Recipients, EscalationDays, EscalationRecipients, OutputFolder}."""
    recipients: str = ""
    escalation_days: int = 7
    escalation_recipients: str = ""
    output_folder: str = "./reports"

    def recipient_list(self) -> list[str]:
        return split_addresses(self.recipients)

    def escalation_recipient_list(self) -> list[str]:
        return split_addresses(self.escalation_recipients)

    def to_json_dict(self) -> dict[str, object]:
        return {
            "Recipients": self.recipients,
            "EscalationDays": self.escalation_days,
            "EscalationRecipients": self.escalation_recipients,
            "OutputFolder": self.output_folder,
        }
