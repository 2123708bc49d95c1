from __future__ import annotations

import html
import os
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

import pandas as pd

from ..errors import RenderError, WriteError
from ..excel.aliases import CANONICAL_FIELDS, DISPLAY_NAMES
from ..models.rows import NormalizedRow
from .validation import is_file_locked

"""Report rendering.

Two artifacts per report:
- an HTML document: one table per section, one <tr> per row, CSS class chosen
  from the status value, every cell escaped, wrapped in a fixed page template
- a tabular export (.xlsx via pandas/openpyxl) with canonical column headers

Cell text is stripped of <script> elements and javascript: URIs before
escaping, and the finished document gets the same pass before it is written.

Writes go to a job-scoped temp file in the target folder and are moved into
place with os.replace, so an interrupted write never leaves a half-written
report under the final name.
"""

__all__ = [
    "DAYS_UNTIL_DUE",
    "DAYS_OVERDUE",
    "ReportSection",
    "SheetReport",
    "sanitize_html",
    "status_css_class",
    "sanitize_sheet_name",
    "report_filename",
    "temp_path_for",
    "cleanup_temp_files",
    "render_table",
    "render_html",
    "write_html",
    "write_export",
]

DAYS_UNTIL_DUE = "Days Until Due"
DAYS_OVERDUE = "Days Overdue"

STANDARD = "standard"
SPECIAL = "special"

GREEN = "status-green"
YELLOW = "status-yellow"
RED = "status-red"
NEUTRAL = "status-none"

# flavor -> normalized status -> css class
STATUS_THEMES: dict[str, dict[str, str]] = {
    STANDARD: {
        "complete": GREEN,
        "in progress": YELLOW,
        "due-soon": YELLOW,
        "pending": RED,
        "not-started": RED,
    },
    SPECIAL: {
        "complete": GREEN,
        "in-progress": YELLOW,
        "due-soon": YELLOW,
        "pending": RED,
        "not-started": RED,
    },
}

_SCRIPT_BLOCK_RE = re.compile(r"<\s*script\b[^>]*>.*?<\s*/\s*script\s*>", re.IGNORECASE | re.DOTALL)
_SCRIPT_TAG_RE = re.compile(r"<\s*/?\s*script\b[^>]*>?", re.IGNORECASE)
_JS_URI_RE = re.compile(r"j\s*a\s*v\s*a\s*s\s*c\s*r\s*i\s*p\s*t\s*:", re.IGNORECASE)
_ILLEGAL_NAME_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_EXCEL_TITLE_RE = re.compile(r"[\[\]:*?/\\]")

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title}</title>
<style>
body {{ font-family: Calibri, Arial, sans-serif; color: #333; margin: 24px; }}
h1 {{ color: #2c3e50; font-size: 1.5em; }}
h2 {{ color: #2c3e50; font-size: 1.15em; margin-top: 28px; }}
table {{ border-collapse: collapse; width: 100%; margin: 12px 0; }}
th {{ background: #2c3e50; color: #fff; text-align: left; padding: 6px 10px; }}
td {{ border-bottom: 1px solid #eee; padding: 6px 10px; }}
tr.status-green td {{ background: #e8f8ec; }}
tr.status-yellow td {{ background: #fff8d6; }}
tr.status-red td {{ background: #fdecea; }}
.footer {{ color: #95a5a6; font-size: 85%; margin-top: 32px; }}
</style>
</head>
<body>
<h1>{title}</h1>
{body}
<p class="footer">Generated {generated}</p>
</body>
</html>
"""


@dataclass(frozen=True)
class ReportSection:
    title: str
    columns: list[str]  # canonical fields, then derived columns
    rows: list[NormalizedRow]
    extra: dict[str, list[Any]] = field(default_factory=dict)  # derived column -> per-row values


@dataclass(frozen=True)
class SheetReport:
    report_type: str  # Standard / Special / Batch
    flavor: str  # standard / special
    sheet: str
    sections: list[ReportSection]
    generated_at: datetime
    run_date: date

    @property
    def title(self) -> str:
        return f"{self.report_type} Readiness Report - {self.sheet}"

    @property
    def row_count(self) -> int:
        return sum(len(s.rows) for s in self.sections)


def sanitize_html(text: str) -> str:
    """Strip <script> elements/tags and javascript: URIs."""
    text = _SCRIPT_BLOCK_RE.sub("", text)
    text = _SCRIPT_TAG_RE.sub("", text)
    return _JS_URI_RE.sub("", text)


def _status_key(status: str, flavor: str) -> str:
    key = status.strip().lower()
    if flavor == SPECIAL:
        key = re.sub(r"[\s_]+", "-", key)
    return key


def status_css_class(status: Any, flavor: str = STANDARD) -> str:
    if status is None:
        return NEUTRAL
    theme = STATUS_THEMES.get(flavor, STATUS_THEMES[STANDARD])
    return theme.get(_status_key(str(status), flavor), NEUTRAL)


def sanitize_sheet_name(name: str) -> str:
    cleaned = _ILLEGAL_NAME_RE.sub("_", str(name)).strip().strip(".")
    return cleaned or "Sheet"


def _excel_title(name: str) -> str:
    # ワークシート名は 31 文字まで、[]:*?/\ 不可
    return _EXCEL_TITLE_RE.sub("_", str(name)).strip()[:31] or "Report"


def report_filename(report_type: str, sheet: str, run_date: date, suffix: str) -> str:
    return f"{report_type}_{sanitize_sheet_name(sheet)}_{run_date:%Y-%m-%d}{suffix}"


def temp_path_for(target: Path, job_id: str) -> Path:
    return target.with_name(f".{target.name}.{job_id}.tmp")


def cleanup_temp_files(folder: Path, job_id: str) -> list[Path]:
    """Remove temp files left behind by ``job_id`` (e.g. after a forced stop)."""
    removed: list[Path] = []
    if not folder.is_dir():
        return removed
    for p in folder.glob(f".*.{job_id}.tmp"):
        try:
            p.unlink()
            removed.append(p)
        except OSError:
            continue
    return removed


def columns_for(column_names: Sequence[str], *, with_due: bool) -> list[str]:
    present = [c for c in CANONICAL_FIELDS if c in column_names]
    return present + ([DAYS_UNTIL_DUE] if with_due else [])


def format_cell(column: str, row: NormalizedRow, extra: Any = None) -> str:
    if column == DAYS_UNTIL_DUE:
        value: Any = row.days_until_due
    elif column in CANONICAL_FIELDS:
        value = row.get(column)
        if column == "TargetDate" and row.due_date is not None:
            value = row.due_date
    else:
        value = extra
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _cell(text: str) -> str:
    return html.escape(sanitize_html(text), quote=True)


def render_table(section: ReportSection, flavor: str = STANDARD) -> str:
    """HTML <table> fragment for one section."""
    head = "".join(f"<th>{_cell(DISPLAY_NAMES.get(c, c))}</th>" for c in section.columns)
    lines = [f"<table>\n<tr>{head}</tr>"]
    for i, row in enumerate(section.rows):
        css = status_css_class(row.get("Status"), flavor)
        cells = []
        for col in section.columns:
            extra = section.extra[col][i] if col in section.extra else None
            cells.append(f"<td>{_cell(format_cell(col, row, extra))}</td>")
        lines.append(f'<tr class="{css}">{"".join(cells)}</tr>')
    lines.append("</table>")
    return "\n".join(lines)


def render_html(report: SheetReport) -> str:
    try:
        parts: list[str] = []
        for section in report.sections:
            if section.title:
                parts.append(f"<h2>{_cell(section.title)}</h2>")
            parts.append(render_table(section, report.flavor))
        document = PAGE_TEMPLATE.format(
            title=_cell(report.title),
            body="\n".join(parts),
            generated=report.generated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    except (KeyError, ValueError, TypeError) as e:
        raise RenderError(f"failed to render html: {e}", sheet=report.sheet) from e
    return sanitize_html(document)


def _prepare_target(target: Path, sheet: str) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise WriteError(f"output folder not writable: {target.parent} ({e})", sheet=sheet) from e
    if is_file_locked(target):
        raise WriteError(f"output file is open in another program: {target}", sheet=sheet)


def write_html(report: SheetReport, target: Path, job_id: str) -> Path:
    """Render and write the HTML artifact (UTF-8). Raises RenderError / WriteError."""
    document = render_html(report)
    _prepare_target(target, report.sheet)
    tmp = temp_path_for(target, job_id)
    try:
        tmp.write_text(document, encoding="utf-8")
        os.replace(tmp, target)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise WriteError(f"failed to write {target}: {e}", sheet=report.sheet) from e
    return target


def export_frame(report: SheetReport) -> pd.DataFrame:
    records: list[dict[str, Any]] = []
    multi = len(report.sections) > 1 or report.flavor == SPECIAL
    columns: list[str] = ["Section"] if multi else []
    for section in report.sections:
        for col in section.columns:
            if col not in columns:
                columns.append(col)
    for section in report.sections:
        for i, row in enumerate(section.rows):
            rec: dict[str, Any] = {"Section": section.title} if multi else {}
            for col in section.columns:
                if col == DAYS_UNTIL_DUE:
                    rec[col] = row.days_until_due
                elif col in CANONICAL_FIELDS:
                    value = row.due_date if (col == "TargetDate" and row.due_date is not None) else row.get(col)
                    rec[col] = sanitize_html(value) if isinstance(value, str) else value
                else:
                    rec[col] = section.extra[col][i] if col in section.extra else None
            records.append(rec)
    return pd.DataFrame(records, columns=columns)


def write_export(report: SheetReport, target: Path, job_id: str) -> Path:
    """Write the spreadsheet export. Raises RenderError / WriteError."""
    try:
        frame = export_frame(report)
    except (KeyError, ValueError, TypeError) as e:
        raise RenderError(f"failed to build export table: {e}", sheet=report.sheet) from e
    _prepare_target(target, report.sheet)
    tmp = temp_path_for(target, job_id)
    try:
        with pd.ExcelWriter(tmp, engine="openpyxl") as writer:
            frame.to_excel(writer, sheet_name=_excel_title(report.sheet), index=False)
        os.replace(tmp, target)
    except (OSError, ValueError) as e:
        tmp.unlink(missing_ok=True)
        raise WriteError(f"failed to write {target}: {e}", sheet=report.sheet) from e
    return target
