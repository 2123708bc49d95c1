from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, ClassVar

import pandas as pd

from ..errors import EmptyReportError, EscalationSendError, RenderError, ReportError, SchemaError, WriteError
from ..excel.aliases import require_fields, resolve_columns
from ..excel.blocks import scan_blocks
from ..excel.reader import (
    SheetData,
    is_special_sheet,
    normalize_sheet,
    raw_rows,
    read_excel_file,
    read_raw_sheet,
    read_sheet,
)
from ..models.config_models import ReportConfig
from ..models.report_job import CommandKind
from ..models.report_result import ArtifactError, ReportResult, SkippedSheet
from .escalation import MailSender, build_mail_sender, dispatch_escalations
from .filtering import filter_normalized, filter_rows
from .progress import PipelineProgress
from .render import SPECIAL, STANDARD, ReportSection, SheetReport, columns_for, render_html, report_filename, write_export, write_html
from .validation import check_source_file, invalid_addresses

logger = logging.getLogger(__name__)

"""Report pipeline.

Runs inside the worker process. Parameters arrive as frozen dataclasses (no
module globals are read), progress goes out through a PipelineProgress.

Flow per sheet:
    read -> resolve columns (or scan header blocks) -> filter/sort
    -> escalation -> render -> write html + export -> mail -> archive

Pipeline errors (SchemaError, EmptyReportError, ...) abort the run and
propagate to the caller. Artifact failures (RenderError / WriteError, mail,
archive) are collected per artifact and never discard the other artifacts.

Cancellation is observed only at checkpoints: row-batch boundaries and once
more right before the first artifact is written.
"""

__all__ = [
    "StandardReportParams",
    "SpecialReportParams",
    "BatchReportParams",
    "run_standard_report",
    "run_special_report",
    "run_batch_report",
    "archive_source",
    "execute",
]

ARCHIVE_DIR = "Archives"


@dataclass(frozen=True)
class StandardReportParams:
    kind: ClassVar[CommandKind] = CommandKind.STANDARD

    path: Path
    worksheet: str
    output_folder: Path
    recipients: tuple[str, ...] = ()
    escalation_recipients: tuple[str, ...] = ()
    escalation_days: int = 7
    config: ReportConfig = field(default_factory=ReportConfig)
    today: date | None = None
    job_id: str = "local"


@dataclass(frozen=True)
class SpecialReportParams:
    kind: ClassVar[CommandKind] = CommandKind.SPECIAL

    path: Path
    worksheet: str
    output_folder: Path
    config: ReportConfig = field(default_factory=ReportConfig)
    today: date | None = None
    job_id: str = "local"


@dataclass(frozen=True)
class BatchReportParams:
    kind: ClassVar[CommandKind] = CommandKind.BATCH

    path: Path
    output_folder: Path
    config: ReportConfig = field(default_factory=ReportConfig)
    today: date | None = None
    job_id: str = "local"


ReportParams = StandardReportParams | SpecialReportParams | BatchReportParams


def _today(value: date | None) -> date:
    if value is None:
        return date.today()
    return value.date() if isinstance(value, datetime) else value


def _require_source(path: Path) -> None:
    err = check_source_file(path)
    if err is not None:
        raise err


# --- building sections --------------------------------------------------------

def _standard_section(
    sheet: SheetData,
    config: ReportConfig,
    today: date,
    progress: PipelineProgress,
) -> tuple[ReportSection, bool]:
    """Single-table sheet -> one section. Returns (section, has_date_column)."""
    column_map = resolve_columns(sheet.columns, config.aliases)
    require_fields(column_map, config.required_fields, sheet.sheet_name)
    logger.debug("column map sheet=%s %s", sheet.sheet_name, column_map)
    rows = filter_rows(sheet.rows, column_map, today=today, sheet=sheet.sheet_name, progress=progress)
    has_date = "TargetDate" in column_map
    section = ReportSection(title="", columns=columns_for(list(column_map), with_due=has_date), rows=rows)
    return section, has_date


def _special_sections(
    rows: list[list[Any]],
    sheet_name: str,
    config: ReportConfig,
    today: date,
    progress: PipelineProgress,
) -> list[ReportSection]:
    """Multi-table sheet -> one section per header block with actionable rows."""
    scanned = scan_blocks(
        rows,
        config.aliases,
        threshold=config.header_match_threshold,
        sheet=sheet_name,
        progress=progress,
    )
    sections: list[ReportSection] = []
    for index, sb in enumerate(scanned):
        names = list(sb.block.positional_map.values())
        has_date = "TargetDate" in names
        try:
            kept = filter_normalized(sb.rows, today=today, has_date_column=has_date, sheet=sheet_name)
        except EmptyReportError:
            logger.debug("block %d on sheet=%s has no actionable rows", index + 1, sheet_name)
            continue
        sections.append(ReportSection(
            title=f"Table {index + 1} (row {sb.block.start_row_index + 1})",
            columns=columns_for(names, with_due=has_date),
            rows=kept,
        ))
    if not sections:
        raise EmptyReportError("all items complete or sheet empty", sheet=sheet_name)
    logger.info("sheet=%s blocks=%d sections=%d", sheet_name, len(scanned), len(sections))
    return sections


# --- artifacts -----------------------------------------------------------------

def _write_artifacts(report: SheetReport, folder: Path, job_id: str) -> tuple[list[str], list[ArtifactError]]:
    """Write html and export independently; a failure of one never skips the other."""
    outputs: list[str] = []
    errors: list[ArtifactError] = []
    writers = (("html", ".html", write_html), ("export", ".xlsx", write_export))
    for artifact, suffix, writer in writers:
        target = folder / report_filename(report.report_type, report.sheet, report.run_date, suffix)
        try:
            outputs.append(str(writer(report, target, job_id)))
            logger.info("wrote %s: %s", artifact, target)
        except (RenderError, WriteError) as e:
            logger.error("%s failed sheet=%s: %s", artifact, report.sheet, e.message)
            errors.append(ArtifactError(artifact, e.kind, e.message))
    return outputs, errors


def _mail_report(report: SheetReport, recipients: tuple[str, ...], sender: MailSender) -> tuple[bool, ArtifactError | None]:
    if not recipients:
        return False, None
    bad = invalid_addresses(recipients)
    if bad:
        msg = f"invalid recipients: {', '.join(bad)}"
        logger.warning("report mail skipped sheet=%s: %s", report.sheet, msg)
        return False, ArtifactError("mail", "EscalationSendError", msg)
    try:
        sender.send(recipients, report.title, render_html(report))
    except (RenderError, EscalationSendError) as e:
        logger.error("report mail failed sheet=%s: %s", report.sheet, e.message)
        return False, ArtifactError("mail", e.kind, e.message)
    return True, None


def archive_source(
    path: Path,
    output_folder: Path,
    *,
    retries: int = 3,
    backoff_seconds: float = 1.0,
    now: datetime | None = None,
) -> Path:
    """Copy the source workbook to ``<output>/Archives/<stem>_<YYYYmmdd_HHMMSS><suffix>``.

    One attempt plus up to ``retries`` further attempts, with a fixed backoff
    between them (``retries=0`` copies once).

    Raises:
        WriteError: every attempt failed
    """
    archive_dir = output_folder / ARCHIVE_DIR
    stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    target = archive_dir / f"{path.stem}_{stamp}{path.suffix}"
    attempts = max(0, retries) + 1
    last_error: OSError | None = None
    for attempt in range(1, attempts + 1):
        try:
            archive_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, target)
            logger.info("archived source to %s", target)
            return target
        except OSError as e:
            last_error = e
            logger.warning("archive attempt %d/%d failed: %s", attempt, attempts, e)
            if attempt < attempts:
                time.sleep(backoff_seconds)
    raise WriteError(f"archive copy failed after {attempts} attempt(s): {last_error}")


def _archive(path: Path, folder: Path, config: ReportConfig) -> tuple[str | None, ArtifactError | None]:
    try:
        target = archive_source(
            path,
            folder,
            retries=config.archive.retries,
            backoff_seconds=config.archive.backoff_seconds,
        )
    except WriteError as e:
        return None, ArtifactError("archive", e.kind, e.message)
    return str(target), None


def _describe(result: ReportResult) -> str:
    where = f" for '{result.sheet}'" if result.sheet else ""
    text = f"{result.report_type} report{where}: {result.row_count} row(s), {len(result.outputs)} output(s)"
    if result.escalated_count:
        text += f", {result.escalated_count} escalated"
    if result.skipped_sheets:
        text += f", {len(result.skipped_sheets)} sheet(s) skipped"
    if result.artifact_errors:
        text += f", {len(result.artifact_errors)} artifact error(s)"
    return text


# --- entry points ----------------------------------------------------------------

def run_standard_report(
    params: StandardReportParams,
    progress: PipelineProgress | None = None,
    sender: MailSender | None = None,
) -> ReportResult:
    """Single-table report with optional recipients mail and escalation notice."""
    progress = progress or PipelineProgress()
    cfg = params.config
    today = _today(params.today)
    sender = sender or build_mail_sender(cfg.mail)

    progress.start("checking source")
    _require_source(params.path)

    progress.stage("reading worksheet", 0, 10)
    sheet = read_sheet(params.path, params.worksheet, cfg.aliases, cfg.header_match_threshold)

    progress.stage("filtering rows", 10, 60)
    section, has_date = _standard_section(sheet, cfg, today, progress)

    progress.stage("evaluating escalations", 60, 70)
    outcome = dispatch_escalations(
        section.rows,
        recipients=params.escalation_recipients,
        threshold=params.escalation_days,
        today=today,
        has_date_column=has_date,
        sender=sender,
        sheet=params.worksheet,
    )
    progress.checkpoint()

    progress.stage("writing report", 70, 90)
    report = SheetReport(
        report_type="Standard",
        flavor=STANDARD,
        sheet=params.worksheet,
        sections=[section],
        generated_at=datetime.now(),
        run_date=today,
    )
    outputs, errors = _write_artifacts(report, params.output_folder, params.job_id)
    if outcome.error is not None:
        errors.append(outcome.error)

    progress.stage("sending report", 90, 95)
    mailed, mail_error = _mail_report(report, params.recipients, sender)
    if mail_error is not None:
        errors.append(mail_error)

    progress.stage("archiving source", 95, 99)
    archive_path, archive_error = _archive(params.path, params.output_folder, cfg)
    if archive_error is not None:
        errors.append(archive_error)

    result = ReportResult(
        report_type="Standard",
        sheet=params.worksheet,
        outputs=outputs,
        row_count=report.row_count,
        escalated_count=len(outcome.escalated),
        escalation_sent=outcome.sent,
        mailed=mailed,
        archive_path=archive_path,
        artifact_errors=errors,
    )
    progress.finish()
    return _with_message(result)


def run_special_report(
    params: SpecialReportParams,
    progress: PipelineProgress | None = None,
) -> ReportResult:
    """Multi-table report: one HTML section per header block."""
    progress = progress or PipelineProgress()
    cfg = params.config
    today = _today(params.today)

    progress.start("checking source")
    _require_source(params.path)

    progress.stage("reading worksheet", 0, 10)
    rows = read_raw_sheet(params.path, params.worksheet)

    progress.stage("scanning header blocks", 10, 70)
    sections = _special_sections(rows, params.worksheet, cfg, today, progress)
    progress.checkpoint()

    progress.stage("writing report", 70, 95)
    report = SheetReport(
        report_type="Special",
        flavor=SPECIAL,
        sheet=params.worksheet,
        sections=sections,
        generated_at=datetime.now(),
        run_date=today,
    )
    outputs, errors = _write_artifacts(report, params.output_folder, params.job_id)

    progress.stage("archiving source", 95, 99)
    archive_path, archive_error = _archive(params.path, params.output_folder, cfg)
    if archive_error is not None:
        errors.append(archive_error)

    result = ReportResult(
        report_type="Special",
        sheet=params.worksheet,
        outputs=outputs,
        row_count=report.row_count,
        archive_path=archive_path,
        artifact_errors=errors,
    )
    progress.finish()
    return _with_message(result)


def _batch_sheet(
    name: str,
    df: pd.DataFrame,
    params: BatchReportParams,
    today: date,
    progress: PipelineProgress,
) -> ReportResult:
    cfg = params.config
    if is_special_sheet(name, cfg.special_sheets):
        flavor = SPECIAL
        sections = _special_sections(raw_rows(df), name, cfg, today, progress)
    else:
        flavor = STANDARD
        sheet = normalize_sheet(df, name, cfg.aliases, cfg.header_match_threshold)
        section, _ = _standard_section(sheet, cfg, today, progress)
        sections = [section]
    progress.checkpoint()
    report = SheetReport(
        report_type="Batch",
        flavor=flavor,
        sheet=name,
        sections=sections,
        generated_at=datetime.now(),
        run_date=today,
    )
    outputs, errors = _write_artifacts(report, params.output_folder, params.job_id)
    return ReportResult(
        report_type="Batch",
        sheet=name,
        outputs=outputs,
        row_count=report.row_count,
        artifact_errors=errors,
    )


def run_batch_report(
    params: BatchReportParams,
    progress: PipelineProgress | None = None,
) -> ReportResult:
    """Every worksheet in workbook order, each with the flavor its name selects.

    Sheets failing with SchemaError / EmptyReportError are skipped and recorded.

    Raises:
        EmptyReportError: no sheet produced a report
    """
    progress = progress or PipelineProgress()
    today = _today(params.today)

    progress.start("checking source")
    _require_source(params.path)

    progress.stage("reading workbook", 0, 10)
    frames = read_excel_file(params.path)

    total = ReportResult(report_type="Batch")
    rendered = 0
    count = max(1, len(frames))
    for i, (name, df) in enumerate(frames.items()):
        lo = 10 + (85 * i) // count
        hi = 10 + (85 * (i + 1)) // count
        progress.stage(f"sheet {name}", lo, hi)
        try:
            sheet_result = _batch_sheet(name, df, params, today, progress)
        except (SchemaError, EmptyReportError) as e:
            logger.warning("skipping sheet=%s: %s", name, e.message)
            total = total.merged(ReportResult(
                report_type="Batch",
                skipped_sheets=[SkippedSheet(sheet=name, kind=e.kind, reason=e.message)],
            ))
            continue
        rendered += 1
        total = total.merged(sheet_result)

    if rendered == 0:
        raise EmptyReportError("no worksheet produced a report")

    progress.stage("archiving source", 95, 99)
    archive_path, archive_error = _archive(params.path, params.output_folder, params.config)
    extra = ReportResult(
        report_type="Batch",
        archive_path=archive_path,
        artifact_errors=[archive_error] if archive_error is not None else [],
    )
    result = total.merged(extra)
    progress.finish()
    return _with_message(result)


def _with_message(result: ReportResult) -> ReportResult:
    return replace(result, message=_describe(result))


def execute(params: ReportParams, progress: PipelineProgress | None = None) -> ReportResult:
    """Dispatch on the parameter type."""
    if isinstance(params, StandardReportParams):
        return run_standard_report(params, progress)
    if isinstance(params, SpecialReportParams):
        return run_special_report(params, progress)
    if isinstance(params, BatchReportParams):
        return run_batch_report(params, progress)
    raise ReportError(f"unsupported report parameters: {type(params).__name__}")
