from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

from readiness_report.config.loader import DEFAULT_CONFIG_PATH, default_config, load_config
from readiness_report.config.settings import load_settings, save_settings
from readiness_report.errors import ConfigError, FileAccessError, JobConflictError, SchemaError
from readiness_report.excel.aliases import resolve_columns
from readiness_report.excel.blocks import build_blocks
from readiness_report.excel.reader import is_special_sheet, list_sheets, normalize_sheet, raw_rows, read_excel_file
from readiness_report.logging.error_log import ErrorLogBuffer
from readiness_report.logging.init import log_summary, set_debug, setup_logging
from readiness_report.models.config_models import ReportConfig, ReportSettings
from readiness_report.models.report_job import JobState, ReportJob
from readiness_report.services.jobs import ReportJobController
from readiness_report.services.progress import ProgressTracker
from readiness_report.services.summary import render_summary_line
from readiness_report.services.validation import check_source_file

"""CLI entrypoint.

Flow:
- Load .env (SMTP_* overrides), config/report.yml and settings.json
- Pick the report mode (standard / special / batch, or auto from the sheet name)
- Submit through the job controller and poll it, driving a tqdm bar
- Buffer failed job / artifacts into the JSON Lines error log, print SUMMARY

Exit codes:
    0   completed (including "nothing to do")
    1   fatal: config / settings / source file / arguments
    2   job failed
    3   job timed out
    130 cancelled with Ctrl-C
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_FAILED = 2
EXIT_TIMED_OUT = 3
EXIT_INTERRUPTED = 130

MODES = ("auto", "standard", "special", "batch")
DEFAULT_SETTINGS_PATH = Path("settings.json")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv (.env の値で既存環境変数を上書き)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _iso_date(text: str) -> date:
    try:
        return date.fromisoformat(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {text!r}") from e


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="readiness-report",
        description="Release-readiness status report generator",
    )
    p.add_argument("workbook", nargs="?", help="Tracker workbook (.xlsx)")
    p.add_argument("--sheet", help="Worksheet to report on (omit in auto mode for a batch run)")
    p.add_argument("--mode", choices=MODES, default="auto", help="Report form (default: auto)")
    p.add_argument("--output", help="Output folder (overrides OutputFolder from settings)")
    p.add_argument("--settings", default=str(DEFAULT_SETTINGS_PATH), help="settings.json path")
    p.add_argument("--config", help=f"Application config (default: {DEFAULT_CONFIG_PATH} when present)")
    p.add_argument("--today", type=_iso_date, help="Run date override (YYYY-MM-DD)")
    p.add_argument("--recipients", help="Report recipients, ';' separated (overrides settings)")
    p.add_argument("--escalation-recipients", help="Escalation recipients, ';' separated (overrides settings)")
    p.add_argument("--escalation-days", type=int, help="Escalation threshold in days (overrides settings)")
    p.add_argument("--list-sheets", action="store_true", help="Print worksheet names then exit")
    p.add_argument("--inspect-data", action="store_true", help="Print detected headers & first rows then exit")
    p.add_argument("--save-settings", action="store_true", help="Write the effective settings back to --settings")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _load_app_config(args: argparse.Namespace) -> ReportConfig:
    if args.config:
        return load_config(Path(args.config))
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return default_config()


def _effective_settings(args: argparse.Namespace, settings: ReportSettings) -> ReportSettings:
    if args.output:
        settings = replace(settings, output_folder=args.output)
    if args.recipients is not None:
        settings = replace(settings, recipients=args.recipients)
    if args.escalation_recipients is not None:
        settings = replace(settings, escalation_recipients=args.escalation_recipients)
    if args.escalation_days is not None:
        if args.escalation_days < 1:
            raise ConfigError(f"escalation days must be >= 1, got {args.escalation_days}")
        settings = replace(settings, escalation_days=args.escalation_days)
    return settings


def _resolve_mode(mode: str, sheet: str | None, cfg: ReportConfig) -> str:
    if mode == "auto":
        if sheet is None:
            return "batch"
        return "special" if is_special_sheet(sheet, cfg.special_sheets) else "standard"
    return mode


def _inspect_data(workbook: Path, cfg: ReportConfig, sheet: str | None) -> int:
    try:
        frames = read_excel_file(workbook, target_sheets=[sheet] if sheet else None)
    except (FileAccessError, SchemaError) as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    for name, df in frames.items():
        if is_special_sheet(name, cfg.special_sheets):
            blocks = build_blocks(raw_rows(df), cfg.aliases, cfg.header_match_threshold)
            print(f"SHEET: {name} layout=special blocks={len(blocks)}")
            for b in blocks:
                print(f"  block row={b.start_row_index + 1} rows={len(b.data_range)} fields={list(b.positional_map.values())}")
            continue
        sd = normalize_sheet(df, name, cfg.aliases, cfg.header_match_threshold)
        print(f"SHEET: {name} layout=standard header_row={sd.header_row_index + 1} cols={sd.columns}")
        print(f"  column_map={resolve_columns(sd.columns, cfg.aliases)}")
        # datetime 含む場合の表示用に isoformat へ
        for r in sd.rows[:3]:
            print("  row=", {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in r.items()})
    return EXIT_SUCCESS


def _submit(
    controller: ReportJobController,
    mode: str,
    workbook: Path,
    sheet: str | None,
    settings: ReportSettings,
    today: date | None,
) -> ReportJob:
    output = Path(settings.output_folder)
    if mode == "batch":
        return controller.run_batch_report(workbook, output, today=today)
    if sheet is None:
        raise ValueError(f"--sheet is required for mode={mode}")
    if mode == "special":
        return controller.run_special_report(workbook, sheet, output, today=today)
    return controller.run_standard_report(
        workbook,
        sheet,
        output,
        recipients=settings.recipient_list(),
        escalation_recipients=settings.escalation_recipient_list(),
        escalation_days=settings.escalation_days,
        today=today,
    )


def _exit_code(job: ReportJob) -> int:
    if job.state is JobState.COMPLETED:
        return EXIT_SUCCESS
    if job.state is JobState.TIMED_OUT:
        return EXIT_TIMED_OUT
    return EXIT_FAILED


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # argv=[] (テストからの呼び出し) で sys.argv を読まないよう None のときのみ
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        set_debug(logger)
        logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)

    try:
        cfg = _load_app_config(args)
        settings_path = Path(args.settings)
        settings = load_settings(settings_path, default_escalation_days=cfg.escalation_days)
        settings = _effective_settings(args, settings)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.save_settings:
        save_settings(settings_path, settings)
        logger.info(f"settings saved: {settings_path}")
        if args.workbook is None:
            return EXIT_SUCCESS

    if args.workbook is None:
        logger.error("no workbook given")
        return EXIT_FATAL
    workbook = Path(args.workbook)
    source_error = check_source_file(workbook)
    if source_error is not None:
        logger.error(f"source: {source_error}")
        return EXIT_FATAL

    if args.list_sheets:
        try:
            for name in list_sheets(workbook):
                print(name)
        except FileAccessError as e:
            logger.error(f"source: {e}")
            return EXIT_FATAL
        return EXIT_SUCCESS

    if args.inspect_data:
        return _inspect_data(workbook, cfg, args.sheet)

    mode = _resolve_mode(args.mode, args.sheet, cfg)
    if mode in ("standard", "special") and not args.sheet:
        logger.error(f"--sheet is required for mode={mode}")
        return EXIT_FATAL

    logger.info(f"workbook={workbook} mode={mode} sheet={args.sheet or '*'} output={settings.output_folder}")

    controller = ReportJobController(cfg)
    job: ReportJob | None = None
    try:
        job = _submit(controller, mode, workbook, args.sheet, settings, args.today)
        with ProgressTracker(description=f"{mode} report") as tracker:
            controller.wait(job, on_progress=lambda j: tracker.update(j.progress, j.activity))
    except JobConflictError as e:
        logger.error(f"submit: {e}")
        return EXIT_FATAL
    except KeyboardInterrupt:
        logger.warning("interrupted, cancelling job")
        if job is not None:
            controller.cancel(job)
        return EXIT_INTERRUPTED
    finally:
        controller.close()

    error_log = ErrorLogBuffer()
    error_log.record_job(job)
    log_path = error_log.flush()
    if log_path is not None:
        logger.info(f"error log: {log_path}")

    if job.result is not None:
        for out in job.result.outputs:
            logger.info(f"output: {out}")
        for skipped in job.result.skipped_sheets:
            logger.warning(f"skipped sheet={skipped.sheet}: {skipped.reason}")
    logger.info(job.summary)

    # log_summary が "SUMMARY " を付けるので先頭を除く
    log_summary(render_summary_line(job)[len("SUMMARY "):])
    return _exit_code(job)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
