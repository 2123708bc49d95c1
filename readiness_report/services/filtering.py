from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from ..errors import EmptyReportError
from ..excel.aliases import ColumnMap
from ..excel.dates import normalize_date
from ..models.rows import NO_DUE, NormalizedRow
from .progress import PipelineProgress

"""Row filter & sorter.

Drops completed and blank rows, computes days-until-due from the TargetDate
field, and stable-sorts by due date (undated rows last, in insertion order).
Applying filter_normalized to its own output is a no-op.
"""

__all__ = [
    "COMPLETE_STATUSES",
    "is_complete",
    "is_blank_row",
    "to_normalized",
    "annotate_due",
    "sort_rows",
    "filter_normalized",
    "filter_rows",
]

COMPLETE_STATUSES = frozenset({"complete", "done", "closed"})


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def is_complete(status: Any) -> bool:
    if status is None:
        return False
    return str(status).strip().lower() in COMPLETE_STATUSES


def is_blank_row(row: Mapping[str, Any]) -> bool:
    return all(_blank(v) for v in row.values())


def to_normalized(raw_row: Mapping[str, Any], column_map: ColumnMap, source_row: int = -1) -> NormalizedRow:
    fields = {name: raw_row.get(literal) for name, literal in column_map.items()}
    return NormalizedRow(fields=fields, source_row=source_row)


def annotate_due(rows: Sequence[NormalizedRow], today: date) -> list[NormalizedRow]:
    """Set due_date / days_until_due / sort_date from each row's TargetDate."""
    if isinstance(today, datetime):
        today = today.date()
    out: list[NormalizedRow] = []
    for row in rows:
        due = normalize_date(row.get("TargetDate"))
        if due is None:
            out.append(row.with_due(None, NO_DUE))
        else:
            out.append(row.with_due(due, (due.date() - today).days))
    return out


def sort_rows(rows: Sequence[NormalizedRow]) -> list[NormalizedRow]:
    # sorted() は安定ソート: 同日・期日なし行は元の順序を保持
    return sorted(rows, key=lambda r: r.sort_date)


def filter_normalized(
    rows: Sequence[NormalizedRow],
    *,
    today: date,
    has_date_column: bool = True,
    sheet: str = "",
    progress: PipelineProgress | None = None,
) -> list[NormalizedRow]:
    """Filter/sort NormalizedRows (used directly for multi-table blocks)."""
    progress = progress or PipelineProgress()
    kept: list[NormalizedRow] = []
    total = len(rows)
    for i, row in enumerate(rows, start=1):
        progress.advance(i, total)
        if is_blank_row(row.fields) or is_complete(row.get("Status")):
            continue
        kept.append(row)
    if not kept:
        raise EmptyReportError("all items complete or sheet empty", sheet=sheet)
    if not has_date_column:
        return kept
    return sort_rows(annotate_due(kept, today))


def filter_rows(
    raw_rows: Sequence[Mapping[str, Any]],
    column_map: ColumnMap,
    *,
    today: date,
    sheet: str = "",
    progress: PipelineProgress | None = None,
) -> list[NormalizedRow]:
    """Filter/sort the RawRows of a standard sheet.

    A row is dropped when every cell is blank or its Status is complete/done/closed
    (case-insensitive).

    Raises:
        EmptyReportError: no row survives
    """
    progress = progress or PipelineProgress()
    status_col = column_map.get("Status")
    kept: list[NormalizedRow] = []
    total = len(raw_rows)
    for i, raw in enumerate(raw_rows, start=1):
        progress.advance(i, total)
        if is_blank_row(raw):
            continue
        if status_col is not None and is_complete(raw.get(status_col)):
            continue
        kept.append(to_normalized(raw, column_map, source_row=i - 1))
    if not kept:
        raise EmptyReportError("all items complete or sheet empty", sheet=sheet)
    if "TargetDate" not in column_map:
        return kept
    return sort_rows(annotate_due(kept, today))
