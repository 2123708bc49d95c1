from __future__ import annotations

import re
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from ..errors import FileAccessError, SchemaError
from .aliases import ColumnAliasTable, match_alias

"""Workbook reading.

Sheets are always parsed without a header assumption (header=None) so both
layouts share one read path:
- standard sheets: one header row (located by alias hits) followed by data rows
- special sheets: several stacked header blocks, handled by excel.blocks

Only empty cells become NA. Literal strings such as "N/A" or "TBD" stay as text
so the date normalizer can interpret them.
"""

__all__ = [
    "SheetData",
    "read_excel_file",
    "read_sheet",
    "read_raw_sheet",
    "list_sheets",
    "raw_rows",
    "locate_header_row",
    "normalize_sheet",
    "normalize_sheet_name",
    "is_special_sheet",
]

HEADER_SCAN_LIMIT = 10

_NAME_STRIP_RE = re.compile(r"[^0-9a-z]+")


@dataclass
class SheetData:
    sheet_name: str
    columns: list[str]
    rows: list[dict[str, Any]]  # RawRow: literal header -> cell value (blank rows included)
    header_row_index: int = 0


def _open(path: Path) -> pd.ExcelFile:
    try:
        return pd.ExcelFile(path)
    except (FileNotFoundError, PermissionError, IsADirectoryError) as e:
        raise FileAccessError(f"cannot open workbook {path}: {e}") from e
    except (zipfile.BadZipFile, ValueError, OSError) as e:
        raise FileAccessError(f"unreadable workbook {path}: {e}") from e


def list_sheets(path: Path) -> list[str]:
    with _open(path) as xls:
        return [str(name) for name in xls.sheet_names]


def read_excel_file(path: Path, target_sheets: Iterable[str] | None = None) -> dict[str, pd.DataFrame]:
    """Read a workbook returning raw DataFrames keyed by sheet name.

    Parameters
    ----------
    path: workbook path
    target_sheets: restrict to these sheet names (None = all sheets, workbook order)

    Raises
    ------
    FileAccessError: the workbook cannot be opened
    SchemaError: a requested sheet does not exist
    """
    wanted = None if target_sheets is None else [str(s) for s in target_sheets]
    dfs: dict[str, pd.DataFrame] = {}
    with _open(path) as xls:
        names = [str(n) for n in xls.sheet_names]
        if wanted is not None:
            for name in wanted:
                if name not in names:
                    raise SchemaError("worksheet not found in workbook", sheet=name)
        for name in names:
            if wanted is not None and name not in wanted:
                continue
            # ヘッダなしで生読み。空セルのみ NA 扱い ("N/A" 等の文字列は保持)
            df = xls.parse(name, header=None, dtype=object, keep_default_na=False, na_values=[""])
            dfs[name] = df
    return dfs


def _clean(value: Any) -> Any:
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return value
    if isinstance(value, str) and not value.strip():
        return None
    return value


def raw_rows(df: pd.DataFrame) -> list[list[Any]]:
    """Positional rows with NA normalized to None."""
    return [[_clean(v) for v in row] for row in df.itertuples(index=False, name=None)]


def locate_header_row(rows: list[list[Any]], table: ColumnAliasTable, threshold: int = 2) -> int:
    """Index of the header row among the first HEADER_SCAN_LIMIT rows.

    The first row with at least ``threshold`` cells matching a known alias wins
    (title rows above the header are skipped). Falls back to 0.
    """
    for idx, row in enumerate(rows[:HEADER_SCAN_LIMIT]):
        hits = sum(1 for cell in row if match_alias(cell, table) is not None)
        if hits >= threshold:
            return idx
    return 0


def normalize_sheet(
    df: pd.DataFrame,
    sheet_name: str,
    table: ColumnAliasTable,
    threshold: int = 2,
) -> SheetData:
    """Split a raw single-table sheet into literal headers and RawRows."""
    rows = raw_rows(df)
    if not rows:
        return SheetData(sheet_name=sheet_name, columns=[], rows=[])
    header_idx = locate_header_row(rows, table, threshold)
    header = rows[header_idx]
    columns: list[str] = []
    positions: list[tuple[int, str]] = []
    for pos, cell in enumerate(header):
        if cell is None:
            continue
        name = str(cell).strip()
        columns.append(name)
        positions.append((pos, name))

    data: list[dict[str, Any]] = []
    for raw in rows[header_idx + 1:]:
        data.append({name: (raw[pos] if pos < len(raw) else None) for pos, name in positions})
    return SheetData(sheet_name=sheet_name, columns=columns, rows=data, header_row_index=header_idx)


def normalize_sheet_name(name: str) -> str:
    """Case/punctuation-insensitive key for sheet-name matching."""
    return _NAME_STRIP_RE.sub("", str(name).lower())


def is_special_sheet(name: str, special_names: Iterable[str]) -> bool:
    if name in special_names:
        return True
    key = normalize_sheet_name(name)
    return any(key == normalize_sheet_name(s) for s in special_names)


def read_raw_sheet(path: Path, sheet: str) -> list[list[Any]]:
    """One sheet as positional rows, no header assumption."""
    return raw_rows(read_excel_file(path, target_sheets=[sheet])[sheet])


def read_sheet(path: Path, sheet: str, table: ColumnAliasTable | None = None, threshold: int = 2) -> SheetData:
    """One single-table sheet split into literal headers and RawRows."""
    df = read_excel_file(path, target_sheets=[sheet])[sheet]
    return normalize_sheet(df, sheet, table or ColumnAliasTable(), threshold)
