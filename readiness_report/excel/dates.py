from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from typing import Any

import pandas as pd

"""Date normalization for heterogeneous cell values.

Policy (first match wins):
1. empty / "TBD" / "N/A" -> None
2. numeric value under SERIAL_LIMIT -> spreadsheet serial date (epoch 1899-12-30)
3. explicit formats, in DATE_FORMATS order
4. general parsing via pandas.to_datetime (locale-free, month-first)
5. otherwise None (not an error; downstream treats it as "no due date")
"""

__all__ = [
    "EXCEL_EPOCH",
    "SERIAL_LIMIT",
    "DATE_FORMATS",
    "NO_DATE_TOKENS",
    "normalize_date",
    "to_serial",
]

EXCEL_EPOCH = datetime(1899, 12, 30)
SERIAL_LIMIT = 60000
DATE_FORMATS: tuple[str, ...] = ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y")
NO_DATE_TOKENS = frozenset({"", "tbd", "n/a"})

_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")


def _from_serial(serial: float) -> datetime | None:
    if not (0 < serial < SERIAL_LIMIT):
        return None
    # 小数部 (時刻) は切り捨て: 日付単位で比較するため
    return EXCEL_EPOCH + timedelta(days=int(serial))


def to_serial(value: date | datetime) -> float:
    """Inverse of the serial interpretation (whole days since EXCEL_EPOCH)."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    return float((value - EXCEL_EPOCH).days)


def normalize_date(value: Any) -> datetime | None:
    """Normalize a cell value into a naive datetime, or None when no date is present."""
    if value is None or value is pd.NaT:
        return None
    # pandas が読み込んだ Timestamp / datetime はそのまま
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return None
        return value.to_pydatetime().replace(tzinfo=None)
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return _from_serial(float(value))

    text = str(value).strip()
    if text.lower() in NO_DATE_TOKENS:
        return None
    if _NUMERIC_RE.match(text):
        serial = float(text)
        if serial < SERIAL_LIMIT:
            return _from_serial(serial)

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        parsed = pd.to_datetime(text, errors="coerce", dayfirst=False)
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.to_pydatetime().replace(tzinfo=None)
