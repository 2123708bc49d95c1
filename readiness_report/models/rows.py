from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from ..excel.aliases import CANONICAL_FIELDS

"""Row-level domain models: NormalizedRow and HeaderBlock."""

__all__ = [
    "NO_DUE",
    "SORT_SENTINEL",
    "NormalizedRow",
    "HeaderBlock",
]

NO_DUE = "N/A"
SORT_SENTINEL = datetime.max  # 期日なし行は末尾にソート


@dataclass(frozen=True)
class NormalizedRow:
    """One tracking row after column resolution.

    ``fields`` is keyed by canonical field name only; unknown keys are rejected
    at construction time.
    """

    fields: dict[str, Any]
    days_until_due: int | str = NO_DUE
    sort_date: datetime = SORT_SENTINEL
    due_date: datetime | None = None
    source_row: int = -1  # 0-based physical row in the sheet (-1 = unknown)
    block_index: int | None = None  # header block the row came from (multi-table sheets)

    def __post_init__(self) -> None:
        unknown = [k for k in self.fields if k not in CANONICAL_FIELDS]
        if unknown:
            raise ValueError(f"unknown canonical fields: {sorted(unknown)}")

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    @property
    def status(self) -> str:
        value = self.fields.get("Status")
        return "" if value is None else str(value).strip()

    @property
    def has_due_date(self) -> bool:
        return self.due_date is not None

    def with_due(self, due_date: datetime | None, days_until_due: int | str) -> NormalizedRow:
        return replace(
            self,
            due_date=due_date,
            days_until_due=days_until_due,
            sort_date=due_date if due_date is not None else SORT_SENTINEL,
        )


@dataclass(frozen=True)
class HeaderBlock:
    """A logical table inside a multi-table sheet.

    Data rows are ``[start_row_index + 1, end_row_index)``; ``end_row_index``
    is the next block's header row or the sheet length.
    """

    start_row_index: int
    literal_headers: tuple[str, ...]
    end_row_index: int
    positional_map: dict[int, str] = field(default_factory=dict)  # column index -> canonical field

    @property
    def data_range(self) -> range:
        return range(self.start_row_index + 1, self.end_row_index)
