from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..errors import EmptyReportError, SchemaError
from ..models.rows import HeaderBlock, NormalizedRow
from ..services.progress import PipelineProgress
from .aliases import ColumnAliasTable, match_alias

"""Header-block scanner for multi-table ("special") sheets.

Such sheets have no single header row: several tables are stacked, each with
its own header. A physical row is a header candidate when at least
``threshold`` of its cells equal a known alias (any canonical field).

Each header row opens a HeaderBlock whose data range runs up to the next header
row (or the end of the sheet). Rows above the first header are preamble
(titles, notes) and belong to no block. Fields are resolved by column position
within a block rather than by literal header lookup.
"""

__all__ = [
    "ScannedBlock",
    "header_hits",
    "find_header_rows",
    "positional_map",
    "build_blocks",
    "scan_blocks",
]


@dataclass(frozen=True)
class ScannedBlock:
    block: HeaderBlock
    rows: list[NormalizedRow] = field(default_factory=list)


def header_hits(row: Sequence[Any], table: ColumnAliasTable) -> int:
    return sum(1 for cell in row if match_alias(cell, table) is not None)


def find_header_rows(rows: Sequence[Sequence[Any]], table: ColumnAliasTable, threshold: int = 2) -> list[int]:
    """Indices of header candidate rows, top to bottom."""
    return [idx for idx, row in enumerate(rows) if header_hits(row, table) >= threshold]


def positional_map(header_row: Sequence[Any], table: ColumnAliasTable) -> dict[int, str]:
    """column index -> canonical field for one header row."""
    mapping: dict[int, str] = {}
    for pos, cell in enumerate(header_row):
        name = match_alias(cell, table)
        if name is not None:
            mapping[pos] = name
    return mapping


def build_blocks(rows: Sequence[Sequence[Any]], table: ColumnAliasTable, threshold: int = 2) -> list[HeaderBlock]:
    """Partition the sheet into HeaderBlocks ordered by row index.

    Each block runs from its header row up to the next header row (or the end
    of the sheet). Rows above the first header row, such as a title or other
    preamble, belong to no block and are never scanned.
    """
    starts = find_header_rows(rows, table, threshold)
    blocks: list[HeaderBlock] = []
    for i, start in enumerate(starts):
        end = starts[i + 1] if i + 1 < len(starts) else len(rows)
        header = rows[start]
        blocks.append(HeaderBlock(
            start_row_index=start,
            literal_headers=tuple("" if c is None else str(c).strip() for c in header),
            end_row_index=end,
            positional_map=positional_map(header, table),
        ))
    return blocks


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def scan_blocks(
    rows: Sequence[Sequence[Any]],
    table: ColumnAliasTable,
    *,
    threshold: int = 2,
    sheet: str = "",
    progress: PipelineProgress | None = None,
) -> list[ScannedBlock]:
    """Detect header blocks and build NormalizedRows by position.

    Raises:
        SchemaError: no header row found at all
        EmptyReportError: every block is empty
    """
    progress = progress or PipelineProgress()
    blocks = build_blocks(rows, table, threshold)
    if not blocks:
        raise SchemaError("no recognizable header rows", sheet=sheet)

    total = sum(len(b.data_range) for b in blocks)
    done = 0
    scanned: list[ScannedBlock] = []
    for index, block in enumerate(blocks):
        built: list[NormalizedRow] = []
        for row_idx in block.data_range:
            raw = rows[row_idx]
            fields: dict[str, Any] = {}
            for pos, name in block.positional_map.items():
                fields[name] = raw[pos] if pos < len(raw) else None
            done += 1
            progress.advance(done, total)
            if all(_is_empty(v) for v in fields.values()):
                continue
            built.append(NormalizedRow(fields=fields, source_row=row_idx, block_index=index))
        scanned.append(ScannedBlock(block=block, rows=built))

    if not any(sb.rows for sb in scanned):
        raise EmptyReportError("no data rows in any header block", sheet=sheet)
    return scanned
