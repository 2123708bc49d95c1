from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from ..errors import SchemaError

"""Column alias resolution.

Maps the literal header text of a worksheet onto canonical field names using a
static alias table. Matching is exact on the trimmed header (case-sensitive).

Iteration order of the table is fixed (DEFAULT_ALIASES insertion order) so the
result is deterministic when two fields share an alias.
"""

__all__ = [
    "CANONICAL_FIELDS",
    "DEFAULT_ALIASES",
    "DISPLAY_NAMES",
    "ColumnAliasTable",
    "ColumnMap",
    "resolve_columns",
    "require_fields",
    "match_alias",
]

# canonical field -> accepted literal headers (順序固定: 衝突時の決定性の根拠)
DEFAULT_ALIASES: dict[str, tuple[str, ...]] = {
    "Component": ("Component", "Item", "Deliverable", "Task", "Workstream"),
    "Status": ("Status", "State", "Current Status", "Readiness"),
    "Owner": ("Owner", "Assignee", "Responsible", "POC", "Assigned To"),
    "TargetDate": ("Target Date", "TargetDate", "Due Date", "Due", "Deadline", "ETA"),
    "Priority": ("Priority", "Severity"),
    "Category": ("Category", "Area", "Phase"),
    "Notes": ("Notes", "Comments", "Remarks", "Details"),
}

CANONICAL_FIELDS: tuple[str, ...] = tuple(DEFAULT_ALIASES)

DISPLAY_NAMES: dict[str, str] = {
    "TargetDate": "Target Date",
}

ColumnMap = dict[str, str]  # canonical field -> literal header present in the sheet


@dataclass(frozen=True)
class ColumnAliasTable:
    """Static alias configuration. Loaded once, never mutated at runtime."""

    aliases: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_ALIASES))

    @classmethod
    def with_overrides(cls, overrides: Mapping[str, Iterable[str]] | None) -> ColumnAliasTable:
        """Replace the alias sets of the named fields; others keep built-in aliases.

        Field order stays the built-in order regardless of override order.
        """
        merged: dict[str, tuple[str, ...]] = {}
        for name, defaults in DEFAULT_ALIASES.items():
            if overrides and name in overrides:
                merged[name] = tuple(str(a).strip() for a in overrides[name] if str(a).strip())
            else:
                merged[name] = defaults
        return cls(aliases=merged)

    def fields(self) -> tuple[str, ...]:
        return tuple(self.aliases)

    def all_aliases(self) -> frozenset[str]:
        return frozenset(a for group in self.aliases.values() for a in group)


def resolve_columns(headers: Iterable[object], table: ColumnAliasTable) -> ColumnMap:
    """Build a ColumnMap for one worksheet's header row.

    For each literal header (sheet order) and each canonical field (table order),
    record ``ColumnMap[field] = header`` when the trimmed header is an alias of
    the field. Later matches overwrite earlier ones.
    """
    column_map: ColumnMap = {}
    for raw in headers:
        if raw is None:
            continue
        literal = str(raw).strip()
        if not literal:
            continue
        for name, accepted in table.aliases.items():
            if literal in accepted:
                column_map[name] = literal
    return column_map


def require_fields(column_map: ColumnMap, required: Iterable[str], sheet: str) -> None:
    """Raise SchemaError when any required canonical field is unresolved."""
    for name in required:
        if name not in column_map:
            if name == "Status":
                raise SchemaError("no recognizable status column", sheet=sheet)
            raise SchemaError(f"no recognizable {name} column", sheet=sheet)


def match_alias(cell: object, table: ColumnAliasTable) -> str | None:
    """Return the canonical field a single cell value names, if any.

    Same precedence as resolve_columns: the last field in table order wins.
    """
    if cell is None:
        return None
    literal = str(cell).strip()
    if not literal:
        return None
    found: str | None = None
    for name, accepted in table.aliases.items():
        if literal in accepted:
            found = name
    return found
