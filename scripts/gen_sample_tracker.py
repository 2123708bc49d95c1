#!/usr/bin/env python3
"""Sample tracker workbook generator.

Generates a release-readiness tracker with:
- a standard sheet ("Tracker"): title row, header row, data rows
- a special multi-table sheet ("Release Checklist"): several stacked tables,
  each with its own header row and no blank separators

Useful for manual CLI runs and for sizing the pipeline (--rows 50000).
"""
from __future__ import annotations

import argparse
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

STATUSES = ["Pending", "In Progress", "Complete", "Not-Started", "Due-Soon", "Done"]
OWNERS = ["Alice", "Bob", "Carol", "Dave", "Erin", "Frank"]
PRIORITIES = ["High", "Medium", "Low"]
AREAS = ["Build", "Infra", "Docs", "QA", "Security", "Release"]


def generate_tracker_rows(rows: int, today: date, seed: int = 42) -> pd.DataFrame:
    """Synthetic tracker rows with mixed due-date representations.

    Target dates are spread over [-30, +60] days around ``today``; about 10%
    are "TBD" and a few are written as US-style strings.
    """
    rng = np.random.default_rng(seed)
    offsets = rng.integers(-30, 61, rows)
    targets: list[Any] = []
    for i, off in enumerate(offsets):
        due = today + timedelta(days=int(off))
        if i % 10 == 9:
            targets.append("TBD")
        elif i % 7 == 3:
            targets.append(due.strftime("%m/%d/%Y"))
        else:
            targets.append(pd.Timestamp(due))
    return pd.DataFrame({
        "Component": [f"Component-{i + 1:05d}" for i in range(rows)],
        "Status": rng.choice(STATUSES, rows).tolist(),
        "Owner": rng.choice(OWNERS, rows).tolist(),
        "Target Date": targets,
        "Priority": rng.choice(PRIORITIES, rows).tolist(),
        "Notes": ["" if i % 4 else f"note {i}" for i in range(rows)],
    })


def _checklist_rows(tables: int, rows_per_table: int, today: date, seed: int) -> list[list[Any]]:
    rng = np.random.default_rng(seed + 1)
    sheet: list[list[Any]] = [["Release Checklist", None, None, None]]
    for t in range(tables):
        sheet.append(["Item", "State", "Assignee", "Due Date"])
        for r in range(rows_per_table):
            due = today + timedelta(days=int(rng.integers(-20, 30)))
            sheet.append([
                f"{AREAS[t % len(AREAS)]} step {r + 1}",
                str(rng.choice(STATUSES)),
                str(rng.choice(OWNERS)),
                due.isoformat(),
            ])
    return sheet


def create_tracker_workbook(
    output_path: Path,
    rows: int,
    tables: int = 3,
    rows_per_table: int = 4,
    today: date | None = None,
    seed: int = 42,
) -> None:
    """Write the sample workbook (standard + special sheet)."""
    today = today or date.today()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df = generate_tracker_rows(rows, today, seed)

    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        # Row 1: title, Row 2: header, Row 3+: data
        sheet_data = [["Release Readiness Tracker"] + [""] * (len(df.columns) - 1), df.columns.tolist()]
        sheet_data.extend(row.tolist() for _, row in df.iterrows())
        pd.DataFrame(sheet_data).to_excel(writer, sheet_name="Tracker", header=False, index=False)

        checklist = _checklist_rows(tables, rows_per_table, today, seed)
        pd.DataFrame(checklist).to_excel(writer, sheet_name="Release Checklist", header=False, index=False)

    print(f"Created tracker workbook: {output_path}")
    print(f"  Tracker rows: {rows}")
    print(f"  Checklist tables: {tables} x {rows_per_table} rows")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a sample release-readiness tracker workbook",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s tracker.xlsx
  %(prog)s big_tracker.xlsx --rows 50000 --tables 10
  %(prog)s tracker.xlsx --today 2024-01-10 --seed 7
        """,
    )
    parser.add_argument("output", type=Path, help="Output .xlsx path")
    parser.add_argument("--rows", type=int, default=200, help="Rows on the standard sheet (default: 200)")
    parser.add_argument("--tables", type=int, default=3, help="Stacked tables on the checklist sheet (default: 3)")
    parser.add_argument("--rows-per-table", type=int, default=4, help="Rows per checklist table (default: 4)")
    parser.add_argument("--today", type=date.fromisoformat, help="Reference date (YYYY-MM-DD)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0 or args.tables <= 0 or args.rows_per_table <= 0:
        print("Error: --rows, --tables and --rows-per-table must be positive", file=sys.stderr)
        return 1

    try:
        create_tracker_workbook(
            args.output,
            rows=args.rows,
            tables=args.tables,
            rows_per_table=args.rows_per_table,
            today=args.today,
            seed=args.seed,
        )
    except (OSError, ValueError) as e:
        print(f"Error creating workbook: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
