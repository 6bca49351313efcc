"""
CSV exporter — Writes assignment listings and removal outcomes.
"""

from __future__ import annotations

import csv
from pathlib import Path

ASSIGNMENT_FIELDS = [
    "DisplayName", "UserPrincipalName", "UserId", "SkuId", "SkuPartNumber",
    "AssignedDirectly", "AssignedByGroup", "State",
]

RESULT_FIELDS = [
    "UserPrincipalName", "SkuId", "SkuPartNumber", "Outcome",
    "Attempts", "StatusCode", "Message", "Timestamp",
]


def _write_rows(path: Path, fieldnames: list[str], rows: list[dict]) -> Path:
    # utf-8-sig so Excel picks up the encoding
    with open(path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
    return path


def export_assignments(
    records: list,
    output_dir: Path,
    run_id: str,
    filename: str = "",
) -> Path:
    """
    Write license assignment records. The file can be fed straight back
    into the remove command.

    Returns:
        Path to the created CSV file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / (filename or f"direct_license_assignments_{run_id}.csv")
    return _write_rows(path, ASSIGNMENT_FIELDS, [r.to_row() for r in records])


def export_removal_results(
    summary,
    output_dir: Path,
    run_id: str,
) -> list[Path]:
    """
    Write the success and failure CSVs of a removal run. Both files are
    always created so downstream tooling can rely on them.

    Returns:
        [success path, failure path]
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    success_path = output_dir / f"license_removal_success_{run_id}.csv"
    failure_path = output_dir / f"license_removal_failed_{run_id}.csv"

    _write_rows(success_path, RESULT_FIELDS, [r.to_row() for r in summary.successes])
    _write_rows(failure_path, RESULT_FIELDS, [r.to_row() for r in summary.failures])
    return [success_path, failure_path]
