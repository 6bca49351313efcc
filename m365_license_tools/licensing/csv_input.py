"""
CSV input parsing for the removal command.
Accepts the exporter's own output as well as hand-made sheets with
differently spelled headers, a BOM, or semicolon/tab delimiters.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from pathlib import Path
from typing import Optional

from .models import RemovalRequest

logger = logging.getLogger("m365_license_tools.licensing.csv_input")

# Normalized header aliases, in priority order
USER_COLUMN_ALIASES = [
    "userprincipalname",
    "upn",
    "principalname",
    "principal",
    "user",
    "email",
    "mail",
    "userid",
    "id",
]
LICENSE_COLUMN_ALIASES = [
    "skuid",
    "licenseskuid",
    "sku",
    "licensesku",
    "licenseid",
    "license",
    "skupartnumber",
]

_HEADER_STRIP = re.compile(r"[\s_\-.]+")


class CsvFormatError(Exception):
    """Raised when the input CSV cannot be used."""
    pass


def normalize_header(name: str) -> str:
    """'User Principal_Name ' -> 'userprincipalname'."""
    return _HEADER_STRIP.sub("", (name or "").replace("\ufeff", "")).lower()


def find_column(headers: list[str], aliases: list[str]) -> Optional[int]:
    normalized = [normalize_header(h) for h in headers]
    for alias in aliases:
        if alias in normalized:
            return normalized.index(alias)
    return None


def _sniff_dialect(sample: str):
    try:
        return csv.Sniffer().sniff(sample, delimiters=",;\t")
    except csv.Error:
        return csv.excel


def read_removal_csv(path, license_override: str = "") -> list[RemovalRequest]:
    """
    Parse the input CSV into removal requests.

    The license column is only required when no override is given; with an
    override every row targets the override license.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError:
        raise CsvFormatError(f"Input CSV not found: {path}")

    if not text.strip():
        raise CsvFormatError(f"Input CSV is empty: {path}")

    dialect = _sniff_dialect(text[:4096])
    rows = list(csv.reader(io.StringIO(text), dialect))

    header_index = next((i for i, r in enumerate(rows) if any(c.strip() for c in r)), None)
    if header_index is None:
        raise CsvFormatError(f"Input CSV has no header row: {path}")
    headers = rows[header_index]

    user_col = find_column(headers, USER_COLUMN_ALIASES)
    if user_col is None:
        raise CsvFormatError(
            f"No user principal column in {path.name}. "
            f"Expected one of: {', '.join(USER_COLUMN_ALIASES)} (found: {', '.join(headers)})"
        )

    override = (license_override or "").strip()
    license_col = find_column(headers, LICENSE_COLUMN_ALIASES)
    if license_col is None and not override:
        raise CsvFormatError(
            f"No license column in {path.name} and no --sku override given. "
            f"Expected one of: {', '.join(LICENSE_COLUMN_ALIASES)}"
        )

    requests: list[RemovalRequest] = []
    seen: set[tuple[str, str]] = set()

    for offset, row in enumerate(rows[header_index + 1:], start=header_index + 2):
        if not any(c.strip() for c in row):
            continue
        user = row[user_col].strip() if user_col < len(row) else ""
        if not user:
            logger.warning(f"Row {offset}: empty user principal, skipped")
            continue

        if override:
            license_value = override
        elif license_col < len(row):
            license_value = row[license_col].strip()
        else:
            license_value = ""

        key = (user.lower(), license_value.lower())
        if key in seen:
            logger.info(f"Row {offset}: duplicate of an earlier row for {user}, skipped")
            continue
        seen.add(key)

        requests.append(RemovalRequest(
            row_number=offset,
            user_principal_name=user,
            license=license_value,
        ))

    logger.info(f"Read {len(requests)} removal request(s) from {path}")
    return requests
