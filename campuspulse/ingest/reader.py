from __future__ import annotations

import io
import re
from dataclasses import dataclass
from pathlib import Path

import pandas as pd
import requests

from ..models.dataset import SourceKind

"""Tabular feedback readers.

Two sources feed the importer:
- CSV files on disk (pandas.read_csv)
- Public Google Sheets, fetched through the sheet's CSV export URL

Every cell is read as a string; pandas' NA conversion is disabled so that
answers such as "NA" or "None" survive verbatim. Fully empty rows are
dropped.
"""

__all__ = [
    "SourceReadError",
    "TabularSource",
    "extract_sheet_id",
    "fetch_google_sheet",
    "frame_to_source",
    "read_csv_file",
    "sheet_export_url",
]

_SHEET_ID_RE = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
SHEET_EXPORT_TEMPLATE = "https://docs.google.com/spreadsheets/d/{sheet_id}/export?format=csv"


class SourceReadError(Exception):
    """Raised when a CSV file or spreadsheet cannot be read."""


@dataclass
class TabularSource:
    source_kind: SourceKind
    columns: list[str]
    rows: list[dict[str, str]]  # column name -> trimmed cell text
    source_url: str | None = None
    skipped_rows: int = 0  # fully empty rows dropped while reading


def frame_to_source(
    df: pd.DataFrame, source_kind: SourceKind, source_url: str | None = None
) -> TabularSource:
    """Convert a string-typed DataFrame into a TabularSource.

    Steps:
    1. Trim header names
    2. Trim every cell, treating NaN as ""
    3. Drop rows whose cells are all empty
    """
    columns = [str(c).strip() for c in df.columns.tolist()]
    rows: list[dict[str, str]] = []
    skipped = 0
    for raw in df.itertuples(index=False, name=None):
        row: dict[str, str] = {}
        for col, val in zip(columns, raw, strict=False):
            if val is None or (isinstance(val, float) and pd.isna(val)):
                row[col] = ""
            else:
                row[col] = str(val).strip()
        if all(v == "" for v in row.values()):
            skipped += 1
            continue
        rows.append(row)
    return TabularSource(
        source_kind=source_kind,
        columns=columns,
        rows=rows,
        source_url=source_url,
        skipped_rows=skipped,
    )


def _read_csv_frame(buffer: io.StringIO | Path) -> pd.DataFrame:
    return pd.read_csv(buffer, dtype=str, keep_default_na=False, skip_blank_lines=True)


def read_csv_file(path: Path) -> TabularSource:
    """Read a CSV file from disk.

    Raises:
        SourceReadError: If the file is missing, empty or not parseable
    """
    if not path.exists():
        raise SourceReadError(f"CSV file not found: {path}")
    try:
        df = _read_csv_frame(path)
    except pd.errors.EmptyDataError as e:
        raise SourceReadError(f"CSV file is empty: {path}") from e
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise SourceReadError(f"CSV file could not be parsed: {e}") from e
    return frame_to_source(df, SourceKind.CSV)


def extract_sheet_id(url: str) -> str:
    """Extract the spreadsheet id from a Google Sheets link.

    Raises:
        SourceReadError: If the URL has no /spreadsheets/d/<id> segment
    """
    match = _SHEET_ID_RE.search(url or "")
    if not match:
        raise SourceReadError("Invalid Google Sheets URL. Please provide a valid link.")
    return match.group(1)


def sheet_export_url(url: str) -> str:
    return SHEET_EXPORT_TEMPLATE.format(sheet_id=extract_sheet_id(url))


def fetch_google_sheet(url: str, timeout: float = 30.0) -> TabularSource:
    """Download a public Google Sheet as CSV and read it.

    Raises:
        SourceReadError: Invalid link, network / HTTP failure, or no data rows
    """
    export_url = sheet_export_url(url)
    try:
        response = requests.get(export_url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise SourceReadError(
            "Could not fetch Google Sheets data. Make sure the sheet is publicly "
            f"accessible (Anyone with the link can view): {e}"
        ) from e

    text = response.text
    try:
        df = _read_csv_frame(io.StringIO(text))
    except pd.errors.EmptyDataError as e:
        raise SourceReadError("The sheet appears to be empty or has only headers.") from e
    except pd.errors.ParserError as e:
        raise SourceReadError(f"Sheet CSV could not be parsed: {e}") from e

    source = frame_to_source(df, SourceKind.SPREADSHEET, source_url=url)
    if not source.rows:
        raise SourceReadError("No data rows found in the Google Sheet.")
    return source
