"""CSV table reading for pack data files."""

from __future__ import annotations

import csv
import io
from pathlib import Path

from Archivist.errors import TableReadFailure


def parse_csv_text(text: str) -> list[dict[str, str]]:
    """Parse CSV text into header-keyed records.

    Header names are trimmed, columns with a blank header are ignored, short
    rows are padded with ``""`` and rows with no values are skipped.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        header_row = next(reader)
    except StopIteration:
        return []
    headers = [h.strip() for h in header_row]

    records: list[dict[str, str]] = []
    for row in reader:
        record = {
            header: (row[index] if index < len(row) else "")
            for index, header in enumerate(headers)
            if header
        }
        if any(value != "" for value in record.values()):
            records.append(record)
    return records


def read_table(path: Path) -> list[dict[str, str]]:
    """Read a UTF-8 CSV file (BOM tolerated) into header-keyed records.

    Raises:
        TableReadFailure: If the file cannot be read or decoded
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise TableReadFailure(f"Unable to read table at {path}: {exc}") from exc
    try:
        return parse_csv_text(text)
    except csv.Error as exc:
        raise TableReadFailure(f"Malformed CSV at {path}: {exc}") from exc
