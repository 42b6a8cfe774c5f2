# Overview: Tokenizes uploaded CSV text into numbered rows.

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field


class CsvParseError(ValueError):
    """Raised when uploaded text cannot be read as CSV."""


@dataclass
class ParsedRow:
    """One data row. row_number is the physical file line (header is line 1)."""
    row_number: int
    values: dict[str, str] = field(default_factory=dict)


def _sniff_delimiter(first_line: str) -> str:
    return ";" if ";" in first_line and "," not in first_line else ","


def _parse_with_delimiter(text: str, delimiter: str) -> list[ParsedRow]:
    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter, strict=True)
    rows: list[ParsedRow] = []
    headers: list[str] | None = None
    for raw in reader:
        # Fully blank lines are skipped but still count toward line numbers.
        if not raw or (len(raw) == 1 and not raw[0].strip()):
            continue
        if headers is None:
            headers = [cell.strip() for cell in raw]
            continue
        values: dict[str, str] = {}
        for index, header in enumerate(headers):
            if not header:
                continue
            cell = raw[index] if index < len(raw) else ""
            values[header] = cell.strip()
        rows.append(ParsedRow(row_number=reader.line_num, values=values))
    return rows


def parse_csv_records(text: str) -> list[ParsedRow]:
    """
    Parse CSV text with a header line into ParsedRow objects.

    - Leading BOM is stripped.
    - Delimiter is sniffed from the header line (";" only when the header has
      ";" and no ","). On a parse error the other delimiter is tried once,
      if the header contains it.
    - Header and cell whitespace is trimmed; missing trailing cells are "".
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    first_line = text.splitlines()[0] if text else ""
    delimiter = _sniff_delimiter(first_line)
    try:
        return _parse_with_delimiter(text, delimiter)
    except csv.Error as exc:
        fallback = ";" if delimiter == "," else ","
        if fallback in first_line:
            try:
                return _parse_with_delimiter(text, fallback)
            except csv.Error as fallback_exc:
                raise CsvParseError(str(fallback_exc)) from fallback_exc
        raise CsvParseError(str(exc)) from exc
