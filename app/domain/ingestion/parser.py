"""
Tabular parsing for uploaded spreadsheets.

Turns raw delimited text (or an Excel workbook) into a header list and an
ordered list of string-keyed rows. No type coercion happens here; every
value stays a string until normalization.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, List

import pandas as pd

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when a file yields no usable data rows. Terminal for the upload."""
    pass


@dataclass(frozen=True)
class ParsedTable:
    """Headers plus rows keyed by header; produced once per upload attempt."""
    headers: List[str]
    rows: List[Dict[str, str]] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)


def _clean(value) -> str:
    return str(value).strip().replace('"', '')


def _split_line(line: str) -> List[str]:
    # csv keeps "Smith, J." together; the outer quotes are stripped with the rest.
    # An unclosed quote would swallow the rest of the line, so split on commas instead.
    if line.count('"') % 2:
        fields = line.split(",")
    else:
        fields = next(csv.reader([line]), [])
    return [_clean(value) for value in fields]


def _build_table(header_fields: List[str], data_lines: List[List[str]]) -> ParsedTable:
    headers = list(header_fields)
    if not any(headers):
        raise ParseError("Header row is empty")

    rows: List[Dict[str, str]] = []
    for values in data_lines:
        row: Dict[str, str] = {}
        for index, header in enumerate(headers):
            # Later duplicates of a header win, matching positional assignment.
            row[header] = values[index] if index < len(values) else ""
        if any(value != "" for value in row.values()):
            rows.append(row)

    if not rows:
        raise ParseError("No data rows found in file")

    return ParsedTable(headers=headers, rows=rows)


def parse(raw_text: str) -> ParsedTable:
    """
    Parse comma-delimited text.

    Blank lines are discarded; the first remaining line is the header row.
    Data lines are split positionally against the headers: missing trailing
    fields become "", extra fields are dropped, and all-empty rows are skipped.

    Raises:
        ParseError: fewer than two non-blank lines, or no non-empty data rows.
    """
    lines = [line for line in raw_text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise ParseError("No data rows found in file")

    header_fields = _split_line(lines[0])
    data_lines = [_split_line(line) for line in lines[1:]]
    table = _build_table(header_fields, data_lines)
    logger.info("Parsed %d data rows across %d columns", table.row_count, len(table.headers))
    return table


def parse_workbook(file_content: bytes) -> ParsedTable:
    """Parse the first sheet of an XLS/XLSX workbook with the same row rules as ``parse``."""
    try:
        df = pd.read_excel(io.BytesIO(file_content), header=None, dtype=str)
    except Exception as exc:
        raise ParseError(f"Unable to read spreadsheet: {exc}") from exc

    df = df.fillna("")
    lines = [
        [_clean(value) for value in record]
        for record in df.itertuples(index=False, name=None)
    ]
    lines = [values for values in lines if any(values)]
    if len(lines) < 2:
        raise ParseError("No data rows found in file")

    # Trailing all-empty columns are an artefact of the sheet's used range.
    header_fields = list(lines[0])
    while header_fields and header_fields[-1] == "":
        header_fields.pop()

    table = _build_table(header_fields, lines[1:])
    logger.info("Parsed workbook with %d data rows across %d columns", table.row_count, len(table.headers))
    return table


def parse_file(file_content: bytes, file_name: str) -> ParsedTable:
    """Dispatch on the file extension: workbooks through pandas, everything else as text."""
    if file_name.lower().endswith((".xlsx", ".xls")):
        return parse_workbook(file_content)

    try:
        text = file_content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = file_content.decode("latin-1")
    return parse(text)
