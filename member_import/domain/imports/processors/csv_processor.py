import csv
import io
import logging
from io import StringIO
from typing import Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from member_import.domain.imports.exceptions import ParseError
from member_import.domain.imports.models import RawRow

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = (".csv",)
EXCEL_EXTENSIONS = (".xlsx", ".xls")


def tokenize_csv_line(line: str) -> List[str]:
    """
    Split one physical line into fields, honouring double quotes.

    Inside a quoted section a comma is literal and ``""`` is an escaped quote.
    Every field is whitespace-trimmed, which also drops a trailing ``\\r``.

    Example:
        '"Doe, John","john@x.com"' -> ['Doe, John', 'john@x.com']
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    length = len(line)

    while i < length:
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < length and line[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    fields.append("".join(current).strip())
    return fields


def iter_csv_lines(text: str) -> Iterator[List[str]]:
    """
    Lazily yield tokenized non-blank lines of ``text``.

    Lines are split on ``\\n`` before any quote handling, so a quoted field
    that spans lines is not supported: each physical line is tokenized on
    its own and an unterminated quote simply runs to the end of that line.
    """
    for line in text.split("\n"):
        if not line.strip():
            continue
        yield tokenize_csv_line(line)


def _rows_from_values(headers: List[str], value_rows: Iterator[Sequence[str]]) -> List[RawRow]:
    rows: List[RawRow] = []
    dropped = 0
    for values in value_rows:
        if not any(str(v).strip() for v in values):
            dropped += 1
            continue
        row: RawRow = {}
        for index, header in enumerate(headers):
            row[header] = values[index] if index < len(values) else ""
        rows.append(row)

    if dropped:
        logger.debug("Dropped %d blank rows", dropped)
    return rows


def parse_csv_text(text: str) -> Tuple[List[str], List[RawRow]]:
    """
    Parse a CSV text blob into headers and rows.

    Rows made only of blank fields are dropped and short rows are padded
    with empty strings. Values beyond the last header are ignored.

    Returns:
        Tuple of (headers, rows), each row a column -> raw string dict.

    Raises:
        ParseError: fewer than a header line and one data line, a header
            with no column names, or no non-blank data rows.
    """
    lines = iter_csv_lines(text or "")
    headers = next(lines, None)
    if headers is None:
        raise ParseError("CSV must have at least a header row and one data row")

    first_data = next(lines, None)
    if first_data is None:
        raise ParseError("CSV must have at least a header row and one data row")

    if not any(headers):
        raise ParseError("CSV header row has no column names")

    def _data_lines() -> Iterator[List[str]]:
        yield first_data
        yield from lines

    rows = _rows_from_values(headers, _data_lines())
    if not rows:
        raise ParseError("CSV contains no data rows")

    logger.info("Parsed CSV with %d columns and %d rows", len(headers), len(rows))
    return headers, rows


def parse_excel_bytes(file_content: bytes) -> Tuple[List[str], List[RawRow]]:
    """
    Read the first sheet of an Excel workbook into the same shape as ``parse_csv_text``.

    Every cell is read as text so identity values and phone numbers keep
    their exact spelling. Legacy ``.xls`` workbooks, which openpyxl cannot
    open, go through pandas' default engine (xlrd).
    """
    read_options = dict(dtype=str, keep_default_na=False, header=None)
    try:
        df = pd.read_excel(io.BytesIO(file_content), engine="openpyxl", **read_options)
    except Exception as openpyxl_error:
        logger.debug("openpyxl could not read workbook (%s); retrying with default engine", openpyxl_error)
        try:
            df = pd.read_excel(io.BytesIO(file_content), **read_options)
        except Exception as e:
            raise ParseError(f"Could not read Excel file: {str(e)}") from e

    value_rows = [[str(v).strip() for v in record] for record in df.itertuples(index=False, name=None)]
    value_rows = [r for r in value_rows if any(r)]
    if len(value_rows) < 2:
        raise ParseError("Spreadsheet must have at least a header row and one data row")

    headers = value_rows[0]
    if not any(headers):
        raise ParseError("Spreadsheet header row has no column names")

    rows = _rows_from_values(headers, iter(value_rows[1:]))
    if not rows:
        raise ParseError("Spreadsheet contains no data rows")

    logger.info("Parsed spreadsheet with %d columns and %d rows", len(headers), len(rows))
    return headers, rows


def parse_upload(file_content: bytes, file_name: Optional[str]) -> Tuple[List[str], List[RawRow]]:
    """Dispatch an uploaded file to the CSV or Excel parser by extension."""
    name = (file_name or "").lower()
    if name.endswith(EXCEL_EXTENSIONS):
        return parse_excel_bytes(file_content)
    if name.endswith(CSV_EXTENSIONS) or not name:
        try:
            text = file_content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseError("CSV file must be UTF-8 encoded") from e
        return parse_csv_text(text)
    raise ParseError(f"Unsupported file type: {file_name}")


def render_import_template(base_headers: Sequence[str], question_labels: Sequence[str]) -> str:
    """
    Build a downloadable CSV template for a form.

    The template starts with ``base_headers`` and appends every question
    label not already present (case-insensitive), followed by one sample row.
    """
    headers = list(base_headers)
    seen = {h.lower() for h in headers}
    for label in question_labels:
        if label.lower() not in seen:
            headers.append(label)
            seen.add(label.lower())

    sample_values = {
        "name": "John Doe",
        "email": "john@example.com",
        "phone": "555-123-4567",
        "linkedin": "https://linkedin.com/in/johndoe",
        "status": "PENDING",
    }
    sample_row = [sample_values.get(h.lower(), "") for h in headers]

    buffer = StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers)
    writer.writerow(sample_row)
    return buffer.getvalue()
