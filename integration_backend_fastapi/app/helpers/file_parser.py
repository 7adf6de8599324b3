# app/helpers/file_parser.py
"""
Turn uploaded file bytes into an ordered list of row records.
Uses pandas for robust CSV and Excel parsing.

- csv: whole file, in file order, every value read as a string
- xlsx / xls: FIRST worksheet only; additional worksheets are ignored
- empty file (no bytes, or a header without data rows): empty list

Row records map the (stripped) column header to the stripped cell text.
Blank cells are left out of the record, so processors cannot tell a blank
cell from a missing column.
"""
import io
from typing import Any, Dict, List

import pandas as pd

from app.core.exceptions import FileParseError, UnsupportedFormat
from app.core.logger import app_logger
from app.helpers.integration_types import SUPPORTED_FILE_EXTENSIONS

RowRecord = Dict[str, str]

# latin-1 decodes any byte sequence, so it is the last resort
CSV_ENCODINGS = ("utf-8-sig", "utf-8", "latin-1")


def normalize_extension(extension: str) -> str:
    return (extension or "").strip().lower().lstrip(".")


def extension_from_name(file_name: str) -> str:
    """Return the lowercase extension of a file name or URL path ('' if none)."""
    base = (file_name or "").split("?", 1)[0].split("#", 1)[0]
    base = base.rsplit("/", 1)[-1]
    if "." not in base:
        return ""
    return normalize_extension(base.rsplit(".", 1)[-1])


def _read_csv_with_encoding(file_bytes: bytes, encoding: str) -> pd.DataFrame:
    # header=None: the header row is promoted by hand so a wide first data row
    # cannot be taken for an implicit index column
    read_options = dict(
        encoding=encoding,
        header=None,
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        engine="python",
    )
    width = pd.read_csv(io.BytesIO(file_bytes), nrows=1, **read_options).shape[1]

    def _trim_extra_fields(bad_line: List[str]) -> List[str]:
        # A row with more cells than the header is kept; the extra cells have no column
        app_logger.warning(
            "CSV row has more fields than the header; extra fields ignored",
            extra={"expected_fields": width, "found_fields": len(bad_line)},
        )
        return bad_line[:width]

    df = pd.read_csv(io.BytesIO(file_bytes), on_bad_lines=_trim_extra_fields, **read_options)
    body = df.iloc[1:].copy()
    body.columns = list(df.iloc[0])
    return body


def _read_csv(file_bytes: bytes) -> pd.DataFrame:
    for encoding in CSV_ENCODINGS:
        try:
            return _read_csv_with_encoding(file_bytes, encoding)
        except UnicodeDecodeError:
            continue
        except pd.errors.EmptyDataError:
            return pd.DataFrame()
        except pd.errors.ParserError as exc:
            raise FileParseError(f"Failed to parse CSV file: {exc}") from exc
    raise FileParseError("File encoding not supported. Please use UTF-8 encoding.")


def _read_first_sheet(file_bytes: bytes) -> pd.DataFrame:
    try:
        return pd.read_excel(
            io.BytesIO(file_bytes),
            sheet_name=0,
            dtype=str,
            keep_default_na=False,
        )
    except pd.errors.EmptyDataError:
        return pd.DataFrame()
    except Exception as exc:
        # openpyxl/xlrd raise their own error types for corrupt workbooks
        raise FileParseError(f"Failed to read Excel file: {exc}") from exc


def _clean_cell(value: Any) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def dataframe_to_rows(df: pd.DataFrame) -> List[RowRecord]:
    """Convert a dataframe to row records, dropping blank cells and blank rows."""
    if df.empty:
        return []

    columns = [str(col).strip() for col in df.columns]
    rows: List[RowRecord] = []
    for values in df.itertuples(index=False, name=None):
        record: RowRecord = {}
        for column, value in zip(columns, values):
            if not column or column.startswith("Unnamed:"):
                continue
            cell = _clean_cell(value)
            if cell:
                record[column] = cell
        if record:
            rows.append(record)
    return rows


def parse_rows(file_bytes: bytes, extension: str) -> List[RowRecord]:
    """
    Parse raw file bytes into row records.

    Raises:
        UnsupportedFormat: extension is not csv, xlsx or xls
        FileParseError: content cannot be read for a supported extension
    """
    ext = normalize_extension(extension)
    if ext not in SUPPORTED_FILE_EXTENSIONS:
        raise UnsupportedFormat(f"Unsupported file format: '{extension}'")

    if not file_bytes or not file_bytes.strip():
        return []

    if ext == "csv":
        df = _read_csv(file_bytes)
    else:
        df = _read_first_sheet(file_bytes)

    return dataframe_to_rows(df)
