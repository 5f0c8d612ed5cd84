"""
Statement file loading.

Turns the first worksheet of an uploaded statement into a rectangular grid
of cells (native datetime, number, or text; blanks are ``""``). XLSX files
are read with openpyxl so native date cells and the 1904 flag survive; CSV
exports go through pandas as text.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from typing import Any
from zipfile import BadZipFile

import httpx
import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.datetime import CALENDAR_MAC_1904
from openpyxl.utils.exceptions import InvalidFileException

from app.core.config import SOURCE_FETCH_TIMEOUT
from app.core.exceptions import SourceFetchError, WorkbookError
from app.core.logging import get_logger

logger = get_logger("ledger.services.workbook")

XLSX_MAGIC = b"PK\x03\x04"
XLS_MAGIC = b"\xd0\xcf\x11\xe0"
CSV_ENCODINGS = ("utf-8-sig", "cp949")


@dataclass
class WorksheetGrid:
    rows: list[list[Any]] = field(default_factory=list)
    epoch1904: bool = False
    sheet_name: str = ""


def _pad(rows: list[list[Any]]) -> list[list[Any]]:
    width = max((len(r) for r in rows), default=0)
    return [r + [""] * (width - len(r)) for r in rows]


def _normalize_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).upper()
    return value


def read_xlsx(content: bytes) -> WorksheetGrid:
    """Read the first worksheet of an XLSX workbook."""
    try:
        wb = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, KeyError, OSError, ValueError) as e:
        raise WorkbookError(f"Failed to read workbook: {e}") from e

    try:
        if not wb.worksheets:
            raise WorkbookError("Workbook has no worksheet")
        ws = wb.worksheets[0]
        rows = [
            [_normalize_value(v) for v in row]
            for row in ws.iter_rows(values_only=True)
        ]
        epoch1904 = wb.epoch == CALENDAR_MAC_1904
        sheet_name = ws.title
    finally:
        wb.close()

    logger.debug(f"Read sheet '{sheet_name}': {len(rows)} rows, 1904 epoch={epoch1904}")
    return WorksheetGrid(rows=_pad(rows), epoch1904=epoch1904, sheet_name=sheet_name)


def read_csv(content: bytes) -> WorksheetGrid:
    """Read a CSV export; every cell comes back as text."""
    last_error: Exception | None = None
    for encoding in CSV_ENCODINGS:
        try:
            df = pd.read_csv(
                BytesIO(content),
                header=None,
                dtype=str,
                keep_default_na=False,
                encoding=encoding,
                skip_blank_lines=False,
            )
        except UnicodeDecodeError as e:
            last_error = e
            continue
        except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise WorkbookError(f"Failed to read CSV: {e}") from e
        rows = [[_normalize_value(v) for v in row] for row in df.itertuples(index=False, name=None)]
        return WorksheetGrid(rows=_pad(rows), epoch1904=False, sheet_name="csv")
    raise WorkbookError(f"Failed to decode CSV: {last_error}")


def read_grid(content: bytes, filename: str = "") -> WorksheetGrid:
    """Dispatch on file signature (falling back to the extension)."""
    if not content:
        raise WorkbookError(f"{filename or 'Statement file'} is empty.")

    lowered = filename.lower().split("?", 1)[0]
    if content.startswith(XLSX_MAGIC) or lowered.endswith(".xlsx"):
        return read_xlsx(content)
    if content.startswith(XLS_MAGIC) or lowered.endswith(".xls"):
        raise WorkbookError("Legacy .xls workbooks are not supported; save the statement as .xlsx")
    return read_csv(content)


def fetch_source(url: str, timeout: float = SOURCE_FETCH_TIMEOUT) -> bytes:
    """Download the statement file.

    Raises:
        SourceFetchError: On transport errors or a non-2xx response
    """
    try:
        response = httpx.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise SourceFetchError(
            f"fetch failed: {e.response.status_code}",
            details={"url": url},
        ) from e
    except httpx.HTTPError as e:
        raise SourceFetchError(f"fetch failed: {e}", details={"url": url}) from e

    logger.info(f"Fetched statement file ({len(response.content)} bytes)")
    return response.content
