"""
Google Sheets tabular store implementation.

This module provides the production store backend on top of gspread,
authenticated with a Google service account.

Invariants:
    - Every gspread call runs in the default executor, never on the loop
    - Any client or HTTP failure surfaces as StoreOperationFailed
    - Indices are converted from zero-based to gspread's one-based cells
    - Batches are written with a single update_cells request
    - A sheet wrapper is created once per title and shared by both queues

How to change safely:
    - Test against a scratch spreadsheet before deploying
    - Watch the Sheets API per-minute quota; every append costs one
      metadata read, one values read and one values write
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from .base import CellOutOfBounds, CellWrite, StoreOperationFailed

logger = logging.getLogger(__name__)

# Try to import gspread, provide helpful message if not installed
try:
    import gspread
    from google.oauth2.service_account import Credentials

    GSPREAD_AVAILABLE = True
except ImportError:
    GSPREAD_AVAILABLE = False
    gspread = None
    Credentials = None

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


async def _run(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking gspread call in the default executor."""
    return await asyncio.get_event_loop().run_in_executor(
        None, functools.partial(fn, *args, **kwargs)
    )


class GoogleSheetsSheet:
    """Sheet protocol implementation wrapping a gspread Worksheet.

    Dimensions are captured when the wrapper is created and change only
    through its own resize(). Metadata refreshes never touch them.
    """

    def __init__(self, worksheet: Any) -> None:
        self._worksheet = worksheet
        self._rows: int = worksheet.row_count
        self._cols: int = worksheet.col_count
        self._values: Dict[tuple, str] = {}

    @property
    def title(self) -> str:
        return self._worksheet.title

    @property
    def row_count(self) -> int:
        return self._rows

    @property
    def col_count(self) -> int:
        return self._cols

    async def load_cells(self) -> None:
        try:
            rows = await _run(self._worksheet.get_all_values)
        except Exception as e:
            raise StoreOperationFailed(f"Failed to load cells of '{self.title}': {e}") from e

        self._values = {
            (r, c): value
            for r, row in enumerate(rows)
            for c, value in enumerate(row)
            if value != ""
        }

    async def read_cell(self, row: int, col: int) -> Optional[str]:
        self._check_bounds(row, col)
        return self._values.get((row, col))

    async def write_cells(self, cells: Sequence[CellWrite]) -> None:
        for cell in cells:
            self._check_bounds(cell.row, cell.col)

        cell_list = [gspread.Cell(c.row + 1, c.col + 1, c.value) for c in cells]
        try:
            await _run(
                self._worksheet.update_cells,
                cell_list,
                value_input_option="USER_ENTERED",
            )
        except Exception as e:
            raise StoreOperationFailed(f"Failed to write cells to '{self.title}': {e}") from e

        for cell in cells:
            self._values[(cell.row, cell.col)] = cell.value

    async def resize(self, rows: int, cols: int) -> None:
        try:
            await _run(self._worksheet.resize, rows=rows, cols=cols)
        except Exception as e:
            raise StoreOperationFailed(f"Failed to resize '{self.title}': {e}") from e

        self._rows = rows
        self._cols = cols
        logger.info("Sheet resized", extra={"title": self.title, "rows": rows, "cols": cols})

    def _check_bounds(self, row: int, col: int) -> None:
        if row < 0 or col < 0 or row >= self.row_count or col >= self.col_count:
            raise CellOutOfBounds(self.title, row, col)


class GoogleSheetsStore:
    """Google Sheets implementation of the TabularStore protocol.

    Example:
        >>> config = SheetsConfig(spreadsheet_id="1AbC...", ...)
        >>> store = GoogleSheetsStore(config)
        >>> await store.connect()
        >>> await store.load_metadata()
    """

    def __init__(self, config: Any) -> None:
        """Initialize the store.

        Args:
            config: SheetsConfig with spreadsheet id and service account

        Raises:
            ImportError: If gspread is not installed
        """
        if not GSPREAD_AVAILABLE:
            raise ImportError(
                "gspread is required for the Google Sheets backend. "
                "Install with: pip install gspread google-auth"
            )

        self.config = config
        self._client: Any = None
        self._spreadsheet: Any = None
        self._sheets: Dict[str, GoogleSheetsSheet] = {}

    @property
    def is_connected(self) -> bool:
        return self._spreadsheet is not None

    async def connect(self) -> None:
        """Authenticate and open the spreadsheet.

        Raises:
            StoreOperationFailed: If authentication or opening fails
        """
        if self._spreadsheet is not None:
            return

        info = {
            "type": "service_account",
            "client_email": self.config.service_account_email,
            "private_key": self.config.private_key,
            "token_uri": TOKEN_URI,
        }
        try:
            credentials = Credentials.from_service_account_info(info, scopes=SCOPES)
            self._client = gspread.authorize(credentials)
            self._spreadsheet = await _run(self._client.open_by_key, self.config.spreadsheet_id)
        except Exception as e:
            self._client = None
            self._spreadsheet = None
            raise StoreOperationFailed(f"Failed to open spreadsheet: {e}") from e

        logger.info(
            "Connected to Google Sheets",
            extra={"spreadsheet_id": self.config.spreadsheet_id},
        )

    async def close(self) -> None:
        self._spreadsheet = None
        self._client = None
        self._sheets.clear()
        logger.info("Google Sheets store closed")

    async def load_metadata(self) -> None:
        self._require_connection()
        try:
            worksheets = await _run(self._spreadsheet.worksheets)
        except Exception as e:
            raise StoreOperationFailed(f"Failed to load spreadsheet metadata: {e}") from e

        known = self._sheets
        self._sheets = {}
        for worksheet in worksheets:
            # Existing wrappers are reused untouched
            sheet = known.get(worksheet.title)
            if sheet is None:
                sheet = GoogleSheetsSheet(worksheet)
            self._sheets[worksheet.title] = sheet

    async def list_partitions(self) -> Dict[str, GoogleSheetsSheet]:
        return dict(self._sheets)

    async def create_partition(self, title: str, rows: int, cols: int) -> GoogleSheetsSheet:
        self._require_connection()
        try:
            worksheet = await _run(self._spreadsheet.add_worksheet, title=title, rows=rows, cols=cols)
        except Exception as e:
            raise StoreOperationFailed(f"Failed to create sheet '{title}': {e}") from e

        sheet = GoogleSheetsSheet(worksheet)
        self._sheets[title] = sheet
        logger.info("Sheet created", extra={"title": title, "rows": rows, "cols": cols})
        return sheet

    def _require_connection(self) -> None:
        if self._spreadsheet is None:
            raise StoreOperationFailed("Not connected")
