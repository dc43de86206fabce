"""
In-memory tabular store implementation for testing.

This module provides a simple in-memory store backend for:
- Unit tests
- Integration tests
- Local development without a spreadsheet account

Invariants:
    - All data is lost on process exit
    - Bounds checking matches the Google Sheets backend
    - Default sheet size matches a fresh Google Sheets tab (1000 x 26)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the TabularStore/Sheet protocols
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Dict, List, Optional, Sequence
import logging

from .base import CellOutOfBounds, CellWrite, StoreOperationFailed

logger = logging.getLogger(__name__)

DEFAULT_ROWS = 1000
DEFAULT_COLS = 26


class InMemorySheet:
    """In-memory implementation of the Sheet protocol.

    Attributes:
        resize_calls: Every (rows, cols) passed to resize(), in order
        write_batches: Every batch passed to write_cells(), in order
    """

    def __init__(self, store: InMemoryTabularStore, title: str, rows: int, cols: int) -> None:
        self._store = store
        self._title = title
        self._rows = rows
        self._cols = cols
        self._cells: Dict[tuple, str] = {}
        self._snapshot: Dict[tuple, str] = {}
        self.resize_calls: List[tuple] = []
        self.write_batches: List[List[CellWrite]] = []
        self.load_count = 0

    @property
    def title(self) -> str:
        return self._title

    @property
    def row_count(self) -> int:
        return self._rows

    @property
    def col_count(self) -> int:
        return self._cols

    async def load_cells(self) -> None:
        await self._store._maybe_fail("load_cells")
        self._snapshot = dict(self._cells)
        self.load_count += 1

    async def read_cell(self, row: int, col: int) -> Optional[str]:
        await self._store._maybe_fail("read_cell")
        self._check_bounds(row, col)
        return self._snapshot.get((row, col)) or None

    async def write_cells(self, cells: Sequence[CellWrite]) -> None:
        await self._store._maybe_fail("write_cells")
        for cell in cells:
            self._check_bounds(cell.row, cell.col)
        # Suspend like a network round-trip would
        await asyncio.sleep(0)
        for cell in cells:
            self._cells[(cell.row, cell.col)] = cell.value
            self._snapshot[(cell.row, cell.col)] = cell.value
        self.write_batches.append(list(cells))

    async def resize(self, rows: int, cols: int) -> None:
        await self._store._maybe_fail("resize")
        self.resize_calls.append((rows, cols))
        self._rows = rows
        self._cols = cols
        # Cells outside the new bounds are dropped, like the real service
        self._cells = {k: v for k, v in self._cells.items() if k[0] < rows and k[1] < cols}
        self._snapshot = {k: v for k, v in self._snapshot.items() if k[0] < rows and k[1] < cols}

    def _check_bounds(self, row: int, col: int) -> None:
        if row < 0 or col < 0 or row >= self._rows or col >= self._cols:
            raise CellOutOfBounds(self._title, row, col)

    # Testing helpers

    def rows(self) -> List[List[str]]:
        """Stored rows up to the last non-empty one (testing helper)."""
        if not self._cells:
            return []
        last_row = max(r for r, _ in self._cells)
        return [
            [self._cells.get((r, c), "") for c in range(self._cols)]
            for r in range(last_row + 1)
        ]

    def set_cell(self, row: int, col: int, value: str) -> None:
        """Write a cell directly, bypassing failure injection (testing helper)."""
        self._check_bounds(row, col)
        self._cells[(row, col)] = value


class InMemoryTabularStore:
    """In-memory implementation of TabularStore for testing.

    list_partitions() reflects the last load_metadata() plus sheets this
    store created since, matching the Google Sheets backend.

    Example:
        >>> store = InMemoryTabularStore()
        >>> await store.connect()
        >>> sheet = await store.create_partition("2024-05", 1000, 26)
        >>> await sheet.write_cells([CellWrite(0, 0, "U1")])
    """

    def __init__(self, default_rows: int = DEFAULT_ROWS, default_cols: int = DEFAULT_COLS) -> None:
        self.default_rows = default_rows
        self.default_cols = default_cols
        self._sheets: Dict[str, InMemorySheet] = {}
        self._metadata: Dict[str, InMemorySheet] = {}
        self._connected = False
        self._failures: Dict[str, List[Exception]] = defaultdict(list)
        self.create_calls: List[str] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryTabularStore connected")

    async def close(self) -> None:
        self._connected = False
        logger.debug("InMemoryTabularStore closed")

    async def load_metadata(self) -> None:
        await self._maybe_fail("load_metadata")
        self._metadata = dict(self._sheets)

    async def list_partitions(self) -> Dict[str, InMemorySheet]:
        return dict(self._metadata)

    async def create_partition(
        self, title: str, rows: int = 0, cols: int = 0
    ) -> InMemorySheet:
        await self._maybe_fail("create_partition")
        if title in self._sheets:
            raise StoreOperationFailed(f"A sheet with the name '{title}' already exists")
        sheet = InMemorySheet(self, title, rows or self.default_rows, cols or self.default_cols)
        self._sheets[title] = sheet
        self._metadata[title] = sheet
        self.create_calls.append(title)
        logger.debug("Sheet created in memory", extra={"title": title})
        return sheet

    async def _maybe_fail(self, operation: str) -> None:
        if not self._connected:
            raise StoreOperationFailed("Not connected")
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    # Testing helpers

    def inject_failure(self, operation: str, exception: Optional[Exception] = None) -> None:
        """Make the next call of ``operation`` raise (testing helper).

        Args:
            operation: One of load_metadata, create_partition, load_cells,
                read_cell, write_cells, resize
            exception: Exception to raise (defaults to StoreOperationFailed)
        """
        self._failures[operation].append(
            exception or StoreOperationFailed(f"Injected failure in {operation}")
        )

    def add_sheet(self, title: str, rows: Optional[int] = None, cols: Optional[int] = None) -> InMemorySheet:
        """Create a sheet synchronously, visible immediately (testing helper)."""
        sheet = InMemorySheet(self, title, rows or self.default_rows, cols or self.default_cols)
        self._sheets[title] = sheet
        self._metadata[title] = sheet
        return sheet

    def get_sheet(self, title: str) -> Optional[InMemorySheet]:
        """Look up a sheet by title (testing helper)."""
        return self._sheets.get(title)
