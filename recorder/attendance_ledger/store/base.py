"""
Base protocol and types for the tabular store abstraction.

This module defines the TabularStore and Sheet protocols that all store
backends must implement, along with the cell types and errors shared by
the ledger engines.

Invariants:
    - Row and column indices are zero-based on this side of the protocol
    - read_cell() raises CellOutOfBounds for indices past the sheet bounds
    - write_cells() returns only after the whole batch is confirmed
    - Sheets grow via resize() and never reorder existing rows

How to change safely:
    - Protocol changes require updating all implementations
    - Keep in-memory and Google Sheets backends behaviourally identical
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)
import logging

if TYPE_CHECKING:
    from ..config import RecorderConfig

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for tabular store operations."""
    pass


class StoreOperationFailed(StoreError):
    """Reading, writing, creating or resizing in the store failed."""
    pass


class CellOutOfBounds(StoreOperationFailed):
    """Cell lies beyond the sheet's current row/column bounds."""

    def __init__(self, title: str, row: int, col: int) -> None:
        super().__init__(f"Cell ({row}, {col}) is out of bounds for sheet '{title}'")
        self.title = title
        self.row = row
        self.col = col


@dataclass(frozen=True)
class CellWrite:
    """A single cell value scheduled for a batch write.

    Attributes:
        row: Zero-based row index
        col: Zero-based column index
        value: Cell value as text
    """
    row: int
    col: int
    value: str

    def __str__(self) -> str:
        return f"({self.row}, {self.col})={self.value!r}"


@runtime_checkable
class Sheet(Protocol):
    """A single named table inside the store.

    Cell reads are served from the last load_cells() snapshot, the same way
    a spreadsheet client caches a loaded range. Writes go straight to the
    backend and update the snapshot once confirmed.
    """

    @property
    @abstractmethod
    def title(self) -> str:
        """Sheet title (partition key or identity table name)."""
        ...

    @property
    @abstractmethod
    def row_count(self) -> int:
        """Current number of rows."""
        ...

    @property
    @abstractmethod
    def col_count(self) -> int:
        """Current number of columns."""
        ...

    @abstractmethod
    async def load_cells(self) -> None:
        """Refresh the local snapshot of cell values.

        Raises:
            StoreOperationFailed: If the backend read fails
        """
        ...

    @abstractmethod
    async def read_cell(self, row: int, col: int) -> Optional[str]:
        """Read one cell from the snapshot.

        Returns:
            The cell text, or None for an empty cell

        Raises:
            CellOutOfBounds: If the cell is outside the sheet
        """
        ...

    @abstractmethod
    async def write_cells(self, cells: Sequence[CellWrite]) -> None:
        """Write a batch of cells and wait for confirmation.

        Raises:
            CellOutOfBounds: If any cell is outside the sheet
            StoreOperationFailed: If the backend write fails
        """
        ...

    @abstractmethod
    async def resize(self, rows: int, cols: int) -> None:
        """Resize the sheet to the given dimensions.

        Raises:
            StoreOperationFailed: If the backend resize fails
        """
        ...


@runtime_checkable
class TabularStore(Protocol):
    """Protocol for tabular store backends.

    Example:
        >>> store = GoogleSheetsStore(config.sheets)
        >>> await store.connect()
        >>> await store.load_metadata()
        >>> sheets = await store.list_partitions()
        >>> sheet = sheets.get("2024-05") or await store.create_partition("2024-05")
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect and authenticate against the backend.

        Raises:
            StoreOperationFailed: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def load_metadata(self) -> None:
        """Refresh the list of sheets known to the store.

        Raises:
            StoreOperationFailed: If the metadata request fails
        """
        ...

    @abstractmethod
    async def list_partitions(self) -> Dict[str, Sheet]:
        """Sheets from the last load_metadata(), keyed by title."""
        ...

    @abstractmethod
    async def create_partition(self, title: str, rows: int, cols: int) -> Sheet:
        """Create a new sheet.

        Raises:
            StoreOperationFailed: If creation fails
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def row_values(cells: List[CellWrite]) -> List[str]:
    """Values of a batch in column order, for logging."""
    return [c.value for c in sorted(cells, key=lambda c: (c.row, c.col))]


def create_tabular_store(config: "RecorderConfig") -> TabularStore:
    """Factory function to create a tabular store from configuration.

    Args:
        config: Recorder configuration

    Returns:
        Appropriate TabularStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .gsheets import GoogleSheetsStore
    from .memory import InMemoryTabularStore

    if config.store_backend == StoreBackend.GSHEETS:
        return GoogleSheetsStore(config.sheets)
    elif config.store_backend == StoreBackend.MEMORY:
        return InMemoryTabularStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
