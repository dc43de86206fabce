"""
Tabular store abstraction for the attendance ledger.

This module provides a pluggable store interface supporting:
- Google Sheets (production)
- In-memory (for testing and local runs)

Invariants:
    - A sheet only ever grows; existing rows are never reordered
    - write_cells() returns only after the batch is confirmed
    - All backend failures surface as StoreOperationFailed

How to change safely:
    - New backends must implement the TabularStore and Sheet protocols
    - Run the integration suite against the in-memory backend first
"""

from .base import (
    CellOutOfBounds,
    CellWrite,
    Sheet,
    StoreError,
    StoreOperationFailed,
    TabularStore,
    create_tabular_store,
)
from .gsheets import GoogleSheetsStore
from .memory import InMemoryTabularStore

__all__ = [
    # Protocol and types
    "TabularStore",
    "Sheet",
    "CellWrite",
    "StoreError",
    "StoreOperationFailed",
    "CellOutOfBounds",
    # Factory
    "create_tabular_store",
    # Implementations
    "GoogleSheetsStore",
    "InMemoryTabularStore",
]
