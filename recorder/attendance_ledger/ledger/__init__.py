"""
Ledger module - ordered, crash-tolerant writes into the tabular store.

This module handles:
- Monthly partition resolution and on-demand growth
- Row cursor hints for appends
- Attendance appends and identity upserts
- Waiting for identity data to propagate from the source

Invariants:
    - Each engine is driven by exactly one single-writer queue
    - The row cursor is a lower bound and only advances after a write
    - Attendance rows are append-only; identity rows update in place

How to change safely:
    - Verify ordering with the queue-level integration tests
    - Test cold restarts (empty cursor against populated sheets)
"""

from .append_engine import AppendEngine, AppendResult, AttendanceRecord
from .cursor import RowCursorCache
from .identity_engine import IdentityUpsertEngine, UpsertResult
from .partitions import PartitionResolver, PartitionUnavailable, format_timestamp, partition_key
from .presence import (
    IdentityResolutionTimeout,
    IdentityUnresolved,
    PresenceError,
    PresenceResolver,
)

__all__ = [
    "AppendEngine",
    "AppendResult",
    "AttendanceRecord",
    "RowCursorCache",
    "IdentityUpsertEngine",
    "UpsertResult",
    "PartitionResolver",
    "PartitionUnavailable",
    "format_timestamp",
    "partition_key",
    "PresenceResolver",
    "PresenceError",
    "IdentityUnresolved",
    "IdentityResolutionTimeout",
]
