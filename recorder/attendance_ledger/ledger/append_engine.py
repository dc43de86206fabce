"""
Append engine for monthly attendance partitions.

The AppendEngine writes one AttendanceRecord per call into the first empty
row of the record's partition. It ensures:
- Rows land in call order with no gaps and no overwrites
- The three columns of a record are written as one confirmed batch
- The row cursor advances only after the write is confirmed

Invariants:
    - Only ever invoked from the single-writer append queue, so no two
      row searches interleave even though scan-then-write is not
      transactional against the store
    - The search starts at the cursor hint, which is a lower bound
    - Existing non-empty rows are never written

How to change safely:
    - Any new caller must go through the append queue
    - Test cold restarts by resetting the cursor against a populated sheet
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..store.base import CellWrite, row_values
from .cursor import RowCursorCache
from .partitions import PartitionResolver, format_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttendanceRecord:
    """A single attendance row.

    Attributes:
        identity_id: Stable identity id
        timestamp: Event time (timezone-aware)
        event_label: Entry or exit label as written to the sheet
    """

    identity_id: str
    timestamp: datetime
    event_label: str


@dataclass(frozen=True)
class AppendResult:
    """Where a record was written.

    Attributes:
        record: The appended record
        partition: Partition key (sheet title)
        row: Zero-based row index the record was written to
        rows_scanned: Rows read before the insertion point was found
    """

    record: AttendanceRecord
    partition: str
    row: int
    rows_scanned: int


class AppendEngine:
    """Appends attendance records to monthly partitions.

    Example:
        >>> engine = AppendEngine(resolver, RowCursorCache())
        >>> result = await engine.append(AttendanceRecord("U1", now, "入室"))
        >>> result.row
        0
    """

    def __init__(self, resolver: PartitionResolver, cursor: RowCursorCache) -> None:
        """Initialize the engine.

        Args:
            resolver: Partition resolver for the attendance store
            cursor: Row cursor cache owned by this engine
        """
        self.resolver = resolver
        self.cursor = cursor

    async def append(self, record: AttendanceRecord) -> AppendResult:
        """Append ``record`` to the first empty row of its partition.

        Raises:
            PartitionUnavailable: If the partition cannot be resolved
            StoreOperationFailed: If any read, resize or write fails
        """
        key = self.resolver.key_for(record.timestamp)
        sheet = await self.resolver.resolve(record.timestamp)

        start = self.cursor.get(key)
        row = start
        while await self.resolver.read_key_cell(sheet, row):
            row += 1

        cells = [
            CellWrite(row, 0, record.identity_id),
            CellWrite(row, 1, format_timestamp(record.timestamp, self.resolver.tz)),
            CellWrite(row, 2, record.event_label),
        ]
        await sheet.write_cells(cells)
        self.cursor.advance(key, row + 1)

        logger.info(
            "Attendance appended",
            extra={"partition": key, "row": row, "data": row_values(cells)},
        )
        return AppendResult(record=record, partition=key, row=row, rows_scanned=row - start + 1)
