"""
Partition resolution and on-demand growth.

Maps a timestamp to its monthly partition, makes sure the backing sheet
exists, and grows sheets when a row scan runs past their bounds. Both the
append and identity engines grow tables through this module so the two
tables follow the same contract.

Invariants:
    - Partition keys are ``YYYY-MM`` in the configured time zone
    - Partition creation is irreversible and visible to later calls
    - A read past the bounds triggers exactly one resize to
      ``row + grow_block_rows`` before it is retried
    - No retries inside a call; failures surface as PartitionUnavailable
      or StoreOperationFailed and the queue decides what happens next
"""

from __future__ import annotations

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from ..store.base import CellOutOfBounds, Sheet, StoreOperationFailed, TabularStore

logger = logging.getLogger(__name__)

PARTITION_KEY_FORMAT = "%Y-%m"
TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"


class PartitionUnavailable(StoreOperationFailed):
    """Partition could not be retrieved or created."""

    pass


def partition_key(timestamp: datetime, tz: ZoneInfo) -> str:
    """Month key of ``timestamp`` in ``tz``.

    Naive timestamps are taken to already be in ``tz``.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=tz)
    return timestamp.astimezone(tz).strftime(PARTITION_KEY_FORMAT)


def format_timestamp(timestamp: datetime, tz: ZoneInfo) -> str:
    """Render ``timestamp`` as ``YYYY/MM/DD HH:mm:ss`` in ``tz``."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=tz)
    return timestamp.astimezone(tz).strftime(TIMESTAMP_FORMAT)


class PartitionResolver:
    """Resolves and grows sheets in a TabularStore.

    Example:
        >>> resolver = PartitionResolver(store, ZoneInfo("Asia/Tokyo"))
        >>> sheet = await resolver.resolve(datetime.now(timezone.utc))
        >>> value = await resolver.read_key_cell(sheet, 1000)  # grows if needed
    """

    def __init__(
        self,
        store: TabularStore,
        tz: ZoneInfo,
        grow_block_rows: int = 1000,
        columns: int = 3,
    ) -> None:
        """Initialize the resolver.

        Args:
            store: Backing tabular store
            tz: Zone used to derive partition keys
            grow_block_rows: Rows added past the missing row on growth
            columns: Column count for new and resized partitions
        """
        self.store = store
        self.tz = tz
        self.grow_block_rows = grow_block_rows
        self.columns = columns

    def key_for(self, timestamp: datetime) -> str:
        return partition_key(timestamp, self.tz)

    async def resolve(self, timestamp: datetime) -> Sheet:
        """Sheet for the month of ``timestamp``, created if missing.

        Raises:
            PartitionUnavailable: If retrieval or creation fails
        """
        return await self.ensure_table(self.key_for(timestamp), self.columns)

    async def ensure_table(self, title: str, columns: int) -> Sheet:
        """Sheet named ``title``, created with ``columns`` columns if missing.

        Raises:
            PartitionUnavailable: If retrieval or creation fails
        """
        try:
            await self.store.load_metadata()
            sheet = (await self.store.list_partitions()).get(title)
            if sheet is None:
                sheet = await self.store.create_partition(title, self.grow_block_rows, columns)
                logger.info("Partition created", extra={"partition": title})
            await sheet.load_cells()
        except StoreOperationFailed as e:
            raise PartitionUnavailable(f"Partition '{title}' unavailable: {e}") from e
        return sheet

    async def read_key_cell(self, sheet: Sheet, row: int, columns: int | None = None) -> str | None:
        """Read column 0 of ``row``, growing the sheet once if it is too short.

        Args:
            sheet: Sheet to read
            row: Zero-based row index
            columns: Column count to keep on resize (defaults to the
                resolver's partition columns)

        Raises:
            StoreOperationFailed: If the read still fails after growing
        """
        try:
            return await sheet.read_cell(row, 0)
        except CellOutOfBounds:
            pass

        rows = row + self.grow_block_rows
        cols = max(columns or self.columns, sheet.col_count)
        await sheet.resize(rows, cols)
        logger.info(
            "Partition grown",
            extra={"partition": sheet.title, "rows": rows, "cols": cols},
        )
        await sheet.load_cells()
        return await sheet.read_cell(row, 0)
