"""
Identity upsert engine for the identity table.

Keeps one row per identity id in a single non-partitioned sheet, with the
last known display name next to it. Rows are updated in place; no name
history is kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..store.base import CellWrite
from .partitions import PartitionResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of an identity upsert.

    Attributes:
        identity_id: Identity that was written
        display_name: Name now stored for it
        row: Zero-based row of the identity
        created: True if a new row was added, False if updated in place
    """

    identity_id: str
    display_name: str
    row: int
    created: bool


class IdentityUpsertEngine:
    """Finds or creates the row for an identity and sets its name.

    There is no cursor: the identity count is small and matches are by
    value, so every call scans from row 0. The table grows on demand the
    same way attendance partitions do.
    """

    def __init__(self, resolver: PartitionResolver, table: str, columns: int = 2) -> None:
        """Initialize the engine.

        Args:
            resolver: Resolver for the store holding the identity table
            table: Identity table title
            columns: Column count of the identity table
        """
        self.resolver = resolver
        self.table = table
        self.columns = columns

    async def upsert(self, identity_id: str, display_name: str) -> UpsertResult:
        """Create or update the row for ``identity_id``.

        Raises:
            PartitionUnavailable: If the identity table cannot be resolved
            StoreOperationFailed: If any read, resize or write fails
        """
        sheet = await self.resolver.ensure_table(self.table, self.columns)

        row = 0
        while True:
            current = await self.resolver.read_key_cell(sheet, row, self.columns)
            if current == identity_id:
                await sheet.write_cells([CellWrite(row, 1, display_name)])
                created = False
                break
            if not current:
                await sheet.write_cells([
                    CellWrite(row, 0, identity_id),
                    CellWrite(row, 1, display_name),
                ])
                created = True
                break
            row += 1

        logger.info(
            "Identity synced",
            extra={"identity_id": identity_id, "row": row, "created": created},
        )
        return UpsertResult(identity_id=identity_id, display_name=display_name, row=row, created=created)
