"""
Per-partition hint of the next unused row.

The cached index is a lower bound on the true first empty row. A low hint
only costs extra scanning; a hint above the true first empty row would
skip free rows, so the hint only moves after a confirmed write and never
moves down. Nothing is persisted: a fresh cache (or reset()) means a cold
rescan from row 0.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class RowCursorCache:
    """Partition key -> first-empty-row lower bound.

    Owned by a single AppendEngine; no locking because only the append
    queue's in-flight task touches it.
    """

    def __init__(self) -> None:
        self._next_rows: dict[str, int] = {}

    def get(self, partition_key: str) -> int:
        return self._next_rows.get(partition_key, 0)

    def advance(self, partition_key: str, next_free_row: int) -> None:
        current = self.get(partition_key)
        if next_free_row < current:
            logger.warning(
                "Ignoring cursor move backwards",
                extra={"partition": partition_key, "current": current, "requested": next_free_row},
            )
            return
        self._next_rows[partition_key] = next_free_row

    def reset(self, partition_key: str | None = None) -> None:
        """Forget hints so the next append rescans from row 0."""
        if partition_key is None:
            self._next_rows.clear()
        else:
            self._next_rows.pop(partition_key, None)

    def snapshot(self) -> dict[str, int]:
        return dict(self._next_rows)

    def __len__(self) -> int:
        return len(self._next_rows)
