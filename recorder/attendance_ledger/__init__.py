"""
Attendance Ledger - presence events recorded into a spreadsheet ledger.

This package observes entry/exit events from a live virtual-space session
and appends them, with an identity-to-display-name table, to a tabular
store partitioned by month:
- One single-writer queue per table serializes all writes against it
- A row cursor hint avoids rescanning a partition on every append
- Partitions and the identity table grow on demand

Architecture:
    ┌──────────────┐     ┌────────────────────┐
    │   Presence   │────▶│ AttendanceRecorder │
    │   Source     │     └─────────┬──────────┘
    └──────────────┘               │
                         ┌─────────┴─────────┐
                         ▼                   ▼
                  ┌─────────────┐     ┌─────────────┐
                  │  identity   │     │   append    │
                  │   queue     │     │   queue     │
                  └──────┬──────┘     └──────┬──────┘
                         ▼                   ▼
                  ┌─────────────┐     ┌─────────────┐
                  │  Identity   │     │   Append    │
                  │   Upsert    │     │   Engine    │
                  └──────┬──────┘     └──────┬──────┘
                         └─────────┬─────────┘
                                   ▼
                       ┌────────────────────────┐
                       │ Tabular store (Sheets) │
                       └────────────────────────┘

Invariants:
    - Attendance rows are append-only and land in event order
    - Exactly one identity-table row exists per identity id
    - Failed writes are dead-lettered, never retried

How to change safely:
    - Never write to a table outside its queue
    - Keep the in-memory store behaviourally identical to Google Sheets
"""

from ._version import __version__

__all__ = ["__version__"]
