"""
Attendance Ledger Test Suite.

This package contains:
- unit/: Unit tests (in-memory store and source, no network)
- integration/: Recorder, queues and engines wired together
"""
