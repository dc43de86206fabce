"""
Integration tests for the recorder with in-memory store and source.

Tests cover:
- End-to-end event processing into partitions and the identity table
- Ordering across many events
- Dropped events, store failures and source reconnects
- Service lifecycle with the memory backend
"""

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from recorder.attendance_ledger.config import (
    LedgerConfig,
    PresenceConfig,
    RecorderConfig,
    StoreBackend,
)
from recorder.attendance_ledger.ledger import (
    AppendEngine,
    IdentityUpsertEngine,
    PartitionResolver,
    PresenceResolver,
    RowCursorCache,
)
from recorder.attendance_ledger import main as service_main
from recorder.attendance_ledger.main import RecorderService
from recorder.attendance_ledger.recorder import AttendanceRecorder, EventLabels, IdentitySyncTask
from recorder.attendance_ledger.source.base import (
    EventKind,
    Identity,
    PresenceEvent,
    SourceUnavailable,
)
from recorder.attendance_ledger.source.memory import InMemoryPresenceSource
from recorder.attendance_ledger.store.memory import InMemoryTabularStore
from recorder.attendance_ledger.writer.dead_letter import InMemoryDeadLetterSink

TOKYO = ZoneInfo("Asia/Tokyo")
TABLE = "ユーザーマスタ"


def at(hour, minute=0, day=1):
    return datetime(2024, 5, day, hour, minute, tzinfo=TOKYO)


async def wait_until(predicate, timeout=2.0):
    """Poll ``predicate`` until true or fail the test."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(0.005)


def idle(recorder):
    append, identity = recorder.append_queue.stats(), recorder.identity_queue.stats()
    return (
        append.backlog == 0 and not append.in_flight
        and identity.backlog == 0 and not identity.in_flight
    )


class FailingSource(InMemoryPresenceSource):
    """Source whose stream breaks with a non-connection error."""

    async def events(self):
        raise RuntimeError("provider protocol error")
        yield


class EndingSource(InMemoryPresenceSource):
    """Source whose stream ends without an error."""

    async def events(self):
        return
        yield


class StickySource(InMemoryPresenceSource):
    """Source that reports a drop but leaves its connected flag set."""

    async def events(self):
        try:
            async for event in super().events():
                yield event
        except SourceUnavailable:
            self._connected = True
            raise


class TestAttendanceRecorder:
    """Integration tests for AttendanceRecorder."""

    @pytest_asyncio.fixture
    async def store(self):
        store = InMemoryTabularStore()
        await store.connect()
        return store

    @pytest.fixture
    def source(self):
        source = InMemoryPresenceSource()
        source.register("enc-1", Identity("U1", "Alice"))
        source.register("enc-2", Identity("U2", "Bob"))
        return source

    @pytest.fixture
    def dead_letters(self):
        return InMemoryDeadLetterSink()

    @pytest.fixture
    def cursor(self):
        return RowCursorCache()

    @pytest_asyncio.fixture
    async def recorder(self, store, source, dead_letters, cursor):
        resolver = PartitionResolver(store, TOKYO)
        recorder = AttendanceRecorder(
            source=source,
            resolver=PresenceResolver(source, poll_interval=0.001),
            append_engine=AppendEngine(resolver, cursor),
            identity_engine=IdentityUpsertEngine(resolver, TABLE),
            labels=EventLabels(enter="Enter", exit="Exit"),
            dead_letter=dead_letters,
            reconnect_delay=0.001,
        )
        task = asyncio.create_task(recorder.start())
        await wait_until(lambda: source.is_connected)
        yield recorder
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await recorder.stop()

    async def settle(self, recorder, source, events):
        await wait_until(lambda: recorder.stats()["events"] >= events)
        await wait_until(lambda: idle(recorder))

    @pytest.mark.asyncio
    async def test_enter_enter_exit_scenario(self, recorder, store, source, cursor):
        source.emit_enter("enc-1", at(9, 0))
        source.emit_enter("enc-2", at(9, 5))
        source.emit_exit("enc-1", at(18, 0))
        await self.settle(recorder, source, 3)

        assert store.get_sheet("2024-05").rows() == [
            ["U1", "2024/05/01 09:00:00", "Enter"],
            ["U2", "2024/05/01 09:05:00", "Enter"],
            ["U1", "2024/05/01 18:00:00", "Exit"],
        ]
        assert cursor.get("2024-05") == 3
        assert store.get_sheet(TABLE).rows() == [["U1", "Alice"], ["U2", "Bob"]]

    @pytest.mark.asyncio
    async def test_exit_does_not_sync_identity(self, recorder, store, source):
        source.emit_exit("enc-1", at(18, 0))
        await self.settle(recorder, source, 1)

        assert recorder.identity_queue.stats().submitted == 0
        assert store.get_sheet(TABLE) is None

    @pytest.mark.asyncio
    async def test_many_events_keep_submission_order(self, recorder, store, source):
        for i in range(40):
            if i % 2 == 0:
                source.emit_enter("enc-1" if i % 4 == 0 else "enc-2", at(9, i))
            else:
                source.emit_exit("enc-1" if i % 4 == 1 else "enc-2", at(9, i))
        await self.settle(recorder, source, 40)

        rows = store.get_sheet("2024-05").rows()
        assert len(rows) == 40
        assert [r[1] for r in rows] == [f"2024/05/01 09:{i:02d}:00" for i in range(40)]
        assert store.get_sheet(TABLE).rows() == [["U1", "Alice"], ["U2", "Bob"]]

    @pytest.mark.asyncio
    async def test_unknown_connection_dropped(self, recorder, store, source):
        source.emit_enter("enc-unknown", at(9, 0))
        source.emit_enter("enc-1", at(9, 1))
        await self.settle(recorder, source, 2)

        assert recorder.stats()["dropped"] == 1
        assert [r[0] for r in store.get_sheet("2024-05").rows()] == ["U1"]

    @pytest.mark.asyncio
    async def test_late_display_name(self, recorder, store, source):
        """Identity sync waits for the name while appends proceed."""
        source.register("enc-3", "U3")
        source.emit_enter("enc-3", at(9, 0))
        await wait_until(lambda: store.get_sheet("2024-05") is not None
                         and len(store.get_sheet("2024-05").rows()) == 1)

        assert store.get_sheet(TABLE) is None
        source.set_identity(Identity("U3", "Carol"))
        await self.settle(recorder, source, 1)

        assert store.get_sheet(TABLE).rows() == [["U3", "Carol"]]

    @pytest.mark.asyncio
    async def test_rename_updates_identity(self, recorder, store, source):
        source.emit_enter("enc-1", at(9, 0))
        await self.settle(recorder, source, 1)
        source.set_identity(Identity("U1", "Alicia"))
        source.emit_enter("enc-1", at(10, 0))
        await self.settle(recorder, source, 2)

        assert store.get_sheet(TABLE).rows() == [["U1", "Alicia"]]

    @pytest.mark.asyncio
    async def test_store_failure_dead_lettered(self, recorder, store, source, dead_letters):
        """A failed write is discarded and the next record still lands."""
        source.emit_exit("enc-1", at(9, 0))
        await self.settle(recorder, source, 1)
        store.inject_failure("write_cells")
        source.emit_exit("enc-2", at(9, 1))
        source.emit_exit("enc-1", at(9, 2))
        await self.settle(recorder, source, 3)

        rows = store.get_sheet("2024-05").rows()
        assert [r[1] for r in rows] == ["2024/05/01 09:00:00", "2024/05/01 09:02:00"]
        assert len(dead_letters) == 1
        assert dead_letters.letters[0].queue == "append"
        assert dead_letters.letters[0].task.identity_id == "U2"
        assert recorder.append_queue.stats().failed == 1

    @pytest.mark.asyncio
    async def test_reconnects_after_disconnect(self, recorder, store, source):
        source.emit_enter("enc-1", at(9, 0))
        source.drop_connection()
        source.emit_exit("enc-1", at(18, 0))
        await self.settle(recorder, source, 2)

        assert source.connect_count == 2
        assert recorder.stats()["reconnects"] == 1
        assert len(store.get_sheet("2024-05").rows()) == 2

    @pytest.mark.asyncio
    async def test_reconnects_when_connected_flag_stays_set(self, store, dead_letters):
        source = StickySource()
        source.register("enc-1", Identity("U1", "Alice"))
        resolver = PartitionResolver(store, TOKYO)
        recorder = AttendanceRecorder(
            source=source,
            resolver=PresenceResolver(source, poll_interval=0.001),
            append_engine=AppendEngine(resolver, RowCursorCache()),
            identity_engine=IdentityUpsertEngine(resolver, TABLE),
            dead_letter=dead_letters,
            reconnect_delay=0.001,
        )
        task = asyncio.create_task(recorder.start())
        await wait_until(lambda: source.is_connected)

        source.emit_enter("enc-1", at(9, 0))
        source.drop_connection()
        source.emit_exit("enc-1", at(18, 0))
        await self.settle(recorder, source, 2)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await recorder.stop()

        assert source.connect_count == 2
        assert recorder.stats()["reconnects"] == 1
        assert len(store.get_sheet("2024-05").rows()) == 2

    @pytest.mark.asyncio
    async def test_identity_timeout_dead_lettered(self, store, dead_letters):
        source = InMemoryPresenceSource()
        source.register("enc-9", "U9")
        resolver = PartitionResolver(store, TOKYO)
        recorder = AttendanceRecorder(
            source=source,
            resolver=PresenceResolver(source, poll_interval=0, max_attempts=3),
            append_engine=AppendEngine(resolver, RowCursorCache()),
            identity_engine=IdentityUpsertEngine(resolver, TABLE),
            dead_letter=dead_letters,
        )
        await recorder.append_queue.start()
        await recorder.identity_queue.start()

        await recorder.handle_event(PresenceEvent(EventKind.ENTER, "enc-9", at(9, 0)))
        await recorder.identity_queue.join()
        await recorder.append_queue.join()
        await recorder.stop()

        assert dead_letters.letters[0].task == IdentitySyncTask("U9")
        assert dead_letters.letters[0].error_type == "IdentityResolutionTimeout"
        assert store.get_sheet("2024-05").rows()[0][2] == "入室"


class TestRecorderService:
    """Service lifecycle with the memory backend."""

    @pytest.fixture
    def config(self):
        return RecorderConfig(
            store_backend=StoreBackend.MEMORY,
            presence=PresenceConfig(api_key="key", space_id="space", poll_interval_ms=1),
            ledger=LedgerConfig(grow_block_rows=10),
        )

    def test_build_wires_from_config(self, config):
        service = RecorderService(config)

        recorder = service.build()

        assert isinstance(service.store, InMemoryTabularStore)
        assert isinstance(service.source, InMemoryPresenceSource)
        assert recorder.labels == EventLabels(enter="入室", exit="退室")
        assert recorder.identity_engine.table == TABLE
        assert recorder.append_engine.resolver.grow_block_rows == 10

    @pytest.mark.asyncio
    async def test_start_record_shutdown(self, config):
        service = RecorderService(config)
        recorder = service.build()
        service.source.register("enc-1", Identity("U1", "Alice"))

        task = asyncio.create_task(service.start())
        await wait_until(lambda: service.source.is_connected and recorder.append_queue.is_running)

        service.source.emit_enter("enc-1", at(9, 0))
        await wait_until(lambda: recorder.stats()["events"] == 1)
        await wait_until(lambda: idle(recorder))

        service.request_shutdown()
        await task
        await service.stop()

        assert service.store.get_sheet("2024-05").rows()[0] == ["U1", "2024/05/01 09:00:00", "入室"]
        assert service.store.get_sheet(TABLE).rows() == [["U1", "Alice"]]
        assert not service.store.is_connected
        assert not service.source.is_connected

    @pytest.mark.asyncio
    async def test_recorder_error_stops_service(self, config):
        service = RecorderService(config, source=FailingSource())

        with pytest.raises(RuntimeError, match="provider protocol error"):
            await asyncio.wait_for(service.start(), timeout=2)

        assert not service.store.is_connected
        assert not service.source.is_connected

    @pytest.mark.asyncio
    async def test_ended_stream_stops_service(self, config):
        service = RecorderService(config, source=EndingSource())

        await asyncio.wait_for(service.start(), timeout=2)
        await service.stop()

        assert not service.store.is_connected

    def test_main_exits_nonzero_on_recorder_error(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "memory")
        monkeypatch.setenv("GATHER_API_KEY", "key")
        monkeypatch.setenv("GATHER_SPACE_ID", "space")
        monkeypatch.setattr(service_main, "setup_logging", lambda config: None)
        monkeypatch.setattr(
            service_main, "create_presence_source", lambda config: FailingSource(config)
        )

        with pytest.raises(SystemExit) as exc_info:
            service_main.main()

        assert exc_info.value.code == 1
