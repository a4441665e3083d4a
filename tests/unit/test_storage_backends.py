"""
Unit tests for storage backends.

Tests cover:
- The StorageBackend contract on the SQLite and in-memory backends
  (clustering order, upserts, partition isolation, batch atomicity)
- SQLite specifics (TIMEUUID encoding, persistence, layout verification,
  worker-thread connections, in-transaction rollback)
- In-memory testing helpers (failure injection)
"""

import sqlite3
import tempfile
import threading
import uuid
from pathlib import Path

import pytest

from dbaas.docservice_server.config import SqliteConfig
from dbaas.docservice_server.ids import VersionIdGenerator
from dbaas.docservice_server.schema.tables import (
    ALL_TABLES,
    DOCUMENTS,
    LINKS,
    REFERENCES,
    ColumnType,
)
from dbaas.docservice_server.storage import (
    InMemoryBackend,
    RowWrite,
    SqliteBackend,
    StorageBackend,
    StorageBatchError,
    StorageConnectionError,
    StorageError,
)
from dbaas.docservice_server.storage.sqlite import decode_value, encode_value


async def collect(backend, table, partition, clustering=None):
    return [row async for row in backend.scan(table, partition, clustering)]


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(params=["memory", "sqlite"])
async def backend(request, data_dir):
    """Connected backend with the DocService tables."""
    if request.param == "memory":
        b = InMemoryBackend()
    else:
        b = SqliteBackend(SqliteConfig(data_dir=data_dir, wal_mode=False, fetch_size=2))
    await b.connect()
    await b.ensure_keyspace("docservice", 1)
    for spec in ALL_TABLES:
        await b.ensure_table(spec)
    yield b
    await b.close()


class TestStorageContract:
    """Behaviour every backend must share."""

    @pytest.mark.asyncio
    async def test_implements_protocol(self, backend):
        assert isinstance(backend, StorageBackend)
        assert backend.is_connected

    @pytest.mark.asyncio
    async def test_documents_scan_newest_first(self, backend):
        """TimeUUID clustering column is returned in descending time order."""
        gen = VersionIdGenerator()
        ids = [gen.mint() for _ in range(5)]

        # Insert out of order, one batch per row
        for vid in [ids[2], ids[0], ids[4], ids[1], ids[3]]:
            await backend.apply_batch(
                [RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": str(vid)})]
            )

        rows = await collect(backend, DOCUMENTS, {"key": "k"})

        assert [r["version_id"] for r in rows] == list(reversed(ids))
        assert all(isinstance(r["version_id"], uuid.UUID) for r in rows)

    @pytest.mark.asyncio
    async def test_links_scan_ascending_by_link_id(self, backend):
        vid = VersionIdGenerator().mint()
        writes = [
            RowWrite(
                LINKS,
                {"key": "k", "version_id": vid, "link_id": i, "title": f"t{i}", "uri": f"u{i}"},
            )
            for i in (3, 1, 2)
        ]
        await backend.apply_batch(writes)

        rows = await collect(backend, LINKS, {"key": "k", "version_id": vid})

        assert [r["link_id"] for r in rows] == [1, 2, 3]
        assert rows[0] == {"key": "k", "version_id": vid, "link_id": 1, "title": "t1", "uri": "u1"}

    @pytest.mark.asyncio
    async def test_same_primary_key_replaces_row(self, backend):
        """Last write in a batch wins for a duplicated primary key."""
        vid = VersionIdGenerator().mint()
        base = {"key": "k", "version_id": vid, "link_id": 1}
        await backend.apply_batch(
            [
                RowWrite(LINKS, {**base, "title": "first", "uri": "a"}),
                RowWrite(LINKS, {**base, "title": "second", "uri": "b"}),
            ]
        )

        rows = await collect(backend, LINKS, {"key": "k", "version_id": vid})

        assert len(rows) == 1
        assert rows[0]["title"] == "second"

    @pytest.mark.asyncio
    async def test_partitions_are_isolated(self, backend):
        gen = VersionIdGenerator()
        v1, v2 = gen.mint(), gen.mint()
        await backend.apply_batch(
            [
                RowWrite(LINKS, {"key": "k", "version_id": v1, "link_id": 1, "title": "a", "uri": "a"}),
                RowWrite(LINKS, {"key": "k", "version_id": v2, "link_id": 1, "title": "b", "uri": "b"}),
                RowWrite(DOCUMENTS, {"key": "other", "version_id": v1, "html": "x"}),
            ]
        )

        assert [r["title"] for r in await collect(backend, LINKS, {"key": "k", "version_id": v1})] == ["a"]
        assert [r["title"] for r in await collect(backend, LINKS, {"key": "k", "version_id": v2})] == ["b"]
        assert await collect(backend, DOCUMENTS, {"key": "k"}) == []

    @pytest.mark.asyncio
    async def test_clustering_filter_selects_one_row(self, backend):
        gen = VersionIdGenerator()
        v1, v2 = gen.mint(), gen.mint()
        await backend.apply_batch(
            [
                RowWrite(DOCUMENTS, {"key": "k", "version_id": v1, "html": "one"}),
                RowWrite(DOCUMENTS, {"key": "k", "version_id": v2, "html": "two"}),
            ]
        )

        rows = await collect(backend, DOCUMENTS, {"key": "k"}, {"version_id": v1})

        assert [r["html"] for r in rows] == ["one"]

    @pytest.mark.asyncio
    async def test_invalid_row_rejects_whole_batch(self, backend):
        """A batch with a bad row leaves no row behind."""
        vid = VersionIdGenerator().mint()
        with pytest.raises(StorageBatchError):
            await backend.apply_batch(
                [
                    RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"}),
                    RowWrite(LINKS, {"key": "k", "version_id": vid, "title": "no id"}),
                ]
            )

        assert await collect(backend, DOCUMENTS, {"key": "k"}) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "table,row",
        [
            (LINKS, {"link_id": 2**31, "title": "t", "uri": "u"}),
            (LINKS, {"link_id": 2**63, "title": "t", "uri": "u"}),
            (REFERENCES, {"link_id": 1, "anchor": "a", "position": -(2**31) - 1}),
        ],
    )
    async def test_int_outside_32_bits_rejects_whole_batch(self, backend, table, row):
        """Every backend refuses INT values a 32-bit column cannot hold."""
        vid = VersionIdGenerator().mint()
        with pytest.raises(StorageBatchError, match="32-bit"):
            await backend.apply_batch(
                [
                    RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"}),
                    RowWrite(table, {"key": "k", "version_id": vid, **row}),
                ]
            )

        assert await collect(backend, DOCUMENTS, {"key": "k"}) == []
        assert await collect(backend, table, {"key": "k", "version_id": vid}) == []

    @pytest.mark.asyncio
    async def test_int_bounds_stored(self, backend):
        vid = VersionIdGenerator().mint()
        await backend.apply_batch(
            [
                RowWrite(LINKS, {"key": "k", "version_id": vid, "link_id": -(2**31), "title": "lo", "uri": "u"}),
                RowWrite(LINKS, {"key": "k", "version_id": vid, "link_id": 2**31 - 1, "title": "hi", "uri": "u"}),
            ]
        )

        rows = await collect(backend, LINKS, {"key": "k", "version_id": vid})
        assert [r["link_id"] for r in rows] == [-(2**31), 2**31 - 1]

    @pytest.mark.asyncio
    async def test_unknown_column_rejected(self, backend):
        vid = VersionIdGenerator().mint()
        with pytest.raises(StorageBatchError, match="Unknown columns"):
            await backend.apply_batch(
                [RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x", "extra": 1})]
            )

    @pytest.mark.asyncio
    async def test_ensure_table_is_idempotent(self, backend):
        for spec in ALL_TABLES:
            await backend.ensure_table(spec)

    @pytest.mark.asyncio
    async def test_operations_require_connection(self, backend):
        await backend.close()
        vid = VersionIdGenerator().mint()

        with pytest.raises(StorageConnectionError):
            await backend.apply_batch(
                [RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"})]
            )
        with pytest.raises(StorageConnectionError):
            await collect(backend, DOCUMENTS, {"key": "k"})


class TestSqliteBackend:
    """SQLite-specific behaviour."""

    @pytest.fixture
    def config(self, data_dir):
        return SqliteConfig(data_dir=data_dir, wal_mode=True)

    def test_timeuuid_encoding_preserves_time_order(self):
        gen = VersionIdGenerator()
        ids = [gen.mint() for _ in range(50)]

        encoded = [encode_value(ColumnType.TIMEUUID, v) for v in ids]

        assert encoded == sorted(encoded)
        assert [decode_value(ColumnType.TIMEUUID, e) for e in encoded] == ids

    def test_encoding_passes_other_types_through(self):
        assert encode_value(ColumnType.INT, 7) == 7
        assert encode_value(ColumnType.TEXT, "x") == "x"
        assert encode_value(ColumnType.TEXT, None) is None
        assert decode_value(ColumnType.TIMEUUID, None) is None

    @pytest.mark.asyncio
    async def test_requires_keyspace(self, config):
        backend = SqliteBackend(config)
        await backend.connect()

        with pytest.raises(StorageConnectionError, match="keyspace"):
            await backend.ensure_table(DOCUMENTS)

    @pytest.mark.asyncio
    async def test_one_file_per_keyspace(self, config, data_dir):
        backend = SqliteBackend(config)
        await backend.connect()
        await backend.ensure_keyspace("docs_a", 3)

        assert (Path(data_dir) / "docs_a.db").exists()

    @pytest.mark.asyncio
    async def test_data_survives_reconnect(self, config):
        vid = VersionIdGenerator().mint()

        first = SqliteBackend(config)
        await first.connect()
        await first.ensure_keyspace("docservice", 1)
        await first.ensure_table(DOCUMENTS)
        await first.apply_batch([RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"})])
        await first.close()

        second = SqliteBackend(config)
        await second.connect()
        await second.ensure_keyspace("docservice", 1)

        rows = await collect(second, DOCUMENTS, {"key": "k"})
        assert rows == [{"key": "k", "version_id": vid, "html": "x"}]

    @pytest.mark.asyncio
    async def test_mismatched_existing_table_rejected(self, config, data_dir):
        """An existing table with another primary key is reported."""
        conn = sqlite3.connect(str(Path(data_dir) / "docservice.db"))
        conn.execute('CREATE TABLE "documents" ("key" TEXT, "version_id" TEXT, "html" TEXT, PRIMARY KEY ("key"))')
        conn.commit()
        conn.close()

        backend = SqliteBackend(config)
        await backend.connect()
        await backend.ensure_keyspace("docservice", 1)

        with pytest.raises(StorageError, match="primary key"):
            await backend.ensure_table(DOCUMENTS)

    @pytest.mark.asyncio
    async def test_scan_of_missing_table_fails(self, config):
        backend = SqliteBackend(config)
        await backend.connect()
        await backend.ensure_keyspace("docservice", 1)

        with pytest.raises(StorageError):
            await collect(backend, DOCUMENTS, {"key": "k"})

    @pytest.fixture
    async def ready(self, config):
        backend = SqliteBackend(SqliteConfig(data_dir=config.data_dir, wal_mode=True, fetch_size=1))
        await backend.connect()
        await backend.ensure_keyspace("docservice", 1)
        for spec in ALL_TABLES:
            await backend.ensure_table(spec)
        yield backend
        await backend.close()

    @pytest.fixture
    def opened(self, monkeypatch):
        """Record every connection the backend opens and the opening thread."""
        seen = []
        real_connect = sqlite3.connect

        def recording_connect(*args, **kwargs):
            conn = real_connect(*args, **kwargs)
            seen.append((threading.get_ident(), conn))
            return conn

        monkeypatch.setattr("dbaas.docservice_server.storage.sqlite.sqlite3.connect", recording_connect)
        return seen

    @pytest.mark.asyncio
    async def test_scan_opens_connection_off_event_loop(self, ready, opened):
        vid = VersionIdGenerator().mint()
        await ready.apply_batch([RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"})])
        opened.clear()

        rows = await collect(ready, DOCUMENTS, {"key": "k"})

        assert len(rows) == 1
        assert len(opened) == 1
        assert opened[0][0] != threading.get_ident()
        with pytest.raises(sqlite3.ProgrammingError):
            opened[0][1].execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_early_exit_from_scan_closes_connection(self, ready, opened):
        gen = VersionIdGenerator()
        await ready.apply_batch(
            [
                RowWrite(DOCUMENTS, {"key": "k", "version_id": gen.mint(), "html": str(i)})
                for i in range(3)
            ]
        )
        opened.clear()

        stream = ready.scan(DOCUMENTS, {"key": "k"})
        first = await stream.__anext__()
        await stream.aclose()

        assert first["html"] == "2"
        assert len(opened) == 1
        with pytest.raises(sqlite3.ProgrammingError):
            opened[0][1].execute("SELECT 1")

    @pytest.mark.asyncio
    async def test_failure_inside_transaction_rolls_back_every_table(self, ready, data_dir):
        """A row rejected by SQLite mid-transaction undoes the rows before it."""
        conn = sqlite3.connect(str(Path(data_dir) / "docservice.db"))
        conn.execute(
            'CREATE TRIGGER reject_links BEFORE INSERT ON "links" '
            "WHEN NEW.\"title\" = 'boom' BEGIN SELECT RAISE(ABORT, 'rejected'); END"
        )
        conn.commit()
        conn.close()

        vid = VersionIdGenerator().mint()
        part = {"key": "k", "version_id": vid}
        with pytest.raises(StorageBatchError, match="rejected"):
            await ready.apply_batch(
                [
                    RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"}),
                    RowWrite(REFERENCES, {**part, "link_id": 1, "anchor": "a", "position": 0}),
                    RowWrite(LINKS, {**part, "link_id": 1, "title": "ok", "uri": "u"}),
                    RowWrite(LINKS, {**part, "link_id": 2, "title": "boom", "uri": "u"}),
                ]
            )

        for _ in range(2):
            assert await collect(ready, DOCUMENTS, {"key": "k"}) == []
            assert await collect(ready, LINKS, part) == []
            assert await collect(ready, REFERENCES, part) == []

        # Database stays writable after the rollback
        await ready.apply_batch([RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "y"})])
        assert [r["html"] for r in await collect(ready, DOCUMENTS, {"key": "k"})] == ["y"]


class TestInMemoryBackendHelpers:
    """Failure injection and inspection helpers."""

    @pytest.fixture
    async def memory(self):
        b = InMemoryBackend()
        await b.connect()
        await b.ensure_keyspace("docservice", 1)
        for spec in ALL_TABLES:
            await b.ensure_table(spec)
        return b

    @pytest.mark.asyncio
    async def test_fail_next_batch_applies_nothing(self, memory):
        vid = VersionIdGenerator().mint()
        memory.fail_next_batch(StorageError("boom"))

        with pytest.raises(StorageError, match="boom"):
            await memory.apply_batch([RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"})])

        assert memory.row_count("documents") == 0
        assert memory.batch_count == 1

        # Only the next batch fails
        await memory.apply_batch([RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"})])
        assert memory.row_count("documents") == 1

    @pytest.mark.asyncio
    async def test_fail_next_scan_mid_stream(self, memory):
        gen = VersionIdGenerator()
        await memory.apply_batch(
            [RowWrite(DOCUMENTS, {"key": "k", "version_id": gen.mint(), "html": str(i)}) for i in range(3)]
        )
        memory.fail_next_scan(StorageError("cursor lost"), after_rows=2)

        seen = []
        with pytest.raises(StorageError, match="cursor lost"):
            async for row in memory.scan(DOCUMENTS, {"key": "k"}):
                seen.append(row)

        assert len(seen) == 2
        assert len(await collect(memory, DOCUMENTS, {"key": "k"})) == 3

    @pytest.mark.asyncio
    async def test_close_clears_data(self, memory):
        vid = VersionIdGenerator().mint()
        await memory.apply_batch([RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"})])

        await memory.close()

        assert memory.row_count("documents") == 0
        assert not memory.is_connected

    @pytest.mark.asyncio
    async def test_batch_to_unknown_table_rejected(self):
        b = InMemoryBackend()
        await b.connect()
        vid = VersionIdGenerator().mint()

        with pytest.raises(StorageBatchError, match="does not exist"):
            await b.apply_batch([RowWrite(DOCUMENTS, {"key": "k", "version_id": vid, "html": "x"})])
