"""Tests for the persistent status store."""

import pytest

from hearth_common import PersistenceError, Phase
from hearth_sync.database import Database
from hearth_sync.store import StatusStore


@pytest.fixture
async def database(settings):
    database = Database(settings.database_url)
    await database.init_db()
    yield database
    await database.close_db()


@pytest.fixture
def store(database):
    return StatusStore(database)


class TestStatusStore:
    """Tests for StatusStore."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, store, make_entry):
        await store.upsert(
            make_entry(phase=Phase.RUNNING, player_count=2, players=("alice", "bob"))
        )

        record = await store.get("srv-1")

        assert record.tenant_id == "tenant-a"
        assert record.status == "running"
        assert record.phase == "Running"
        assert record.player_count == 2
        assert record.players == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_row(self, store, make_entry):
        await store.upsert(make_entry(phase=Phase.STARTING))
        await store.upsert(make_entry(phase=Phase.ERROR, message="crash loop"))

        records = await store.list_all()

        assert len(records) == 1
        assert records[0].status == "failed"
        assert records[0].message == "crash loop"

    @pytest.mark.asyncio
    async def test_get_is_tenant_scoped(self, store, make_entry):
        await store.upsert(make_entry(tenant_id="tenant-a"))

        assert await store.get("srv-1", "tenant-b") is None
        assert (await store.get("srv-1", "tenant-a")).server_id == "srv-1"

    @pytest.mark.asyncio
    async def test_list_all_ordered(self, store, make_entry):
        await store.upsert(make_entry("b", "srv-2", "tenant-b"))
        await store.upsert(make_entry("a", "srv-1", "tenant-a"))

        records = await store.list_all()

        assert [(r.tenant_id, r.server_id) for r in records] == [
            ("tenant-a", "srv-1"),
            ("tenant-b", "srv-2"),
        ]
        assert [r.server_id for r in await store.list_all("tenant-b")] == ["srv-2"]

    @pytest.mark.asyncio
    async def test_record_dict_matches_entry(self, store, make_entry):
        entry = make_entry(phase=Phase.RUNNING, player_count=2, players=("a", "b"))
        await store.upsert(entry)

        data = (await store.get("srv-1", "tenant-a")).to_dict()

        expected = entry.to_dict()
        assert data.keys() == expected.keys()
        assert {k: v for k, v in data.items() if k != "updated_at"} == {
            k: v for k, v in expected.items() if k != "updated_at"
        }

    @pytest.mark.asyncio
    async def test_delete(self, store, make_entry):
        await store.upsert(make_entry())

        await store.delete("srv-1", "tenant-a")
        await store.delete("srv-1", "tenant-a")

        assert await store.get("srv-1") is None

    @pytest.mark.asyncio
    async def test_database_failure_raises_persistence_error(self, settings, make_entry):
        # Tables were never created
        database = Database(settings.database_url.replace("status.db", "empty.db"))
        store = StatusStore(database)

        try:
            with pytest.raises(PersistenceError):
                await store.upsert(make_entry())
            with pytest.raises(PersistenceError):
                await store.list_all()
        finally:
            await database.close_db()
