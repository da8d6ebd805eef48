"""
Tests for document storage backends
"""

import pytest

from realty_crm.storage import InMemoryStorage, SQLiteStorage, create_storage


def sample(record_id: str, project_id: str = "P1", status: str = "active") -> dict:
    return {"id": record_id, "project_id": project_id, "status": status, "principal": "100.50"}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestStorageBackends:
    """Behaviour shared by every backend"""

    def test_save_and_load(self, storage):
        storage.save("loans", "L1", sample("L1"))

        assert storage.load("loans", "L1") == sample("L1")
        assert storage.load("loans", "missing") is None
        assert storage.exists("loans", "L1")
        assert not storage.exists("loans", "missing")

    def test_save_replaces(self, storage):
        storage.save("loans", "L1", sample("L1"))
        storage.save("loans", "L1", sample("L1", status="paid_off"))

        assert storage.count("loans") == 1
        assert storage.load("loans", "L1")["status"] == "paid_off"

    def test_load_all_in_insertion_order(self, storage):
        for record_id in ("L1", "L2", "L3"):
            storage.save("loans", record_id, sample(record_id))

        assert [record["id"] for record in storage.load_all("loans")] == ["L1", "L2", "L3"]

    def test_find(self, storage):
        storage.save("loans", "L1", sample("L1", project_id="P1"))
        storage.save("loans", "L2", sample("L2", project_id="P2"))
        storage.save("loans", "L3", sample("L3", project_id="P1", status="cancelled"))

        assert {r["id"] for r in storage.find("loans", {"project_id": "P1"})} == {"L1", "L3"}
        assert [r["id"] for r in storage.find("loans", {"project_id": "P1", "status": "active"})] == ["L1"]
        assert storage.find("loans", {"lender": "anyone"}) == []

    def test_delete_and_clear(self, storage):
        storage.save("loans", "L1", sample("L1"))
        storage.save("loans", "L2", sample("L2"))

        assert storage.delete("loans", "L1")
        assert not storage.delete("loans", "L1")
        assert storage.count("loans") == 1

        storage.clear_table("loans")
        assert storage.count("loans") == 0

    def test_loaded_documents_are_copies(self, storage):
        storage.save("loans", "L1", sample("L1"))
        loaded = storage.load("loans", "L1")
        loaded["status"] = "defaulted"

        assert storage.load("loans", "L1")["status"] == "active"

    def test_tables_are_independent(self, storage):
        storage.save("loans", "X", sample("X"))
        assert storage.load("projects", "X") is None


class TestSQLiteStorage:
    """SQLite specific behaviour"""

    def test_persists_across_connections(self, tmp_path):
        db_path = tmp_path / "persist.db"
        first = SQLiteStorage(db_path)
        first.save("loans", "L1", sample("L1"))
        first.close()

        second = SQLiteStorage(db_path)
        assert second.load("loans", "L1") == sample("L1")
        second.close()

    def test_atomic_rollback(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "atomic.db")
        storage.save("loans", "L1", sample("L1"))

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("loans", "L2", sample("L2"))
                raise RuntimeError("boom")

        assert storage.load("loans", "L2") is None
        assert storage.load("loans", "L1") == sample("L1")
        storage.close()

    def test_atomic_commit(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "atomic.db")
        with storage.atomic():
            storage.save("loans", "L1", sample("L1"))
            storage.save("loans", "L2", sample("L2"))

        assert storage.count("loans") == 2
        storage.close()

    def test_rejects_unsafe_table_names(self):
        storage = SQLiteStorage()
        with pytest.raises(ValueError):
            storage.save("loans; DROP TABLE x", "L1", sample("L1"))
        storage.close()


class TestCreateStorage:
    """Test backend selection"""

    def test_memory(self):
        assert isinstance(create_storage("memory"), InMemoryStorage)

    def test_sqlite(self, tmp_path):
        storage = create_storage("sqlite", tmp_path / "crm.db")
        assert isinstance(storage, SQLiteStorage)
        storage.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            create_storage("mongodb")
