"""
Tests for storage backends and transaction support
"""

import pytest
from datetime import datetime, timezone

from value_vault.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, create_storage
)


test_data = {
    "id": "test_001",
    "account": "ALICE",
    "balance": 10**24,
    "created_at": datetime.now(timezone.utc).isoformat()
}


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, tmp_path):
    """Each test runs against both backends"""
    if request.param == "memory":
        backend = InMemoryStorage()
    else:
        backend = SQLiteStorage(tmp_path / "test.db")
    yield backend
    backend.close()


class TestStorageOperations:
    """Test basic CRUD operations on every backend"""

    def test_save_and_load(self, storage):
        storage.save("balances", "record_1", test_data)

        assert storage.load("balances", "record_1") == test_data
        assert storage.load("balances", "missing") is None

    def test_large_integers_round_trip(self, storage):
        """Test amounts beyond 64 bits are stored without precision loss"""
        storage.save("balances", "big", {"balance": 2**200})

        assert storage.load("balances", "big")["balance"] == 2**200

    def test_update_overwrites(self, storage):
        storage.save("balances", "record_1", {"balance": 1})
        storage.save("balances", "record_1", {"balance": 2})

        assert storage.load("balances", "record_1") == {"balance": 2}
        assert storage.count("balances") == 1

    def test_count(self, storage):
        assert storage.count("balances") == 0

        storage.save("balances", "record_1", test_data)
        storage.save("balances", "record_2", {"id": "record_2"})

        assert storage.count("balances") == 2

    def test_load_all_in_insertion_order(self, storage):
        storage.save("balances", "a", {"account": "A", "balance": 1})
        storage.save("balances", "b", {"account": "B", "balance": 2})

        assert [r["account"] for r in storage.load_all("balances")] == ["A", "B"]

    def test_loaded_records_are_copies(self, storage):
        storage.save("balances", "a", {"balance": 1})
        record = storage.load("balances", "a")
        record["balance"] = 999

        assert storage.load("balances", "a")["balance"] == 1


class TestTransactions:
    """Test atomic blocks commit, roll back and nest"""

    def test_atomic_commits(self, storage):
        with storage.atomic():
            storage.save("state", "ledger", {"total": 1})
            storage.save("balances", "A", {"balance": 1})

        assert not storage.in_transaction
        assert storage.load("state", "ledger") == {"total": 1}
        assert storage.load("balances", "A") == {"balance": 1}

    def test_atomic_rolls_back_on_error(self, storage):
        storage.save("state", "ledger", {"total": 1})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("state", "ledger", {"total": 2})
                storage.save("balances", "A", {"balance": 2})
                raise RuntimeError("crash between writes")

        assert not storage.in_transaction
        assert storage.load("state", "ledger") == {"total": 1}
        assert storage.load("balances", "A") is None

    def test_nested_atomic_joins_outer(self, storage):
        """Test only the outermost block decides commit or rollback"""
        with pytest.raises(RuntimeError):
            with storage.atomic():
                with storage.atomic():
                    storage.save("state", "ledger", {"total": 5})
                assert storage.in_transaction
                raise RuntimeError("outer failure")

        assert storage.load("state", "ledger") is None

    def test_storage_usable_after_rollback(self, storage):
        with pytest.raises(ValueError):
            with storage.atomic():
                storage.save("fresh_table", "x", {"v": 1})
                raise ValueError("abort")

        storage.save("fresh_table", "y", {"v": 2})
        assert storage.load("fresh_table", "y") == {"v": 2}


class TestSQLitePersistence:
    """Test SQLite data survives reconnects"""

    def test_data_survives_reconnect(self, tmp_path):
        db_path = tmp_path / "persist.db"
        first = SQLiteStorage(db_path)
        first.save("balances", "A", {"balance": 42})
        first.close()

        second = SQLiteStorage(db_path)
        assert second.load("balances", "A") == {"balance": 42}
        second.close()


class TestCreateStorage:

    def test_empty_path_is_in_memory(self):
        assert isinstance(create_storage(""), InMemoryStorage)

    def test_path_is_sqlite(self, tmp_path):
        storage = create_storage(str(tmp_path / "vault.db"))
        assert isinstance(storage, SQLiteStorage)
        assert isinstance(storage, StorageInterface)
        storage.close()
