"""
Tests for storage backends and transaction support
"""

import threading

import pytest

from accounting_core.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, create_storage
)


record = {
    "id": "rec_001",
    "code": "1000",
    "balance": "100.50",
}


class TestInMemoryStorage:
    """Test basic record operations on InMemoryStorage"""

    def setup_method(self):
        self.storage = InMemoryStorage()

    def test_save_and_load(self):
        self.storage.save("accounts", "rec_001", record)
        assert self.storage.load("accounts", "rec_001") == record
        assert self.storage.load("accounts", "missing") is None

    def test_loaded_records_are_copies(self):
        self.storage.save("accounts", "rec_001", record)
        loaded = self.storage.load("accounts", "rec_001")
        loaded["balance"] = "999.00"
        assert self.storage.load("accounts", "rec_001")["balance"] == "100.50"

    def test_exists_find_count(self):
        self.storage.save("accounts", "rec_001", record)
        self.storage.save("accounts", "rec_002", {"id": "rec_002", "code": "2000"})

        assert self.storage.exists("accounts", "rec_001")
        assert not self.storage.exists("accounts", "rec_003")
        assert self.storage.count("accounts") == 2
        assert [r["id"] for r in self.storage.find("accounts", {"code": "2000"})] == ["rec_002"]
        assert len(self.storage.load_all("accounts")) == 2

    def test_delete(self):
        self.storage.save("accounts", "rec_001", record)
        assert self.storage.delete("accounts", "rec_001")
        assert not self.storage.delete("accounts", "rec_001")
        assert self.storage.count("accounts") == 0

    def test_sequences_start_at_one(self):
        assert self.storage.next_sequence("journal_entry:2026") == 1
        assert self.storage.next_sequence("journal_entry:2026") == 2
        assert self.storage.next_sequence("journal_entry:2027") == 1


class TestInMemoryTransactions:
    """Test thread-local transaction buffering"""

    def setup_method(self):
        self.storage = InMemoryStorage()

    def test_atomic_commit_publishes_writes(self):
        with self.storage.atomic():
            self.storage.save("accounts", "a", {"id": "a"})
            self.storage.save("accounts", "b", {"id": "b"})
            # Visible to the writing thread before commit
            assert self.storage.exists("accounts", "a")
        assert self.storage.count("accounts") == 2

    def test_atomic_rollback_discards_writes(self):
        self.storage.save("accounts", "a", {"id": "a", "balance": "1.00"})
        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.storage.save("accounts", "a", {"id": "a", "balance": "2.00"})
                self.storage.save("accounts", "b", {"id": "b"})
                raise RuntimeError("boom")

        assert self.storage.load("accounts", "a")["balance"] == "1.00"
        assert not self.storage.exists("accounts", "b")

    def test_uncommitted_writes_invisible_to_other_threads(self):
        seen = {}

        def reader():
            seen["exists"] = self.storage.exists("accounts", "a")

        self.storage.begin_transaction()
        self.storage.save("accounts", "a", {"id": "a"})
        thread = threading.Thread(target=reader)
        thread.start()
        thread.join()
        self.storage.commit()

        assert seen["exists"] is False
        assert self.storage.exists("accounts", "a")

    def test_nested_transactions_commit_once(self):
        with self.storage.atomic():
            with self.storage.atomic():
                self.storage.save("accounts", "a", {"id": "a"})
            self.storage.save("accounts", "b", {"id": "b"})
        assert self.storage.count("accounts") == 2

    def test_delete_inside_transaction(self):
        self.storage.save("accounts", "a", {"id": "a"})
        with self.storage.atomic():
            self.storage.delete("accounts", "a")
            assert not self.storage.exists("accounts", "a")
        assert not self.storage.exists("accounts", "a")

    def test_concurrent_sequence_allocation_is_unique(self):
        values = []
        lock = threading.Lock()

        def allocate():
            for _ in range(50):
                value = self.storage.next_sequence("seq")
                with lock:
                    values.append(value)

        threads = [threading.Thread(target=allocate) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(values) == list(range(1, 401))


class TestSQLiteStorage:
    """Test SQLite backend on a temporary file"""

    @pytest.fixture
    def db_path(self, tmp_path):
        return tmp_path / "ledger.db"

    def test_basic_operations(self, db_path):
        storage = SQLiteStorage(db_path)
        storage.save("accounts", "rec_001", record)
        storage.save("accounts", "rec_002", {"id": "rec_002", "code": "2000"})

        assert storage.load("accounts", "rec_001") == record
        assert storage.exists("accounts", "rec_002")
        assert storage.count("accounts") == 2
        assert [r["id"] for r in storage.load_all("accounts")] == ["rec_001", "rec_002"]
        assert storage.find("accounts", {"code": "2000"})[0]["id"] == "rec_002"
        assert storage.delete("accounts", "rec_002")
        assert storage.count("accounts") == 1
        storage.close()

    def test_data_persists_across_connections(self, db_path):
        storage = SQLiteStorage(db_path)
        storage.save("accounts", "rec_001", record)
        assert storage.next_sequence("journal_entry:2026") == 1
        storage.close()

        reopened = SQLiteStorage(db_path)
        assert reopened.load("accounts", "rec_001") == record
        assert reopened.next_sequence("journal_entry:2026") == 2
        reopened.close()

    def test_atomic_rollback(self, db_path):
        storage = SQLiteStorage(db_path)
        storage.save("accounts", "a", {"id": "a", "balance": "1.00"})

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save("accounts", "a", {"id": "a", "balance": "2.00"})
                storage.save("accounts", "b", {"id": "b"})
                raise RuntimeError("boom")

        assert storage.load("accounts", "a")["balance"] == "1.00"
        assert not storage.exists("accounts", "b")
        storage.close()

    def test_atomic_commit(self, db_path):
        storage = SQLiteStorage(db_path)
        with storage.atomic():
            storage.save("accounts", "a", {"id": "a"})
            storage.save("accounts", "b", {"id": "b"})
        storage.close()

        reopened = SQLiteStorage(db_path)
        assert reopened.count("accounts") == 2
        reopened.close()

    def test_update_keeps_insertion_order(self, db_path):
        storage = SQLiteStorage(db_path)
        storage.save("accounts", "a", {"id": "a", "v": 1})
        storage.save("accounts", "b", {"id": "b", "v": 1})
        storage.save("accounts", "a", {"id": "a", "v": 2})
        assert [r["id"] for r in storage.load_all("accounts")] == ["a", "b"]
        storage.close()


class TestCreateStorage:
    """Test storage construction from database URLs"""

    def test_memory_url(self):
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_in_memory_url(self):
        storage = create_storage("sqlite://")
        assert isinstance(storage, SQLiteStorage)
        assert storage.db_path == ":memory:"
        storage.close()

    def test_sqlite_file_url(self, tmp_path):
        path = tmp_path / "ledger.db"
        storage = create_storage(f"sqlite:///{path}")
        assert isinstance(storage, StorageInterface)
        assert storage.db_path == str(path)
        storage.close()

    def test_unsupported_url(self):
        with pytest.raises(ValueError, match="Unsupported database URL"):
            create_storage("postgresql://localhost/ledger")
