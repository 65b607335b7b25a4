"""
Tests for storage backends, bulk writes and transaction support
"""

import pytest
import tempfile
from decimal import Decimal
from datetime import datetime, timezone
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from loan_servicing.storage import (
    InMemoryStorage, SQLiteStorage, StorageRecord, create_storage, serialize_value
)
from loan_servicing.exceptions import DuplicateRecordError


# Test data
test_data = {
    "id": "test_001",
    "loan_cycle_no": "L-001",
    "amount": "100.50",
    "created_at": datetime.now(timezone.utc).isoformat(),
    "updated_at": datetime.now(timezone.utc).isoformat()
}


class TestStorageInterface:
    """Test base storage interface functionality"""

    def test_in_memory_storage_basic_operations(self):
        """Test basic CRUD operations with InMemoryStorage"""
        storage = InMemoryStorage()

        storage.save("test_table", "record_1", test_data)
        assert storage.load("test_table", "record_1") == test_data

        assert storage.exists("test_table", "record_1")
        assert not storage.exists("test_table", "non_existent")

        storage.save("test_table", "record_2", {"id": "record_2", "loan_cycle_no": "L-002"})
        assert len(storage.load_all("test_table")) == 2

        results = storage.find("test_table", {"loan_cycle_no": "L-001"})
        assert len(results) == 1
        assert results[0]["id"] == "test_001"

        assert storage.count("test_table") == 2
        assert storage.delete("test_table", "record_1")
        assert not storage.delete("test_table", "record_1")
        assert storage.count("test_table") == 1

        storage.clear_table("test_table")
        assert storage.count("test_table") == 0

    def test_in_memory_storage_returns_copies(self):
        """Test mutating a loaded record does not change the stored one"""
        storage = InMemoryStorage()
        storage.save("test_table", "record_1", {"id": "record_1", "nested": {"name": "Santos"}})

        loaded = storage.load("test_table", "record_1")
        loaded["nested"]["name"] = "changed"

        assert storage.load("test_table", "record_1")["nested"]["name"] == "Santos"

    def test_sqlite_storage_basic_operations(self):
        """Test basic CRUD operations with SQLiteStorage"""
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")

            storage.save("test_table", "record_1", test_data)
            assert storage.load("test_table", "record_1") == test_data
            assert storage.exists("test_table", "record_1")

            storage.save("test_table", "record_2", {"id": "record_2", "loan_cycle_no": "L-002"})
            assert [r["id"] for r in storage.load_all("test_table")] == ["test_001", "record_2"]

            results = storage.find("test_table", {"loan_cycle_no": "L-002"})
            assert len(results) == 1

            assert storage.delete("test_table", "record_1")
            assert storage.count("test_table") == 1

            storage.close()

    def test_find_where_predicate(self):
        """Test predicate scans for OR joins"""
        storage = InMemoryStorage()
        storage.save("t", "a", {"loan_cycle_no": "L-1", "client_no": "C-1"})
        storage.save("t", "b", {"loan_cycle_no": "", "client_no": "C-1"})
        storage.save("t", "c", {"loan_cycle_no": "L-2", "client_no": "C-2"})

        results = storage.find_where("t", lambda r: r["loan_cycle_no"] == "L-1" or r["client_no"] == "C-1")

        assert sorted(r["loan_cycle_no"] for r in results) == ["", "L-1"]


class TestInsertAndBulkWrites:
    """Test insert semantics and partial-failure tolerant bulk writes"""

    @pytest.mark.parametrize("storage_factory", [InMemoryStorage, lambda: SQLiteStorage(":memory:")])
    def test_insert_rejects_duplicate_key(self, storage_factory):
        """Test insert raises DuplicateRecordError for an existing key"""
        storage = storage_factory()
        storage.insert("loans", "L-001", {"loan_cycle_no": "L-001"})

        with pytest.raises(DuplicateRecordError):
            storage.insert("loans", "L-001", {"loan_cycle_no": "L-001"})

    @pytest.mark.parametrize("storage_factory", [InMemoryStorage, lambda: SQLiteStorage(":memory:")])
    def test_insert_many_isolates_failures(self, storage_factory):
        """Test a failing row does not stop the rest of the batch"""
        storage = storage_factory()
        storage.insert("entries", "e2", {"id": "e2"})

        result = storage.insert_many("entries", [
            ("e1", {"id": "e1"}),
            ("e2", {"id": "e2"}),
            ("e3", {"id": "e3"}),
        ])

        assert result.written_ids == ["e1", "e3"]
        assert result.failed_count == 1
        assert result.errors[0].index == 1
        assert result.errors[0].record_id == "e2"
        assert storage.count("entries") == 3

    def test_update_many_merges_fields(self):
        """Test bulk update merges into existing records and reports missing ones"""
        storage = InMemoryStorage()
        storage.save("loans", "L-1", {"loan_status": "UPDATED", "loan_balance": "100"})
        storage.save("loans", "L-2", {"loan_status": "ARREARS", "loan_balance": "50"})

        result = storage.update_many("loans", {
            "L-1": {"loan_balance": "90"},
            "L-404": {"loan_balance": "1"},
            "L-2": {"loan_status": "DORMANT"},
        })

        assert result.written_ids == ["L-1", "L-2"]
        assert result.has_errors
        assert result.errors[0].record_id == "L-404"
        assert storage.load("loans", "L-1") == {"loan_status": "UPDATED", "loan_balance": "90"}
        assert storage.load("loans", "L-2")["loan_status"] == "DORMANT"


class TestTransactionSupport:
    """Test atomic operations"""

    def test_sqlite_atomic_rollback(self):
        """Test a failing atomic block leaves no writes behind"""
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "atomic.db")

            with pytest.raises(RuntimeError):
                with storage.atomic():
                    storage.save("loans", "L-1", {"id": "L-1"})
                    raise RuntimeError("abort")

            assert not storage.exists("loans", "L-1")

            with storage.atomic():
                storage.save("loans", "L-2", {"id": "L-2"})
            assert storage.exists("loans", "L-2")

            storage.close()


class TestStorageRecord:
    """Test StorageRecord serialization"""

    def test_storage_record_serialization(self):
        """Test Decimal and datetime fields round-trip through to_dict/from_dict"""
        @dataclass
        class TestRecord(StorageRecord):
            amount: Decimal
            note: Optional[str] = None

        now = datetime.now(timezone.utc)
        record = TestRecord(id="r1", created_at=now, updated_at=now, amount=Decimal("12.50"))

        data = record.to_dict()
        assert data["amount"] == "12.50"
        assert data["created_at"] == now.isoformat()

        restored = TestRecord.from_dict(data)
        assert restored.created_at == now
        assert restored.id == "r1"

    def test_serialize_value_nested(self):
        """Test nested containers are serialized recursively"""
        value = serialize_value({"items": [Decimal("1.00"), {"when": datetime(2024, 1, 2, tzinfo=timezone.utc)}]})

        assert value == {"items": ["1.00", {"when": "2024-01-02T00:00:00+00:00"}]}


class TestCreateStorage:
    """Test backend selection from a database URL"""

    def test_memory_url(self):
        """Test memory:// selects InMemoryStorage"""
        assert isinstance(create_storage("memory://"), InMemoryStorage)

    def test_sqlite_url(self):
        """Test sqlite URLs select SQLiteStorage"""
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = create_storage(f"sqlite:///{temp_dir}/servicing.db")
            assert isinstance(storage, SQLiteStorage)
            assert storage.db_path.endswith("servicing.db")
            storage.close()

    def test_unsupported_url(self):
        """Test unknown schemes are rejected"""
        with pytest.raises(ValueError):
            create_storage("postgresql://localhost/db")
