"""
Storage Backends

Loan cycles, clients, ledger entries and staged rows are kept as JSON
documents in named tables. InMemoryStorage backs the tests and SQLiteStorage
backs a running service. Amounts travel as Decimal strings.

Besides keyed load/save the interface offers predicate scans and best-effort
bulk insert/update: a failing row is recorded in the BulkWriteResult and the
remaining rows are still written.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
from decimal import Decimal
from datetime import datetime, date
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict, field
from pathlib import Path
from contextlib import contextmanager

from .exceptions import DuplicateRecordError, NotFoundError


def serialize_value(value: Any) -> Any:
    """Convert Decimal, datetime and Enum values to JSON-friendly forms"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    return value


def matches_filters(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


@dataclass
class StorageRecord:
    """Keyed document with creation and modification times"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return serialize_value(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        data = dict(data)
        for stamp in ('created_at', 'updated_at'):
            if isinstance(data.get(stamp), str):
                data[stamp] = datetime.fromisoformat(data[stamp])
        return cls(**data)


@dataclass
class BulkWriteError:
    """A single row that failed inside a bulk write"""
    index: int
    record_id: str
    message: str


@dataclass
class BulkWriteResult:
    """Outcome of an unordered bulk write"""
    written_ids: List[str] = field(default_factory=list)
    errors: List[BulkWriteError] = field(default_factory=list)

    @property
    def written_count(self) -> int:
        return len(self.written_ids)

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class StorageInterface(ABC):
    """
    Keyed JSON-document store.

    Backends implement the primitives below; scans, inserts and bulk writes
    are built on top of them and may be overridden for efficiency.
    """

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Create or replace record_id"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Record by id, or None"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Every record of table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Remove record_id; False when it was absent"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Whether record_id is stored"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Number of records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Drop every record of table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection"""
        pass

    def find_where(self, table: str, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        """Find records for which predicate returns True (range scans, OR joins)"""
        return [record for record in self.load_all(table) if predicate(record)]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose fields equal every filter value"""
        return self.find_where(table, lambda record: matches_filters(record, filters))

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a new record; fails if the key is already taken"""
        if self.exists(table, record_id):
            raise DuplicateRecordError(f"Record {record_id} already exists in {table}")
        self.save(table, record_id, data)

    def insert_many(self, table: str, records: Iterable[Tuple[str, Dict[str, Any]]]) -> BulkWriteResult:
        """
        Insert records without stopping at the first failure.

        Args:
            table: Target table
            records: (record_id, data) pairs

        Returns:
            BulkWriteResult with confirmed ids and per-row errors
        """
        result = BulkWriteResult()
        for index, (record_id, data) in enumerate(records):
            try:
                self.insert(table, record_id, data)
            except Exception as e:
                result.errors.append(BulkWriteError(index, record_id, str(e)))
            else:
                result.written_ids.append(record_id)
        return result

    def update_many(self, table: str, updates: Dict[str, Dict[str, Any]]) -> BulkWriteResult:
        """
        Merge field updates into existing records without stopping at the first failure.

        Args:
            table: Target table
            updates: record_id -> fields to set

        Returns:
            BulkWriteResult with confirmed ids and per-row errors
        """
        result = BulkWriteResult()
        for index, (record_id, fields) in enumerate(updates.items()):
            try:
                existing = self.load(table, record_id)
                if existing is None:
                    raise NotFoundError(f"Record {record_id} not found in {table}")
                existing.update(fields)
                self.save(table, record_id, existing)
            except Exception as e:
                result.errors.append(BulkWriteError(index, record_id, str(e)))
            else:
                result.written_ids.append(record_id)
        return result

    def begin_transaction(self) -> None:
        """No-op unless the backend is transactional"""
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    @contextmanager
    def atomic(self):
        """All writes inside the block commit together or not at all"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """
    Dict-of-dicts backend for tests and the memory:// URL.

    Records are copied through JSON on the way in and out, so callers never
    share state with the store and values look exactly as SQLite returns them.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._tables.setdefault(table, {})

    @staticmethod
    def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
        return json.loads(json.dumps(record, default=str))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[record_id] = self._copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return None if record is None else self._copy(record)

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Records in insertion order"""
        with self._lock:
            return [self._copy(record) for record in self._table(table).values()]

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        # exists + save must not interleave with another writer
        with self._lock:
            super().insert(table, record_id, data)

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table] = {}

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite persistence; one table per record kind, each record a JSON blob.

    Writes commit immediately unless an atomic() block is open.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            data TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # DEFERRED: sqlite3 opens a transaction before the first write
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level='DEFERRED'
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._known_tables = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        if table in self._known_tables:
            return
        self._connection.execute(self.SCHEMA.format(table=table))
        self._connection.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table}(created_at)"
        )
        if not self._in_transaction:
            self._connection.commit()
        self._known_tables.add(table)

    def _execute(self, table: str, sql: str, params: Tuple = (), write: bool = False) -> sqlite3.Cursor:
        """Run a statement against table, creating it on first use"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(sql.format(table=table), params)
            if write and not self._in_transaction:
                self._connection.commit()
            return cursor

    @staticmethod
    def _timestamp() -> str:
        return datetime.now().astimezone().isoformat()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Upsert; the original created_at column survives replacement"""
        now = self._timestamp()
        self._execute(
            table,
            "INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at) "
            "VALUES (?, ?, COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?), ?)",
            (record_id, json.dumps(data, default=str), record_id, now, now),
            write=True
        )

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Primary key rejects duplicates"""
        now = self._timestamp()
        try:
            self._execute(
                table,
                "INSERT INTO {table} (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (record_id, json.dumps(data, default=str), now, now),
                write=True
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(f"Record {record_id} already exists in {table}") from e

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self._execute(table, "SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Records in insertion order"""
        cursor = self._execute(table, "SELECT data FROM {table} ORDER BY created_at, rowid")
        return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        cursor = self._execute(table, "DELETE FROM {table} WHERE id = ?", (record_id,), write=True)
        return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        cursor = self._execute(table, "SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,))
        return cursor.fetchone() is not None

    def count(self, table: str) -> int:
        return self._execute(table, "SELECT COUNT(*) AS count FROM {table}").fetchone()['count']

    def clear_table(self, table: str) -> None:
        self._execute(table, "DELETE FROM {table}", write=True)

    def begin_transaction(self) -> None:
        with self._lock:
            self._in_transaction = True

    def commit(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Select a storage backend from a database URL.

    Supported: ``memory://`` and ``sqlite:///path/to/file.db``
    (``sqlite://`` or ``sqlite:///:memory:`` for an in-process database).
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
