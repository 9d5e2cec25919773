"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Besides plain record CRUD the interface exposes the two queries the code
allocator relies on: the highest value of a column matching a prefix, and an
insert that enforces uniqueness of selected columns.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union, Iterable
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import re
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


class UniqueConstraintError(ValueError):
    """Raised when an insert collides with an existing id or unique column value"""

    def __init__(self, table: str, field: str, value: Any):
        self.table = table
        self.field = field
        self.value = value
        super().__init__(f"Duplicate value {value!r} for {table}.{field}")


class RecordNotFoundError(ValueError):
    """Raised when an operation targets a record that does not exist"""

    def __init__(self, entity: str, record_id: str):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} {record_id} not found")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # Convert datetime objects to ISO strings
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        # Convert Decimal objects to strings
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        # Convert ISO strings back to datetime objects
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage (insert or replace)"""
        pass

    @abstractmethod
    def insert(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        unique_fields: Iterable[str] = ()
    ) -> None:
        """
        Insert a new record, failing on conflicts

        Raises:
            UniqueConstraintError: If record_id exists or any unique field
                value is already held by another record
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def find_max_by_prefix(self, table: str, field: str, prefix: str) -> Optional[str]:
        """
        Highest value of a text column among rows whose value starts with prefix

        Prefix matching is case-insensitive and ordering is descending
        lexicographic, i.e. ``WHERE field ILIKE 'prefix%' ORDER BY field DESC
        LIMIT 1``. Returns None when nothing matches.
        """
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def insert(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        unique_fields: Iterable[str] = ()
    ) -> None:
        """Insert a record, checking id and unique fields under the lock"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                raise UniqueConstraintError(table, "id", record_id)

            for field in unique_fields:
                value = data.get(field)
                if value is None:
                    continue
                for existing in self._data[table].values():
                    if existing.get(field) == value:
                        raise UniqueConstraintError(table, field, value)

            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                # Deep copy to prevent external mutation
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(json.loads(json.dumps(record)))
            return results

    def find_max_by_prefix(self, table: str, field: str, prefix: str) -> Optional[str]:
        """Highest matching value, emulating ILIKE 'prefix%' ORDER BY DESC LIMIT 1"""
        with self._lock:
            self._ensure_table(table)
            lowered = prefix.lower()
            candidates = [
                record[field] for record in self._data[table].values()
                if isinstance(record.get(field), str) and record[field].lower().startswith(lowered)
            ]
            return max(candidates) if candidates else None

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._unique_indexes = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    @staticmethod
    def _check_identifier(name: str) -> str:
        if not _IDENTIFIER.match(name):
            raise ValueError(f"Invalid table or field name: {name!r}")
        return name

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        self._check_identifier(table)
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # Create index on timestamps for better query performance
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_updated_at
                ON {table}(updated_at)
            """)
            if not self._in_transaction:
                self._connection.commit()

    def _ensure_unique_index(self, table: str, field: str) -> None:
        """Create a unique expression index on a JSON field"""
        self._check_identifier(field)
        key = (table, field)
        if key in self._unique_indexes:
            return
        self._connection.execute(f"""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_{field}
            ON {table}(json_extract(data, '$.{field}'))
        """)
        if not self._in_transaction:
            self._connection.commit()
        self._unique_indexes.add(key)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Use INSERT OR REPLACE to handle updates
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))

            # Only commit if not in transaction
            if not self._in_transaction:
                self._connection.commit()

    def insert(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        unique_fields: Iterable[str] = ()
    ) -> None:
        """Plain INSERT; the primary key and unique indexes reject duplicates"""
        unique_fields = list(unique_fields)
        with self._lock:
            self._ensure_table(table)
            for field in unique_fields:
                self._ensure_unique_index(table, field)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            try:
                self._connection.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (?, ?, ?, ?)
                """, (record_id, data_json, now, now))
            except sqlite3.IntegrityError as e:
                # Work out which constraint fired for a useful error
                if self.exists(table, record_id):
                    raise UniqueConstraintError(table, "id", record_id) from e
                for field in unique_fields:
                    if data.get(field) is not None:
                        raise UniqueConstraintError(table, field, data.get(field)) from e
                raise

            if not self._in_transaction:
                self._connection.commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))

            # Only commit if not in transaction
            if not self._in_transaction:
                self._connection.commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY created_at
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(record)

            return results

    def find_max_by_prefix(self, table: str, field: str, prefix: str) -> Optional[str]:
        """Highest matching value using LIKE (ASCII case-insensitive in SQLite)"""
        self._check_identifier(field)
        # Escape LIKE wildcards that may appear in the prefix itself
        pattern = prefix.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_') + '%'
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT json_extract(data, '$.{field}') AS value FROM {table}
                WHERE json_extract(data, '$.{field}') LIKE ? ESCAPE '\\'
                ORDER BY value DESC
                LIMIT 1
            """, (pattern,))
            row = cursor.fetchone()
            return row['value'] if row else None

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

            # Only commit if not in transaction
            if not self._in_transaction:
                self._connection.commit()

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            if not self._in_transaction:
                # SQLite with isolation_level='DEFERRED' automatically starts transactions
                # We just need to track the state
                self._in_transaction = True

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
