"""
Storage Backend Module

Document stores for the two collections the engine persists: loans
(prestamos) and payments (pagos). Documents are JSON objects keyed by id,
with monetary values kept as Decimal strings. Payments are looked up by the
loan they belong to, so both backends index them on prestamo_id.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from pathlib import Path
from contextlib import contextmanager

LOANS_TABLE = "prestamos"
PAYMENTS_TABLE = "pagos"

TABLES = (LOANS_TABLE, PAYMENTS_TABLE)


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise ValueError(f"Unknown table {table!r}; expected one of {', '.join(TABLES)}")


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class StorageInterface(ABC):
    """Abstract interface for loan and payment document stores"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a document"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a document by id, or None"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load every document of a table in insertion order"""
        pass

    @abstractmethod
    def find_payments(self, prestamo_id: str) -> List[Dict[str, Any]]:
        """Payment documents belonging to a loan"""
        pass

    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
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
    """
    In-memory document store

    Transactions are tracked per thread: each one journals the prior value
    of every document it overwrites, and a rollback restores only those.
    Concurrent transactions on different loans therefore commit or roll back
    independently. Uncommitted writes are visible to other threads.
    """

    def __init__(self):
        self._data: Dict[str, Dict[str, str]] = {table: {} for table in TABLES}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _journal(self) -> Optional[Dict[Tuple[str, str], Optional[str]]]:
        return getattr(self._local, 'journal', None)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        _check_table(table)
        # Stored serialized so callers never share state with the store
        encoded = json.dumps(data, default=str)
        with self._lock:
            journal = self._journal()
            if journal is not None and (table, record_id) not in journal:
                journal[(table, record_id)] = self._data[table].get(record_id)
            self._data[table][record_id] = encoded

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            encoded = self._data[table].get(record_id)
        return json.loads(encoded) if encoded is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            encoded = list(self._data[table].values())
        return [json.loads(item) for item in encoded]

    def find_payments(self, prestamo_id: str) -> List[Dict[str, Any]]:
        return [
            record for record in self.load_all(PAYMENTS_TABLE)
            if record.get("prestamo_id") == prestamo_id
        ]

    def begin_transaction(self) -> None:
        depth = getattr(self._local, 'depth', 0)
        if depth == 0:
            self._local.journal = {}
        self._local.depth = depth + 1

    def commit(self) -> None:
        self._local.depth -= 1
        if self._local.depth == 0:
            self._local.journal = None

    def rollback(self) -> None:
        self._local.depth -= 1
        if self._local.depth > 0:
            # The enclosing block re-raises and restores the journal
            return

        journal = self._local.journal
        self._local.journal = None
        with self._lock:
            for (table, record_id), previous in journal.items():
                if previous is None:
                    self._data[table].pop(record_id, None)
                else:
                    self._data[table][record_id] = previous


class SQLiteStorage(StorageInterface):
    """
    SQLite document store

    One connection is shared by all threads, so a transaction holds the
    connection lock from begin_transaction until commit or rollback. Other
    threads' reads and writes wait for it to finish.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._create_schema()
            self._connection.commit()

    def _create_schema(self) -> None:
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {LOANS_TABLE} (
                id TEXT PRIMARY KEY,
                estado TEXT,
                data TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {PAYMENTS_TABLE} (
                id TEXT PRIMARY KEY,
                prestamo_id TEXT,
                fecha TEXT,
                data TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{PAYMENTS_TABLE}_prestamo
            ON {PAYMENTS_TABLE}(prestamo_id, fecha)
        """)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        _check_table(table)
        now = datetime.now(timezone.utc).isoformat()
        data_json = json.dumps(data, default=str)

        with self._lock:
            if table == LOANS_TABLE:
                self._connection.execute(f"""
                    INSERT INTO {LOANS_TABLE} (id, estado, data, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        estado = excluded.estado,
                        data = excluded.data,
                        updated_at = excluded.updated_at
                """, (record_id, data.get("estado"), data_json, now))
            else:
                self._connection.execute(f"""
                    INSERT INTO {PAYMENTS_TABLE} (id, prestamo_id, fecha, data, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        prestamo_id = excluded.prestamo_id,
                        fecha = excluded.fecha,
                        data = excluded.data,
                        updated_at = excluded.updated_at
                """, (record_id, data.get("prestamo_id"), _text(data.get("fecha")), data_json, now))

            if self._depth == 0:
                self._connection.commit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            row = self._connection.execute(
                f"SELECT data FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
        return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            rows = self._connection.execute(
                f"SELECT data FROM {table} ORDER BY rowid"
            ).fetchall()
        return [json.loads(row['data']) for row in rows]

    def find_payments(self, prestamo_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._connection.execute(f"""
                SELECT data FROM {PAYMENTS_TABLE}
                WHERE prestamo_id = ?
                ORDER BY fecha, rowid
            """, (prestamo_id,)).fetchall()
        return [json.loads(row['data']) for row in rows]

    def begin_transaction(self) -> None:
        self._lock.acquire()
        self._depth += 1

    def commit(self) -> None:
        try:
            if self._depth == 1:
                self._connection.commit()
        finally:
            self._depth -= 1
            self._lock.release()

    def rollback(self) -> None:
        try:
            if self._depth == 1:
                self._connection.rollback()
        finally:
            self._depth -= 1
            self._lock.release()

    def close(self) -> None:
        """Close the SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
