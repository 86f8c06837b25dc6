"""
Tests for storage backends and transaction support
"""

import pytest
import tempfile
import threading
from pathlib import Path

from lending_core.storage import (
    InMemoryStorage, SQLiteStorage, StorageInterface, LOANS_TABLE, PAYMENTS_TABLE
)


# Test data
loan_data = {
    "id": "prestamo-001",
    "capital_inicial": "1000",
    "plazo": 12,
    "estado": "activo"
}


def payment_data(payment_id: str, prestamo_id: str, fecha: str, monto: str = "50") -> dict:
    return {"id": payment_id, "prestamo_id": prestamo_id, "fecha": fecha, "monto": monto, "tipo": "pago"}


def exercise_documents(storage: StorageInterface):
    # Test save and load
    storage.save(LOANS_TABLE, "prestamo-001", loan_data)
    assert storage.load(LOANS_TABLE, "prestamo-001") == loan_data
    assert storage.load(LOANS_TABLE, "missing") is None

    # Test overwrite keeps a single record
    storage.save(LOANS_TABLE, "prestamo-001", dict(loan_data, estado="moroso"))
    assert len(storage.load_all(LOANS_TABLE)) == 1
    assert storage.load(LOANS_TABLE, "prestamo-001")["estado"] == "moroso"

    # Test payments by loan
    storage.save(PAYMENTS_TABLE, "pago-2", payment_data("pago-2", "prestamo-001", "2024-01-20"))
    storage.save(PAYMENTS_TABLE, "pago-1", payment_data("pago-1", "prestamo-001", "2024-01-10"))
    storage.save(PAYMENTS_TABLE, "pago-3", payment_data("pago-3", "prestamo-002", "2024-01-12"))
    assert [r["id"] for r in storage.load_all(PAYMENTS_TABLE)] == ["pago-2", "pago-1", "pago-3"]
    assert {r["id"] for r in storage.find_payments("prestamo-001")} == {"pago-1", "pago-2"}
    assert storage.find_payments("nope") == []

    # Test moving a payment to another loan
    storage.save(PAYMENTS_TABLE, "pago-3", payment_data("pago-3", "prestamo-001", "2024-01-12"))
    assert len(storage.find_payments("prestamo-001")) == 3
    assert storage.find_payments("prestamo-002") == []


def exercise_atomic(storage: StorageInterface):
    storage.save(LOANS_TABLE, "prestamo-001", loan_data)

    # Successful block commits
    with storage.atomic():
        storage.save(PAYMENTS_TABLE, "pago-1", payment_data("pago-1", "prestamo-001", "2024-01-10"))
    assert storage.load(PAYMENTS_TABLE, "pago-1") is not None

    # Failing block rolls back every write and re-raises
    with pytest.raises(RuntimeError):
        with storage.atomic():
            storage.save(PAYMENTS_TABLE, "pago-2", payment_data("pago-2", "prestamo-001", "2024-01-20"))
            storage.save(LOANS_TABLE, "prestamo-001", dict(loan_data, estado="pagado"))
            raise RuntimeError("write failed")

    assert storage.load(PAYMENTS_TABLE, "pago-2") is None
    assert storage.find_payments("prestamo-001") == [payment_data("pago-1", "prestamo-001", "2024-01-10")]
    assert storage.load(LOANS_TABLE, "prestamo-001")["estado"] == "activo"


class TestInMemoryStorage:
    """Test the in-memory backend"""

    def test_documents(self):
        exercise_documents(InMemoryStorage())

    def test_atomic(self):
        exercise_atomic(InMemoryStorage())

    def test_unknown_table(self):
        with pytest.raises(ValueError, match="Unknown table"):
            InMemoryStorage().save("clientes", "c-1", {})

    def test_returned_records_are_copies(self):
        storage = InMemoryStorage()
        storage.save(LOANS_TABLE, "prestamo-001", loan_data)

        loaded = storage.load(LOANS_TABLE, "prestamo-001")
        loaded["estado"] = "pagado"

        assert storage.load(LOANS_TABLE, "prestamo-001")["estado"] == "activo"

    def test_nested_atomic_rolls_back_as_one(self):
        storage = InMemoryStorage()

        with pytest.raises(RuntimeError):
            with storage.atomic():
                storage.save(LOANS_TABLE, "prestamo-001", loan_data)
                with storage.atomic():
                    storage.save(PAYMENTS_TABLE, "pago-1", payment_data("pago-1", "prestamo-001", "2024-01-10"))
                raise RuntimeError("write failed")

        assert storage.load_all(LOANS_TABLE) == []
        assert storage.load_all(PAYMENTS_TABLE) == []


class TestConcurrentTransactions:
    """Test that transactions on different loans stay independent"""

    def run_pair(self, storage, first_fails: bool):
        """
        Loan A writes, then loan B writes, then A finishes, then B finishes.
        The loan that finishes first is the one that may fail.
        """
        a_written = threading.Event()
        b_written = threading.Event()
        a_done = threading.Event()
        errors = []

        def loan_a():
            try:
                with storage.atomic():
                    storage.save(PAYMENTS_TABLE, "a1", payment_data("a1", "A", "2024-01-10"))
                    a_written.set()
                    b_written.wait(5)
                    if first_fails:
                        raise RuntimeError("loan A failed")
            except RuntimeError as e:
                errors.append(e)
            finally:
                a_done.set()

        def loan_b():
            a_written.wait(5)
            try:
                with storage.atomic():
                    storage.save(PAYMENTS_TABLE, "b1", payment_data("b1", "B", "2024-01-10"))
                    b_written.set()
                    a_done.wait(5)
                    if not first_fails:
                        raise RuntimeError("loan B failed")
            except RuntimeError as e:
                errors.append(e)

        threads = [threading.Thread(target=loan_a), threading.Thread(target=loan_b)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(errors) == 1

    def test_failure_while_other_loan_is_open_keeps_its_write(self):
        storage = InMemoryStorage()

        self.run_pair(storage, first_fails=True)

        assert storage.load(PAYMENTS_TABLE, "a1") is None
        assert storage.load(PAYMENTS_TABLE, "b1") is not None

    def test_failure_after_other_loan_committed_is_rolled_back(self):
        storage = InMemoryStorage()

        self.run_pair(storage, first_fails=False)

        assert storage.load(PAYMENTS_TABLE, "a1") is not None
        assert storage.load(PAYMENTS_TABLE, "b1") is None

    def test_sqlite_write_waits_for_open_transaction(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            a_written = threading.Event()
            b_started = threading.Event()

            def loan_a():
                try:
                    with storage.atomic():
                        storage.save(PAYMENTS_TABLE, "a1", payment_data("a1", "A", "2024-01-10"))
                        a_written.set()
                        b_started.wait(5)
                        raise RuntimeError("loan A failed")
                except RuntimeError:
                    pass

            def loan_b():
                a_written.wait(5)
                b_started.set()
                storage.save(PAYMENTS_TABLE, "b1", payment_data("b1", "B", "2024-01-10"))

            threads = [threading.Thread(target=loan_a), threading.Thread(target=loan_b)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            assert storage.load(PAYMENTS_TABLE, "a1") is None
            assert storage.load(PAYMENTS_TABLE, "b1") is not None
            storage.close()


class TestSQLiteStorage:
    """Test the SQLite backend"""

    def test_documents(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            exercise_documents(storage)
            storage.close()

    def test_in_memory_database(self):
        storage = SQLiteStorage()
        exercise_documents(storage)
        storage.close()

    def test_atomic(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "test.db")
            exercise_atomic(storage)
            storage.close()

    def test_payments_ordered_by_date(self):
        storage = SQLiteStorage()
        storage.save(PAYMENTS_TABLE, "pago-2", payment_data("pago-2", "prestamo-001", "2024-01-20"))
        storage.save(PAYMENTS_TABLE, "pago-1", payment_data("pago-1", "prestamo-001", "2024-01-10"))

        assert [r["id"] for r in storage.find_payments("prestamo-001")] == ["pago-1", "pago-2"]
        storage.close()

    def test_persistence_across_connections(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "test.db"

            storage = SQLiteStorage(db_path)
            storage.save(LOANS_TABLE, "prestamo-001", loan_data)
            storage.close()

            reopened = SQLiteStorage(db_path)
            assert reopened.load(LOANS_TABLE, "prestamo-001") == loan_data
            reopened.close()
