"""
Unit tests for storage layer.

Tests schema creation, record round trips, transactions and the event ledger.
"""

import os
import sqlite3
import tempfile
import threading
import time
from dataclasses import replace

import pytest

from bill_guard.storage.db import get_connection
from bill_guard.storage.models import BillCategory, EventKind, LedgerEvent
from bill_guard.storage.repository import (
    LedgerRepository,
    get_repository,
    initialize_schema
)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify all ledger tables are created."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
                )
                tables = {row[0] for row in cursor.fetchall()}
                assert {"cycle", "bill", "account_balance", "ledger_event"} <= tables

                cursor = conn.execute("PRAGMA table_info(bill)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == [
                    'id', 'cycle_id', 'name', 'amount', 'due_date', 'is_paid',
                    'is_recurring', 'recurrence_calendar', 'category', 'last_paid_date',
                    'settled_occurrences'
                ]
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)

            repository = LedgerRepository(db_path)
            try:
                assert repository.list_cycle_ids() == []
            finally:
                repository.close()

    def test_get_repository_returns_shared_instance(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            first = get_repository(db_path)
            try:
                assert get_repository(db_path) is first
            finally:
                first.close()


class TestLedgerRepository:
    """Test cycle, bill and balance records."""

    def setup_method(self):
        self.repository = LedgerRepository(":memory:")
        self.repository.initialize()

    def teardown_method(self):
        self.repository.close()

    def _insert_cycle(self, owner="alice"):
        return self.repository.insert_cycle(
            owner=owner,
            start_date=1_000,
            end_date=1_000 + 90 * 86_400,
            total_deposited=1_000,
            operating_fee=20,
            fee_percentage=200
        )

    def test_cycle_ids_start_at_one_and_increase(self):
        first = self._insert_cycle()
        second = self._insert_cycle("bob")

        assert first.id == 1
        assert second.id == 2
        assert self.repository.list_cycle_ids() == [1, 2]
        assert self.repository.list_user_cycle_ids("bob") == [2]

    def test_cycle_round_trip(self):
        cycle = self._insert_cycle()

        stored = self.repository.get_cycle(cycle.id)
        assert stored == cycle
        assert stored.is_active is True
        assert stored.last_adjustment_month == 0
        assert stored.available == 980

    def test_missing_records_return_none(self):
        assert self.repository.get_cycle(42) is None
        assert self.repository.get_bill(42) is None

    def test_bill_round_trip_keeps_calendar_and_category(self):
        cycle = self._insert_cycle()
        bill = self.repository.insert_bill(
            cycle_id=cycle.id,
            name="Rent",
            amount=100,
            due_date=2_000,
            is_recurring=True,
            recurrence_calendar=(11, 12, 1),
            category=BillCategory.HOUSING
        )

        stored = self.repository.get_bill(bill.id)
        assert stored == bill
        assert stored.recurrence_calendar == (11, 12, 1)
        assert stored.category == BillCategory.HOUSING
        assert stored.last_paid_date is None

    def test_bill_requires_existing_cycle(self):
        with pytest.raises(sqlite3.IntegrityError):
            self.repository.insert_bill(99, "Orphan", 100, 2_000, False, ())

    def test_delete_bills(self):
        cycle = self._insert_cycle()
        kept = self.repository.insert_bill(cycle.id, "Kept", 100, 2_000, False, ())
        dropped = self.repository.insert_bill(cycle.id, "Dropped", 100, 2_000, False, ())

        self.repository.delete_bills([dropped.id])

        assert self.repository.list_cycle_bill_ids(cycle.id) == [kept.id]
        assert self.repository.get_bill(dropped.id) is None

    def test_update_bill_persists_occurrence_state(self):
        cycle = self._insert_cycle()
        bill = self.repository.insert_bill(cycle.id, "Rent", 100, 2_000, True, (11, 12))
        assert bill.settled_occurrences == 0

        self.repository.update_bill(replace(
            bill, due_date=2_000 + 30 * 86_400, last_paid_date=2_000, settled_occurrences=1
        ))

        stored = self.repository.get_bill(bill.id)
        assert stored.due_date == 2_000 + 30 * 86_400
        assert stored.last_paid_date == 2_000
        assert stored.settled_occurrences == 1
        assert not stored.is_paid

    def test_balances_default_to_zero(self):
        assert self.repository.get_balance("nobody") == 0

        self.repository.set_balance("alice", 500)
        self.repository.set_balance("alice", 300)

        assert self.repository.get_balance("alice") == 300
        assert self.repository.list_balances() == {"alice": 300}

    def test_negative_balance_rejected(self):
        with pytest.raises(sqlite3.IntegrityError):
            self.repository.set_balance("alice", -1)


class TestTransactions:
    """Test atomicity of multi-step writes."""

    def setup_method(self):
        self.repository = LedgerRepository(":memory:")
        self.repository.initialize()

    def teardown_method(self):
        self.repository.close()

    def test_exception_rolls_back_all_writes(self):
        with pytest.raises(RuntimeError):
            with self.repository.transaction():
                self.repository.set_balance("alice", 100)
                self.repository.insert_cycle("alice", 1, 2, 100, 2, 200)
                raise RuntimeError("boom")

        assert self.repository.get_balance("alice") == 0
        assert self.repository.list_cycle_ids() == []

    def test_nested_transaction_joins_outer(self):
        with pytest.raises(RuntimeError):
            with self.repository.transaction():
                with self.repository.transaction():
                    self.repository.set_balance("alice", 100)
                raise RuntimeError("outer failure")

        assert self.repository.get_balance("alice") == 0

    def test_committed_writes_persist(self):
        with self.repository.transaction():
            with self.repository.transaction():
                self.repository.set_balance("alice", 100)
            self.repository.set_balance("bob", 50)

        assert self.repository.list_balances() == {"alice": 100, "bob": 50}

    def test_other_thread_waits_for_commit(self):
        order = []
        entered = threading.Event()
        release = threading.Event()

        def first():
            with self.repository.transaction():
                order.append("first-begin")
                entered.set()
                release.wait(5)
                self.repository.set_balance("alice", 100)
                order.append("first-end")

        def second():
            entered.wait(5)
            with self.repository.transaction():
                order.append("second")
                self.repository.set_balance("bob", self.repository.get_balance("alice"))

        threads = [threading.Thread(target=first), threading.Thread(target=second)]
        for thread in threads:
            thread.start()
        entered.wait(5)
        time.sleep(0.1)
        assert order == ["first-begin"]

        release.set()
        for thread in threads:
            thread.join(5)

        assert order == ["first-begin", "first-end", "second"]
        assert self.repository.list_balances() == {"alice": 100, "bob": 100}


class TestEventLedger:
    """Test append-only event recording and retrieval."""

    def setup_method(self):
        self.repository = LedgerRepository(":memory:")
        self.repository.initialize()

    def teardown_method(self):
        self.repository.close()

    def test_fetch_events_newest_first(self):
        self.repository.append_event(LedgerEvent(100, EventKind.CYCLE_CREATED, 1, account="alice", amount=1_000))
        self.repository.append_event(LedgerEvent(200, EventKind.BILL_ADDED, 1, bill_id=1, amount=100))
        self.repository.append_event(LedgerEvent(300, EventKind.BILL_PAID, 1, bill_id=1, amount=100))

        events = self.repository.fetch_events()
        assert [event.kind for event in events] == [
            EventKind.BILL_PAID, EventKind.BILL_ADDED, EventKind.CYCLE_CREATED
        ]
        assert events[2].account == "alice"

    def test_fetch_events_filters(self):
        self.repository.append_event(LedgerEvent(100, EventKind.CYCLE_CREATED, 1))
        self.repository.append_event(LedgerEvent(100, EventKind.CYCLE_CREATED, 2))
        self.repository.append_event(LedgerEvent(200, EventKind.BILL_ADDED, 2, bill_id=7))

        assert len(self.repository.fetch_events(cycle_id=2)) == 2
        added = self.repository.fetch_events(kind=EventKind.BILL_ADDED)
        assert len(added) == 1
        assert added[0].bill_id == 7
        assert len(self.repository.fetch_events(limit=1)) == 1
