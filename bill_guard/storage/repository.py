"""
Repository pattern for data access.

The ledger store: exclusive owner of cycle and bill records, account
balances and the append-only event ledger. Every other component reads and
writes state only through this module.
"""

import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence

from .db import DEFAULT_DB_PATH, DEFAULT_TIMEOUT, get_connection
from .models import Bill, BillCategory, Cycle, EventKind, LedgerEvent

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS cycle (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        owner TEXT NOT NULL,
        start_date INTEGER NOT NULL,
        end_date INTEGER NOT NULL,
        total_deposited INTEGER NOT NULL,
        operating_fee INTEGER NOT NULL,
        fee_percentage INTEGER NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        last_adjustment_month INTEGER NOT NULL DEFAULT 0,
        total_paid INTEGER NOT NULL DEFAULT 0,
        CHECK (end_date > start_date),
        CHECK (total_deposited > 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS bill (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        cycle_id INTEGER NOT NULL REFERENCES cycle(id),
        name TEXT NOT NULL,
        amount INTEGER NOT NULL,
        due_date INTEGER NOT NULL,
        is_paid INTEGER NOT NULL DEFAULT 0,
        is_recurring INTEGER NOT NULL DEFAULT 0,
        recurrence_calendar TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT 'other',
        last_paid_date INTEGER,
        settled_occurrences INTEGER NOT NULL DEFAULT 0,
        CHECK (amount > 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account_balance (
        account TEXT PRIMARY KEY,
        balance INTEGER NOT NULL,
        CHECK (balance >= 0)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_event (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp INTEGER NOT NULL,
        kind TEXT NOT NULL,
        cycle_id INTEGER NOT NULL,
        bill_id INTEGER,
        account TEXT,
        amount INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_cycle_owner ON cycle(owner)",
    "CREATE INDEX IF NOT EXISTS idx_bill_cycle ON bill(cycle_id)",
    "CREATE INDEX IF NOT EXISTS idx_event_cycle ON ledger_event(cycle_id)",
)

_CYCLE_COLUMNS = (
    "id, owner, start_date, end_date, total_deposited, operating_fee, "
    "fee_percentage, is_active, last_adjustment_month, total_paid"
)

_BILL_COLUMNS = (
    "id, cycle_id, name, amount, due_date, is_paid, is_recurring, "
    "recurrence_calendar, category, last_paid_date, settled_occurrences"
)


def _create_tables(conn: sqlite3.Connection) -> None:
    for statement in _SCHEMA:
        conn.execute(statement)


def _encode_calendar(months: Sequence[int]) -> str:
    return ",".join(str(month) for month in months)


def _decode_calendar(raw: str) -> tuple:
    return tuple(int(part) for part in raw.split(",") if part)


def _row_to_cycle(row) -> Cycle:
    return Cycle(
        id=row[0],
        owner=row[1],
        start_date=row[2],
        end_date=row[3],
        total_deposited=row[4],
        operating_fee=row[5],
        fee_percentage=row[6],
        is_active=bool(row[7]),
        last_adjustment_month=row[8],
        total_paid=row[9]
    )


def _row_to_bill(row) -> Bill:
    return Bill(
        id=row[0],
        cycle_id=row[1],
        name=row[2],
        amount=row[3],
        due_date=row[4],
        is_paid=bool(row[5]),
        is_recurring=bool(row[6]),
        recurrence_calendar=_decode_calendar(row[7]),
        category=BillCategory(row[8]),
        last_paid_date=row[9],
        settled_occurrences=row[10]
    )


class LedgerRepository:
    """Repository for cycle, bill, balance and event records.

    Holds one connection for its lifetime so that a multi-step operation
    (validate, write bill, move funds) can run inside a single transaction.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, timeout: float = DEFAULT_TIMEOUT):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
            timeout: Seconds to wait for a writer on another connection
        """
        self.db_path = db_path
        self._conn = get_connection(db_path, timeout=timeout)
        self._lock = threading.RLock()
        self._depth = 0

    def initialize(self) -> None:
        """Create the ledger tables on this repository's connection."""
        _create_tables(self._conn)

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["LedgerRepository"]:
        """Run a block atomically.

        Nested use in the same thread joins the outermost transaction; other
        threads sharing this repository wait until it commits or rolls back.
        The write lock is taken at BEGIN, so reads made inside the block see
        state no other connection can change before COMMIT. Any exception
        rolls the whole outermost transaction back and is re-raised.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._depth = 0
                self._conn.execute("ROLLBACK")
                raise
            self._depth = 0
            self._conn.execute("COMMIT")

    # Cycles

    def insert_cycle(
        self,
        owner: str,
        start_date: int,
        end_date: int,
        total_deposited: int,
        operating_fee: int,
        fee_percentage: int
    ) -> Cycle:
        """Insert a new active cycle and return it with its assigned id."""
        cursor = self._conn.execute("""
            INSERT INTO cycle
            (owner, start_date, end_date, total_deposited, operating_fee,
             fee_percentage, is_active, last_adjustment_month, total_paid)
            VALUES (?, ?, ?, ?, ?, ?, 1, 0, 0)
        """, (owner, start_date, end_date, total_deposited, operating_fee, fee_percentage))
        return Cycle(
            id=cursor.lastrowid,
            owner=owner,
            start_date=start_date,
            end_date=end_date,
            total_deposited=total_deposited,
            operating_fee=operating_fee,
            fee_percentage=fee_percentage
        )

    def get_cycle(self, cycle_id: int) -> Optional[Cycle]:
        cursor = self._conn.execute(
            f"SELECT {_CYCLE_COLUMNS} FROM cycle WHERE id = ?", (cycle_id,)
        )
        row = cursor.fetchone()
        return _row_to_cycle(row) if row else None

    def update_cycle(self, cycle: Cycle) -> None:
        """Persist the mutable fields of a cycle."""
        self._conn.execute("""
            UPDATE cycle
            SET is_active = ?, last_adjustment_month = ?, total_paid = ?
            WHERE id = ?
        """, (int(cycle.is_active), cycle.last_adjustment_month, cycle.total_paid, cycle.id))

    def list_cycle_ids(self) -> List[int]:
        cursor = self._conn.execute("SELECT id FROM cycle ORDER BY id")
        return [row[0] for row in cursor.fetchall()]

    def list_user_cycle_ids(self, owner: str) -> List[int]:
        cursor = self._conn.execute(
            "SELECT id FROM cycle WHERE owner = ? ORDER BY id", (owner,)
        )
        return [row[0] for row in cursor.fetchall()]

    # Bills

    def insert_bill(
        self,
        cycle_id: int,
        name: str,
        amount: int,
        due_date: int,
        is_recurring: bool,
        recurrence_calendar: Sequence[int],
        category: BillCategory = BillCategory.OTHER
    ) -> Bill:
        """Insert a new unpaid bill and return it with its assigned id."""
        cursor = self._conn.execute("""
            INSERT INTO bill
            (cycle_id, name, amount, due_date, is_paid, is_recurring,
             recurrence_calendar, category, last_paid_date, settled_occurrences)
            VALUES (?, ?, ?, ?, 0, ?, ?, ?, NULL, 0)
        """, (
            cycle_id,
            name,
            amount,
            due_date,
            int(is_recurring),
            _encode_calendar(recurrence_calendar),
            category.value
        ))
        return Bill(
            id=cursor.lastrowid,
            cycle_id=cycle_id,
            name=name,
            amount=amount,
            due_date=due_date,
            is_recurring=is_recurring,
            recurrence_calendar=tuple(recurrence_calendar),
            category=category
        )

    def get_bill(self, bill_id: int) -> Optional[Bill]:
        cursor = self._conn.execute(
            f"SELECT {_BILL_COLUMNS} FROM bill WHERE id = ?", (bill_id,)
        )
        row = cursor.fetchone()
        return _row_to_bill(row) if row else None

    def update_bill(self, bill: Bill) -> None:
        """Persist the occurrence state of a bill."""
        self._conn.execute("""
            UPDATE bill
            SET due_date = ?, is_paid = ?, last_paid_date = ?, settled_occurrences = ?
            WHERE id = ?
        """, (
            bill.due_date,
            int(bill.is_paid),
            bill.last_paid_date,
            bill.settled_occurrences,
            bill.id
        ))

    def delete_bills(self, bill_ids: Sequence[int]) -> None:
        """Remove bill records outright; cancelled bills are not archived."""
        self._conn.executemany(
            "DELETE FROM bill WHERE id = ?", [(bill_id,) for bill_id in bill_ids]
        )

    def list_cycle_bill_ids(self, cycle_id: int) -> List[int]:
        cursor = self._conn.execute(
            "SELECT id FROM bill WHERE cycle_id = ? ORDER BY id", (cycle_id,)
        )
        return [row[0] for row in cursor.fetchall()]

    def list_cycle_bills(self, cycle_id: int) -> List[Bill]:
        cursor = self._conn.execute(
            f"SELECT {_BILL_COLUMNS} FROM bill WHERE cycle_id = ? ORDER BY id",
            (cycle_id,)
        )
        return [_row_to_bill(row) for row in cursor.fetchall()]

    # Balances

    def get_balance(self, account: str) -> int:
        cursor = self._conn.execute(
            "SELECT balance FROM account_balance WHERE account = ?", (account,)
        )
        row = cursor.fetchone()
        return row[0] if row else 0

    def set_balance(self, account: str, balance: int) -> None:
        self._conn.execute("""
            INSERT INTO account_balance (account, balance) VALUES (?, ?)
            ON CONFLICT(account) DO UPDATE SET balance = excluded.balance
        """, (account, balance))

    def list_balances(self) -> Dict[str, int]:
        cursor = self._conn.execute(
            "SELECT account, balance FROM account_balance ORDER BY account"
        )
        return {row[0]: row[1] for row in cursor.fetchall()}

    # Events

    def append_event(self, event: LedgerEvent) -> None:
        """Append a single event to the ledger. Events are never modified."""
        self._conn.execute("""
            INSERT INTO ledger_event
            (timestamp, kind, cycle_id, bill_id, account, amount)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            event.timestamp,
            event.kind.value,
            event.cycle_id,
            event.bill_id,
            event.account,
            event.amount
        ))

    def fetch_events(
        self,
        cycle_id: Optional[int] = None,
        kind: Optional[EventKind] = None,
        limit: int = 100
    ) -> List[LedgerEvent]:
        """Fetch recent ledger events, optionally filtered by cycle and kind.

        Returns events in reverse chronological order (newest first).

        Args:
            cycle_id: Optional filter for a specific cycle
            kind: Optional filter for a specific event kind
            limit: Maximum number of events to return

        Returns:
            List of ledger events ordered newest first
        """
        query = "SELECT timestamp, kind, cycle_id, bill_id, account, amount FROM ledger_event"
        params: list = []
        conditions = []

        if cycle_id is not None:
            conditions.append("cycle_id = ?")
            params.append(cycle_id)
        if kind is not None:
            conditions.append("kind = ?")
            params.append(kind.value)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        cursor = self._conn.execute(query, params)
        return [
            LedgerEvent(
                timestamp=row[0],
                kind=EventKind(row[1]),
                cycle_id=row[2],
                bill_id=row[3],
                account=row[4],
                amount=row[5]
            )
            for row in cursor.fetchall()
        ]


# Global repository instances, one per database path
_repositories: Dict[str, LedgerRepository] = {}


def get_repository(db_path: str = DEFAULT_DB_PATH) -> LedgerRepository:
    """Get the shared repository instance for a database path.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of LedgerRepository
    """
    if db_path not in _repositories:
        _repositories[db_path] = LedgerRepository(db_path)
    return _repositories[db_path]


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the ledger tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        _create_tables(conn)
    finally:
        conn.close()
