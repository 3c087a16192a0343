"""SQLite-backed ledger: accounts, projects, transactions, deposits and webhook events."""

from __future__ import annotations

import contextlib
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from threading import RLock
from typing import TYPE_CHECKING, Any

from workwise_escrow.core.exceptions import ServiceError
from workwise_escrow.domain import AdjustResult, BalanceKind
from workwise_escrow.money import ZERO, from_cents, to_cents

if TYPE_CHECKING:
    from collections.abc import Iterator
    from decimal import Decimal


class DuplicateAccountError(Exception):
    """Raised when an account already exists for the user."""


class DuplicateBidError(Exception):
    """Raised when a project already exists for the bid."""


class DuplicateDepositError(Exception):
    """Raised when a deposit already exists for the payment intent."""


def utc_now() -> str:
    """Current UTC timestamp in ISO 8601 format."""
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


def utc_timestamp(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


class LedgerStore:
    """
    SQLite-backed storage for every monetary record of the escrow service.

    All money columns are INTEGER cents; the public API speaks Decimal.
    Every write is a conditional update or an insert executed inside a
    unit of work (``BEGIN IMMEDIATE``). Calls made while a unit of work is
    open on this store join it, so a caller can group several store calls
    into one atomic commit.
    """

    _PROJECT_COLUMNS: tuple[str, ...] = (
        "project_id",
        "bid_id",
        "client_id",
        "worker_id",
        "agreed_amount",
        "platform_fee",
        "net_amount",
        "status",
        "employer_approved",
        "payment_released",
        "started_at",
        "completed_at",
        "approved_at",
        "payment_released_at",
        "cancelled_at",
        "disputed_at",
        "completion_notes",
        "revision_notes",
        "dispute_reason",
        "cancellation_reason",
        "revision_count",
        "created_at",
    )
    _TRANSACTION_COLUMNS: tuple[str, ...] = (
        "transaction_id",
        "project_id",
        "type",
        "status",
        "amount",
        "platform_fee",
        "net_amount",
        "payer_id",
        "payee_id",
        "external_reference",
        "description",
        "failure_message",
        "created_at",
        "processed_at",
    )
    _DEPOSIT_COLUMNS: tuple[str, ...] = (
        "deposit_id",
        "user_id",
        "amount",
        "currency",
        "status",
        "payment_intent_id",
        "payment_method",
        "failure_message",
        "created_at",
        "completed_at",
    )
    _MUTABLE_TRANSACTION_COLUMNS = frozenset(
        {"status", "processed_at", "external_reference", "failure_message"}
    )
    _MONEY_COLUMNS = frozenset({"agreed_amount", "platform_fee", "net_amount", "amount"})
    _BOOL_COLUMNS = frozenset({"employer_approved", "payment_released"})

    def __init__(self, db_path: str) -> None:
        self._lock = RLock()
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode: transactions are opened explicitly by unit_of_work()
        self._db = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA journal_mode=WAL")
        self._db.execute("PRAGMA foreign_keys=ON")
        self._db.execute("PRAGMA busy_timeout=5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._db.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    user_id TEXT PRIMARY KEY,
                    escrow_balance INTEGER NOT NULL DEFAULT 0 CHECK (escrow_balance >= 0),
                    earnings_balance INTEGER NOT NULL DEFAULT 0 CHECK (earnings_balance >= 0),
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS projects (
                    project_id TEXT PRIMARY KEY,
                    bid_id TEXT NOT NULL UNIQUE,
                    client_id TEXT NOT NULL REFERENCES accounts(user_id),
                    worker_id TEXT NOT NULL REFERENCES accounts(user_id),
                    agreed_amount INTEGER NOT NULL CHECK (agreed_amount > 0),
                    platform_fee INTEGER NOT NULL CHECK (platform_fee >= 0),
                    net_amount INTEGER NOT NULL CHECK (net_amount >= 0),
                    status TEXT NOT NULL,
                    employer_approved INTEGER NOT NULL DEFAULT 0,
                    payment_released INTEGER NOT NULL DEFAULT 0,
                    started_at TEXT,
                    completed_at TEXT,
                    approved_at TEXT,
                    payment_released_at TEXT,
                    cancelled_at TEXT,
                    disputed_at TEXT,
                    completion_notes TEXT,
                    revision_notes TEXT,
                    dispute_reason TEXT,
                    cancellation_reason TEXT,
                    revision_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS transactions (
                    transaction_id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL REFERENCES projects(project_id),
                    type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount >= 0),
                    platform_fee INTEGER NOT NULL,
                    net_amount INTEGER NOT NULL,
                    payer_id TEXT NOT NULL,
                    payee_id TEXT NOT NULL,
                    external_reference TEXT,
                    description TEXT,
                    failure_message TEXT,
                    created_at TEXT NOT NULL,
                    processed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS deposits (
                    deposit_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL REFERENCES accounts(user_id),
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    currency TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payment_intent_id TEXT NOT NULL UNIQUE,
                    payment_method TEXT,
                    failure_message TEXT,
                    created_at TEXT NOT NULL,
                    completed_at TEXT
                );

                CREATE TABLE IF NOT EXISTS webhook_events (
                    event_id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    payment_intent_id TEXT,
                    outcome TEXT NOT NULL,
                    processed_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS job_leases (
                    name TEXT PRIMARY KEY,
                    holder TEXT NOT NULL,
                    expires_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS ux_one_escrow_per_project
                    ON transactions(project_id) WHERE type = 'escrow';

                CREATE UNIQUE INDEX IF NOT EXISTS ux_one_release_per_project
                    ON transactions(project_id) WHERE type = 'release';

                CREATE INDEX IF NOT EXISTS ix_transactions_payer
                    ON transactions(payer_id, created_at);

                CREATE INDEX IF NOT EXISTS ix_transactions_payee
                    ON transactions(payee_id, created_at);

                CREATE INDEX IF NOT EXISTS ix_deposits_status_created
                    ON deposits(status, created_at);
                """
            )

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """
        Group store calls into a single SQLite transaction.

        Opens ``BEGIN IMMEDIATE`` so the write lock is taken up front and
        concurrent writers queue on ``busy_timeout`` instead of failing at
        commit. Nested calls join the outer transaction. Any exception rolls
        back every write made since the outermost BEGIN.
        """
        with self._lock:
            if self._db.in_transaction:
                yield
                return

            self._db.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                with contextlib.suppress(sqlite3.Error):
                    self._db.execute("ROLLBACK")
                raise
            self._db.execute("COMMIT")

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    def _decode(self, row: sqlite3.Row, columns: tuple[str, ...]) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for column in columns:
            value = row[column]
            if column in self._MONEY_COLUMNS and value is not None:
                value = from_cents(int(value))
            elif column in self._BOOL_COLUMNS:
                value = bool(value)
            record[column] = value
        return record

    def _encode(self, column: str, value: Any) -> Any:
        if column in self._MONEY_COLUMNS and value is not None:
            return to_cents(value)
        if column in self._BOOL_COLUMNS:
            return 1 if value else 0
        return value

    # ------------------------------------------------------------------
    # Accounts and balances
    # ------------------------------------------------------------------

    def create_account(self, user_id: str) -> dict[str, Any]:
        """Insert an account with zero balances."""
        now = utc_now()
        try:
            with self.unit_of_work():
                self._db.execute(
                    "INSERT INTO accounts (user_id, escrow_balance, earnings_balance, created_at) "
                    "VALUES (?, 0, 0, ?)",
                    (user_id, now),
                )
        except sqlite3.IntegrityError as exc:
            raise DuplicateAccountError(f"An account for user_id={user_id} already exists") from exc
        return {
            "user_id": user_id,
            "escrow_balance": ZERO,
            "earnings_balance": ZERO,
            "created_at": now,
        }

    def get_account(self, user_id: str) -> dict[str, Any] | None:
        """Fetch an account by user ID."""
        with self._lock:
            row = self._db.execute(
                "SELECT user_id, escrow_balance, earnings_balance, created_at "
                "FROM accounts WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return {
            "user_id": row["user_id"],
            "escrow_balance": from_cents(int(row["escrow_balance"])),
            "earnings_balance": from_cents(int(row["earnings_balance"])),
            "created_at": row["created_at"],
        }

    def get_balance(self, user_id: str, kind: BalanceKind = BalanceKind.ESCROW) -> Decimal:
        """
        Read one balance of an account.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND.
        """
        with self._lock:
            row = self._db.execute(
                f"SELECT {kind.value} FROM accounts WHERE user_id = ?",  # nosec B608
                (user_id,),
            ).fetchone()
        if row is None:
            raise ServiceError("ACCOUNT_NOT_FOUND", "Account not found", 404, {"user_id": user_id})
        return from_cents(int(row[0]))

    def atomic_adjust_balance(
        self,
        user_id: str,
        delta: Decimal,
        expected_precondition: Decimal | None = None,
        kind: BalanceKind = BalanceKind.ESCROW,
    ) -> AdjustResult:
        """
        Apply a compare-and-swap change to one balance.

        Debits carry an implicit ``balance >= -delta`` guard. When
        expected_precondition is given the row must also hold exactly that
        balance. Zero affected rows (guard failed or account missing) is
        reported as CONFLICT; the caller decides what that means.
        """
        column = kind.value
        query = f"UPDATE accounts SET {column} = {column} + ? WHERE user_id = ?"  # nosec B608
        params: list[object] = [to_cents(delta), user_id]
        if expected_precondition is not None:
            query += f" AND {column} = ?"
            params.append(to_cents(expected_precondition))
        if delta < 0:
            query += f" AND {column} >= ?"
            params.append(to_cents(-delta))

        with self.unit_of_work():
            cursor = self._db.execute(query, params)
        if cursor.rowcount == 0:
            return AdjustResult.CONFLICT
        return AdjustResult.SUCCESS

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def insert_project(self, project: dict[str, Any]) -> None:
        """Insert a new project row."""
        columns = ", ".join(self._PROJECT_COLUMNS)
        placeholders = ", ".join("?" for _ in self._PROJECT_COLUMNS)
        values = tuple(self._encode(column, project[column]) for column in self._PROJECT_COLUMNS)
        try:
            with self.unit_of_work():
                self._db.execute(
                    f"INSERT INTO projects ({columns}) VALUES ({placeholders})",  # nosec B608
                    values,
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateBidError(
                    f"A project for bid_id={project['bid_id']} already exists"
                ) from exc
            raise

    def get_project(self, project_id: str) -> dict[str, Any] | None:
        """Fetch a project by ID."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._PROJECT_COLUMNS)} FROM projects "  # nosec B608
                "WHERE project_id = ?",
                (project_id,),
            ).fetchone()
        if row is None:
            return None
        return self._decode(row, self._PROJECT_COLUMNS)

    def get_project_by_bid(self, bid_id: str) -> dict[str, Any] | None:
        """Fetch the project created from a bid, if any."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._PROJECT_COLUMNS)} FROM projects "  # nosec B608
                "WHERE bid_id = ?",
                (bid_id,),
            ).fetchone()
        if row is None:
            return None
        return self._decode(row, self._PROJECT_COLUMNS)

    def update_project(
        self,
        project_id: str,
        updates: dict[str, Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> int:
        """
        Update project columns and return the number of affected rows.

        ``expected`` maps a column to the value it must currently hold; a
        tuple value means "any of these".
        """
        if len(updates) == 0:
            return 0

        if any(column not in self._PROJECT_COLUMNS for column in updates):
            msg = "Attempted to update unknown project column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._encode(column, value) for column, value in updates.items()]

        query = "UPDATE projects SET " + set_clause + " WHERE project_id = ?"  # nosec B608
        params.append(project_id)
        for column, value in (expected or {}).items():
            if column not in self._PROJECT_COLUMNS:
                msg = "Attempted to guard on unknown project column"
                raise ValueError(msg)
            if isinstance(value, tuple):
                query += f" AND {column} IN ({', '.join('?' for _ in value)})"
                params.extend(self._encode(column, item) for item in value)
            else:
                query += f" AND {column} = ?"
                params.append(self._encode(column, value))

        with self.unit_of_work():
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    def count_projects_by_status(self) -> dict[str, int]:
        """Count projects grouped by status."""
        with self._lock:
            rows = self._db.execute(
                "SELECT status, COUNT(*) FROM projects GROUP BY status"
            ).fetchall()
        return {str(row[0]): int(row[1]) for row in rows}

    def sum_pending_earnings(self, worker_id: str) -> Decimal:
        """Net amount of the worker's unreleased in-flight projects."""
        with self._lock:
            row = self._db.execute(
                "SELECT COALESCE(SUM(net_amount), 0) FROM projects "
                "WHERE worker_id = ? AND payment_released = 0 "
                "AND status IN ('in_progress', 'completed')",
                (worker_id,),
            ).fetchone()
        return from_cents(int(row[0]))

    def sum_active_escrow(self, client_id: str) -> Decimal:
        """Gross amount a client currently has locked in unsettled projects."""
        with self._lock:
            row = self._db.execute(
                "SELECT COALESCE(SUM(amount), 0) FROM transactions "
                "WHERE type = 'escrow' AND status = 'pending' AND payer_id = ?",
                (client_id,),
            ).fetchone()
        return from_cents(int(row[0]))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def append_transaction(self, record: dict[str, Any]) -> str:
        """Insert an immutable ledger entry and return its ID."""
        row = dict(record)
        row.setdefault("transaction_id", f"txn-{uuid.uuid4()}")
        row.setdefault("external_reference", None)
        row.setdefault("description", None)
        row.setdefault("failure_message", None)
        row.setdefault("processed_at", None)
        row.setdefault("created_at", utc_now())

        columns = ", ".join(self._TRANSACTION_COLUMNS)
        placeholders = ", ".join("?" for _ in self._TRANSACTION_COLUMNS)
        values = tuple(self._encode(column, row[column]) for column in self._TRANSACTION_COLUMNS)
        with self.unit_of_work():
            self._db.execute(
                f"INSERT INTO transactions ({columns}) VALUES ({placeholders})",  # nosec B608
                values,
            )
        return str(row["transaction_id"])

    def get_transaction(self, transaction_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._TRANSACTION_COLUMNS)} FROM transactions "  # nosec B608
                "WHERE transaction_id = ?",
                (transaction_id,),
            ).fetchone()
        if row is None:
            return None
        return self._decode(row, self._TRANSACTION_COLUMNS)

    def get_transaction_by_reference(self, reference: str) -> dict[str, Any] | None:
        """Oldest ledger entry carrying the given external reference."""
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._TRANSACTION_COLUMNS)} FROM transactions "  # nosec B608
                "WHERE external_reference = ? ORDER BY created_at, rowid LIMIT 1",
                (reference,),
            ).fetchone()
        if row is None:
            return None
        return self._decode(row, self._TRANSACTION_COLUMNS)

    def get_project_transactions(
        self,
        project_id: str,
        tx_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """List a project's ledger entries in insertion order."""
        query = (
            f"SELECT {', '.join(self._TRANSACTION_COLUMNS)} FROM transactions "  # nosec B608
            "WHERE project_id = ?"
        )
        params: list[object] = [project_id]
        if tx_type is not None:
            query += " AND type = ?"
            params.append(tx_type)
        query += " ORDER BY created_at, rowid"

        with self._lock:
            rows = self._db.execute(query, params).fetchall()
        return [self._decode(row, self._TRANSACTION_COLUMNS) for row in rows]

    def get_user_transactions(self, user_id: str, limit: int) -> list[dict[str, Any]]:
        """Transactions where the user pays or is paid, newest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {', '.join(self._TRANSACTION_COLUMNS)} FROM transactions "  # nosec B608
                "WHERE payer_id = ? OR payee_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (user_id, user_id, limit),
            ).fetchall()
        return [self._decode(row, self._TRANSACTION_COLUMNS) for row in rows]

    def sum_completed_releases(self, worker_id: str) -> Decimal:
        """Total net a worker has received through completed releases."""
        with self._lock:
            row = self._db.execute(
                "SELECT COALESCE(SUM(net_amount), 0) FROM transactions "
                "WHERE type = 'release' AND status = 'completed' AND payee_id = ?",
                (worker_id,),
            ).fetchone()
        return from_cents(int(row[0]))

    def sum_pending_escrow(self) -> Decimal:
        """Gross of every escrow entry not yet settled by a release or refund."""
        with self._lock:
            row = self._db.execute(
                "SELECT COALESCE(SUM(amount), 0) FROM transactions "
                "WHERE type = 'escrow' AND status = 'pending'"
            ).fetchone()
        return from_cents(int(row[0]))

    def update_transaction(
        self,
        transaction_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update a ledger entry that is still in expected_status."""
        if len(updates) == 0:
            return 0

        if any(column not in self._MUTABLE_TRANSACTION_COLUMNS for column in updates):
            msg = "Only status, processed_at, external_reference and failure_message are mutable"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = list(updates.values())

        query = "UPDATE transactions SET " + set_clause + " WHERE transaction_id = ?"  # nosec B608
        params.append(transaction_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self.unit_of_work():
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    # ------------------------------------------------------------------
    # Deposits
    # ------------------------------------------------------------------

    def insert_deposit(self, deposit: dict[str, Any]) -> None:
        """Insert a pending deposit row."""
        row = dict(deposit)
        row.setdefault("payment_method", None)
        row.setdefault("failure_message", None)
        row.setdefault("completed_at", None)

        columns = ", ".join(self._DEPOSIT_COLUMNS)
        placeholders = ", ".join("?" for _ in self._DEPOSIT_COLUMNS)
        values = tuple(self._encode(column, row[column]) for column in self._DEPOSIT_COLUMNS)
        try:
            with self.unit_of_work():
                self._db.execute(
                    f"INSERT INTO deposits ({columns}) VALUES ({placeholders})",  # nosec B608
                    values,
                )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateDepositError(
                    f"A deposit for payment_intent_id={row['payment_intent_id']} already exists"
                ) from exc
            raise

    def get_deposit(self, deposit_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._DEPOSIT_COLUMNS)} FROM deposits "  # nosec B608
                "WHERE deposit_id = ?",
                (deposit_id,),
            ).fetchone()
        if row is None:
            return None
        return self._decode(row, self._DEPOSIT_COLUMNS)

    def get_deposit_by_intent(self, payment_intent_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                f"SELECT {', '.join(self._DEPOSIT_COLUMNS)} FROM deposits "  # nosec B608
                "WHERE payment_intent_id = ?",
                (payment_intent_id,),
            ).fetchone()
        if row is None:
            return None
        return self._decode(row, self._DEPOSIT_COLUMNS)

    def update_deposit(
        self,
        deposit_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | None,
    ) -> int:
        """Update deposit columns and return the number of affected rows."""
        if len(updates) == 0:
            return 0

        if any(column not in self._DEPOSIT_COLUMNS for column in updates):
            msg = "Attempted to update unknown deposit column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._encode(column, value) for column, value in updates.items()]

        query = "UPDATE deposits SET " + set_clause + " WHERE deposit_id = ?"  # nosec B608
        params.append(deposit_id)
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)

        with self.unit_of_work():
            cursor = self._db.execute(query, params)
        return int(cursor.rowcount)

    def list_pending_deposits(self, created_after: str) -> list[dict[str, Any]]:
        """Pending deposits created at or after the given timestamp, oldest first."""
        with self._lock:
            rows = self._db.execute(
                f"SELECT {', '.join(self._DEPOSIT_COLUMNS)} FROM deposits "  # nosec B608
                "WHERE status = 'pending' AND created_at >= ? ORDER BY created_at, rowid",
                (created_after,),
            ).fetchall()
        return [self._decode(row, self._DEPOSIT_COLUMNS) for row in rows]

    def count_pending_deposits(self) -> int:
        with self._lock:
            row = self._db.execute(
                "SELECT COUNT(*) FROM deposits WHERE status = 'pending'"
            ).fetchone()
        return int(row[0]) if row is not None else 0

    # ------------------------------------------------------------------
    # Webhook events
    # ------------------------------------------------------------------

    def record_webhook_event(
        self,
        event_id: str,
        event_type: str,
        payment_intent_id: str | None,
        outcome: str,
    ) -> bool:
        """Record a processed event. Returns False if the event ID was already recorded."""
        with self.unit_of_work():
            cursor = self._db.execute(
                "INSERT OR IGNORE INTO webhook_events "
                "(event_id, event_type, payment_intent_id, outcome, processed_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (event_id, event_type, payment_intent_id, outcome, utc_now()),
            )
        return cursor.rowcount == 1

    def get_webhook_event(self, event_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._db.execute(
                "SELECT event_id, event_type, payment_intent_id, outcome, processed_at "
                "FROM webhook_events WHERE event_id = ?",
                (event_id,),
            ).fetchone()
        if row is None:
            return None
        return dict(row)

    # ------------------------------------------------------------------
    # Job leases
    # ------------------------------------------------------------------

    def try_acquire_lease(self, name: str, holder: str, lease_seconds: int) -> bool:
        """
        Take the named lease if it is free or expired.

        Returns True when this holder now owns the lease.
        """
        now = datetime.now(UTC)
        expires_at = utc_timestamp(now + timedelta(seconds=lease_seconds))
        with self.unit_of_work():
            cursor = self._db.execute(
                "INSERT INTO job_leases (name, holder, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT(name) DO UPDATE SET "
                "holder = excluded.holder, expires_at = excluded.expires_at "
                "WHERE job_leases.expires_at <= ?",
                (name, holder, expires_at, utc_timestamp(now)),
            )
        return cursor.rowcount == 1

    def release_lease(self, name: str, holder: str) -> None:
        """Give up a lease held by holder. A lease taken over by someone else is left alone."""
        with self.unit_of_work():
            self._db.execute(
                "DELETE FROM job_leases WHERE name = ? AND holder = ?",
                (name, holder),
            )

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()
