from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from domain.errors import LedgerConflict, PersistenceFailure
from domain.loans import ensure_utc
from domain.models import Account, Loan
from domain.repositories import LedgerRepository
from infrastructure.logging_setup import get_logger


log = get_logger(__name__)

_LOAN_COLUMNS = (
    "loan_id, user_id, principal_amount, current_balance, daily_interest_rate, "
    "created_at, next_payment_due, missed_payments, last_payment_date"
)


def _to_db_time(moment: Optional[datetime]) -> Optional[str]:
    if moment is None:
        return None
    return ensure_utc(moment).isoformat()


def _from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # Rows written by SQLite's CURRENT_TIMESTAMP use a space separator.
    return ensure_utc(datetime.fromisoformat(value.replace(" ", "T")))


class SqliteLedgerRepository(LedgerRepository):
    """
    SQLite-backed implementation of `LedgerRepository`.

    This repository owns the `users` and `loans` tables and maps rows to the
    `Account` and `Loan` domain models. It is self-initialising: the tables
    are created if needed. Every public method runs in its own transaction.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """
        Yield a cursor inside a transaction that commits on success and rolls
        back on any exception. Driver errors surface as `PersistenceFailure`.
        """

        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"Could not open ledger database: {exc}") from exc
        try:
            with conn:
                yield conn.cursor()
        except sqlite3.Error as exc:
            log.error("ledger_transaction_failed", error=str(exc))
            raise PersistenceFailure(f"Ledger write failed: {exc}") from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    gold_coins INTEGER DEFAULT 1000,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    last_active DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS loans (
                    loan_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    principal_amount INTEGER NOT NULL,
                    current_balance REAL NOT NULL,
                    daily_interest_rate REAL DEFAULT 0.0005,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    next_payment_due DATETIME NOT NULL,
                    missed_payments INTEGER DEFAULT 0,
                    is_suspended BOOLEAN DEFAULT 0,
                    last_payment_date DATETIME DEFAULT NULL,
                    FOREIGN KEY (user_id) REFERENCES users (user_id)
                )
                """
            )

    @staticmethod
    def _to_account(row: sqlite3.Row) -> Account:
        return Account(id=str(row["user_id"]), balance=int(row["gold_coins"]))

    @staticmethod
    def _to_loan(row: sqlite3.Row) -> Loan:
        return Loan(
            id=int(row["loan_id"]),
            account_id=str(row["user_id"]),
            principal=int(row["principal_amount"]),
            balance=float(row["current_balance"]),
            daily_rate=float(row["daily_interest_rate"]),
            next_payment_due=_from_db_time(row["next_payment_due"]),
            missed_payments=int(row["missed_payments"] or 0),
            last_payment_at=_from_db_time(row["last_payment_date"]),
            created_at=_from_db_time(row["created_at"]),
        )

    # Accounts

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._transaction() as cur:
            cur.execute("SELECT user_id, gold_coins FROM users WHERE user_id = ?", (account_id,))
            row = cur.fetchone()
            if not row:
                return None
            return self._to_account(row)

    def create_account(self, account_id: str, balance: int) -> Account:
        with self._transaction() as cur:
            cur.execute(
                "INSERT OR IGNORE INTO users (user_id, gold_coins) VALUES (?, ?)",
                (account_id, balance),
            )
            cur.execute("SELECT user_id, gold_coins FROM users WHERE user_id = ?", (account_id,))
            return self._to_account(cur.fetchone())

    def set_balance(self, account_id: str, amount: int) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                UPDATE users
                SET gold_coins = ?, last_active = CURRENT_TIMESTAMP
                WHERE user_id = ?
                """,
                (amount, account_id),
            )

    def adjust_balance(self, account_id: str, delta: int) -> int:
        with self._transaction() as cur:
            self._credit(cur, account_id, delta)
            cur.execute("SELECT gold_coins FROM users WHERE user_id = ?", (account_id,))
            row = cur.fetchone()
            if not row:
                raise PersistenceFailure(f"Account {account_id} does not exist.")
            return int(row["gold_coins"])

    @staticmethod
    def _credit(cur: sqlite3.Cursor, account_id: str, delta: int) -> None:
        cur.execute(
            """
            UPDATE users
            SET gold_coins = gold_coins + ?, last_active = CURRENT_TIMESTAMP
            WHERE user_id = ?
            """,
            (delta, account_id),
        )

    @staticmethod
    def _debit_if_covered(cur: sqlite3.Cursor, account_id: str, amount: int) -> None:
        cur.execute(
            """
            UPDATE users
            SET gold_coins = gold_coins - ?, last_active = CURRENT_TIMESTAMP
            WHERE user_id = ? AND gold_coins >= ?
            """,
            (amount, account_id, amount),
        )
        if cur.rowcount != 1:
            raise LedgerConflict(
                f"Account {account_id} can no longer cover {amount}.",
                details={"account_id": account_id, "amount": amount},
            )

    # Loans

    def _insert_loan(
        self,
        cur: sqlite3.Cursor,
        account_id: str,
        principal: int,
        daily_rate: float,
        next_payment_due: datetime,
        created_at: datetime,
    ) -> int:
        cur.execute(
            """
            INSERT INTO loans
                (user_id, principal_amount, current_balance, daily_interest_rate,
                 next_payment_due, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                account_id,
                principal,
                float(principal),
                daily_rate,
                _to_db_time(next_payment_due),
                _to_db_time(created_at),
            ),
        )
        return int(cur.lastrowid)

    def create_loan_atomic(
        self,
        account_id: str,
        principal: int,
        daily_rate: float,
        next_payment_due: datetime,
        created_at: datetime,
    ) -> Loan:
        with self._transaction() as cur:
            loan_id = self._insert_loan(
                cur, account_id, principal, daily_rate, next_payment_due, created_at
            )
            self._credit(cur, account_id, principal)
            if cur.rowcount != 1:
                raise PersistenceFailure(f"Account {account_id} does not exist.")

        return Loan(
            id=loan_id,
            account_id=account_id,
            principal=principal,
            balance=float(principal),
            daily_rate=daily_rate,
            next_payment_due=ensure_utc(next_payment_due),
            created_at=ensure_utc(created_at),
        )

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        with self._transaction() as cur:
            cur.execute(f"SELECT {_LOAN_COLUMNS} FROM loans WHERE loan_id = ?", (loan_id,))
            row = cur.fetchone()
            if not row:
                return None
            return self._to_loan(row)

    def get_active_loans(self, account_id: str) -> List[Loan]:
        with self._transaction() as cur:
            cur.execute(
                f"""
                SELECT {_LOAN_COLUMNS} FROM loans
                WHERE user_id = ? AND current_balance > 0
                ORDER BY loan_id
                """,
                (account_id,),
            )
            return [self._to_loan(row) for row in cur.fetchall()]

    def get_all_active_loans(self) -> List[Loan]:
        with self._transaction() as cur:
            cur.execute(
                f"SELECT {_LOAN_COLUMNS} FROM loans WHERE current_balance > 0 ORDER BY loan_id"
            )
            return [self._to_loan(row) for row in cur.fetchall()]

    def _update_loan_guarded(
        self,
        cur: sqlite3.Cursor,
        loan_id: int,
        new_balance: float,
        missed_payments: int,
        expected_balance: float,
        next_payment_due: Optional[datetime] = None,
        paid_at: Optional[datetime] = None,
    ) -> None:
        cur.execute(
            """
            UPDATE loans
            SET current_balance = ?,
                missed_payments = ?,
                next_payment_due = COALESCE(?, next_payment_due),
                last_payment_date = COALESCE(?, last_payment_date)
            WHERE loan_id = ? AND current_balance = ?
            """,
            (
                new_balance,
                missed_payments,
                _to_db_time(next_payment_due),
                _to_db_time(paid_at),
                loan_id,
                expected_balance,
            ),
        )
        if cur.rowcount != 1:
            raise LedgerConflict(
                f"Loan {loan_id} changed since it was read.",
                details={"loan_id": loan_id, "expected_balance": expected_balance},
            )

    def _owner_of(self, cur: sqlite3.Cursor, loan_id: int) -> str:
        cur.execute("SELECT user_id FROM loans WHERE loan_id = ?", (loan_id,))
        row = cur.fetchone()
        if not row:
            raise PersistenceFailure(f"Loan {loan_id} does not exist.")
        return str(row["user_id"])

    def record_payment(
        self,
        loan_id: int,
        amount: int,
        new_balance: float,
        expected_balance: float,
        paid_at: datetime,
    ) -> None:
        with self._transaction() as cur:
            account_id = self._owner_of(cur, loan_id)
            self._update_loan_guarded(
                cur,
                loan_id,
                new_balance,
                missed_payments=0,
                expected_balance=expected_balance,
                paid_at=paid_at,
            )
            self._debit_if_covered(cur, account_id, amount)

    def apply_settlement(
        self,
        loan_id: int,
        new_balance: float,
        missed_payments: int,
        next_payment_due: datetime,
        expected_balance: float,
        debit: int = 0,
        paid_at: Optional[datetime] = None,
    ) -> None:
        with self._transaction() as cur:
            account_id = self._owner_of(cur, loan_id)
            self._update_loan_guarded(
                cur,
                loan_id,
                new_balance,
                missed_payments=missed_payments,
                expected_balance=expected_balance,
                next_payment_due=next_payment_due,
                paid_at=paid_at,
            )
            if debit > 0:
                self._debit_if_covered(cur, account_id, debit)

    def forgive_loans(self, account_id: str) -> Tuple[int, float]:
        with self._transaction() as cur:
            cur.execute(
                """
                SELECT COUNT(*) AS loan_count, COALESCE(SUM(current_balance), 0) AS total
                FROM loans
                WHERE user_id = ? AND current_balance > 0
                """,
                (account_id,),
            )
            row = cur.fetchone()
            cur.execute(
                "UPDATE loans SET current_balance = 0 WHERE user_id = ? AND current_balance > 0",
                (account_id,),
            )
            return int(row["loan_count"]), float(row["total"])
