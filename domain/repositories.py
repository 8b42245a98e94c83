from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from .models import Account, Loan


class LedgerRepository(Protocol):
    """
    Abstraction over balance and loan persistence.

    Implementations are responsible for:
    - Mapping between stored rows and the `Account` / `Loan` domain models.
    - Hiding any SQL / driver details from the application layer.
    - Applying every multi-row mutation all-or-nothing, raising
      `PersistenceFailure` (after rolling back) when storage fails.
    """

    def get_account(self, account_id: str) -> Optional[Account]:
        """Return the account with the given ID, or None if not found."""

        ...

    def create_account(self, account_id: str, balance: int) -> Account:
        """
        Create an account with the given opening balance.

        Creating an account that already exists is a no-op; the stored
        account is returned either way.
        """

        ...

    def set_balance(self, account_id: str, amount: int) -> None:
        ...

    def adjust_balance(self, account_id: str, delta: int) -> int:
        """
        Atomically apply `delta` to an account's balance.

        Returns the balance after the change.
        """

        ...

    def create_loan_atomic(
        self,
        account_id: str,
        principal: int,
        daily_rate: float,
        next_payment_due: datetime,
        created_at: datetime,
    ) -> Loan:
        """Insert a loan and credit the account by `principal` in one unit."""

        ...

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        ...

    def get_active_loans(self, account_id: str) -> List[Loan]:
        """Return the account's loans with a positive balance, oldest first."""

        ...

    def get_all_active_loans(self) -> List[Loan]:
        """Return every loan with a positive balance across all accounts."""

        ...

    def record_payment(
        self,
        loan_id: int,
        amount: int,
        new_balance: float,
        expected_balance: float,
        paid_at: datetime,
    ) -> None:
        """
        Debit the borrower by `amount` and store the loan's new balance.

        The write only happens if the loan still holds `expected_balance` and
        the account can still cover `amount`; otherwise `LedgerConflict` is
        raised and nothing changes. The missed-payment counter is reset.
        """

        ...

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
        """
        Store the outcome of a daily settlement, debiting the borrower by
        `debit` in the same unit. Guarded like `record_payment`.
        """

        ...

    def forgive_loans(self, account_id: str) -> Tuple[int, float]:
        """
        Zero every active loan for the account.

        Returns the number of loans forgiven and the total balance cleared.
        """

        ...
