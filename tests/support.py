from __future__ import annotations

import random
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from domain.cards import build_deck
from domain.errors import LedgerConflict, PersistenceFailure
from domain.models import Account, Card, Loan, Shoe
from domain.repositories import LedgerRepository


NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class InMemoryLedgerRepository(LedgerRepository):
    def __init__(self):
        self.accounts: Dict[str, Account] = {}
        self.loans: Dict[int, Loan] = {}
        self._next_loan_id = 1

    def get_account(self, account_id: str) -> Optional[Account]:
        account = self.accounts.get(account_id)
        return replace(account) if account else None

    def create_account(self, account_id: str, balance: int) -> Account:
        if account_id not in self.accounts:
            self.accounts[account_id] = Account(id=account_id, balance=balance)
        return replace(self.accounts[account_id])

    def set_balance(self, account_id: str, amount: int) -> None:
        self.accounts[account_id].balance = amount

    def adjust_balance(self, account_id: str, delta: int) -> int:
        account = self.accounts[account_id]
        account.balance += delta
        return account.balance

    def create_loan_atomic(
        self,
        account_id: str,
        principal: int,
        daily_rate: float,
        next_payment_due: datetime,
        created_at: datetime,
    ) -> Loan:
        if account_id not in self.accounts:
            raise PersistenceFailure(f"Account {account_id} does not exist.")
        loan = Loan(
            id=self._next_loan_id,
            account_id=account_id,
            principal=principal,
            balance=float(principal),
            daily_rate=daily_rate,
            next_payment_due=next_payment_due,
            created_at=created_at,
        )
        self._next_loan_id += 1
        self.loans[loan.id] = loan
        self.accounts[account_id].balance += principal
        return replace(loan)

    def add_loan(self, account_id: str, balance: float, next_payment_due: datetime, **kwargs) -> Loan:
        """Test helper: insert a loan without touching the account balance."""

        loan = Loan(
            id=self._next_loan_id,
            account_id=account_id,
            principal=int(kwargs.pop("principal", balance)),
            balance=float(balance),
            daily_rate=kwargs.pop("daily_rate", 0.0005),
            next_payment_due=next_payment_due,
            **kwargs,
        )
        self._next_loan_id += 1
        self.loans[loan.id] = loan
        return replace(loan)

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        loan = self.loans.get(loan_id)
        return replace(loan) if loan else None

    def get_active_loans(self, account_id: str) -> List[Loan]:
        return [
            replace(loan)
            for loan in sorted(self.loans.values(), key=lambda l: l.id)
            if loan.account_id == account_id and loan.balance > 0
        ]

    def get_all_active_loans(self) -> List[Loan]:
        return [replace(loan) for loan in sorted(self.loans.values(), key=lambda l: l.id) if loan.balance > 0]

    def _guard(self, loan_id: int, expected_balance: float, debit: int) -> Loan:
        loan = self.loans[loan_id]
        if loan.balance != expected_balance:
            raise LedgerConflict(f"Loan {loan_id} changed since it was read.")
        if debit > self.accounts[loan.account_id].balance:
            raise LedgerConflict(f"Account {loan.account_id} can no longer cover {debit}.")
        return loan

    def record_payment(
        self,
        loan_id: int,
        amount: int,
        new_balance: float,
        expected_balance: float,
        paid_at: datetime,
    ) -> None:
        loan = self._guard(loan_id, expected_balance, amount)
        loan.balance = new_balance
        loan.missed_payments = 0
        loan.last_payment_at = paid_at
        self.accounts[loan.account_id].balance -= amount

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
        loan = self._guard(loan_id, expected_balance, debit)
        loan.balance = new_balance
        loan.missed_payments = missed_payments
        loan.next_payment_due = next_payment_due
        if paid_at is not None:
            loan.last_payment_at = paid_at
        self.accounts[loan.account_id].balance -= debit

    def forgive_loans(self, account_id: str) -> Tuple[int, float]:
        active = [l for l in self.loans.values() if l.account_id == account_id and l.balance > 0]
        total = sum(l.balance for l in active)
        for loan in active:
            loan.balance = 0.0
        return len(active), total


class ScriptedRandom(random.Random):
    """A `random.Random` whose `randint` replays a fixed script."""

    def __init__(self, rolls: Iterable[int] = (), seed: int = 7):
        super().__init__(seed)
        self._rolls = list(rolls)

    def randint(self, a: int, b: int) -> int:
        if self._rolls:
            return self._rolls.pop(0)
        return super().randint(a, b)


def cards(*ranks: str, suit: str = "♠️") -> List[Card]:
    return [Card(rank=rank, suit=suit) for rank in ranks]


def stacked_shoe(draw_order: Sequence[Card], refreshed_at: float = 0.0) -> Shoe:
    """
    A shoe that deals `draw_order` first (draws pop from the end), padded
    underneath with a full deck so it never drops below a reshuffle threshold.
    """

    padding = build_deck(1)
    return Shoe(
        cards=padding + list(reversed(list(draw_order))),
        running_count=0,
        last_refreshed=refreshed_at,
    )
