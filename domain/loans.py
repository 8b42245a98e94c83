from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Sequence

from domain.errors import ExistingDebt, InsufficientCollateral, InvalidAmount
from domain.models import Loan


# 0.05% per day, advertised to players as 18% APR.
DAILY_INTEREST_RATE = 0.0005
MIN_PAYMENT_FLOOR = 25
MIN_PAYMENT_RATE = 0.03
LATE_FEE = 50
COLLATERAL_RATIO = 0.10

# 04:00 UTC is midnight US Eastern (daylight time).
DEFAULT_CUTOFF_HOUR_UTC = 4

ONE_DAY = timedelta(days=1)


class SettlementKind(str, Enum):
    SKIPPED = "skipped"
    PAID = "paid"
    MISSED = "missed"


@dataclass(frozen=True)
class Settlement:
    """The result of applying one day of interest and collection to a loan."""

    loan_id: int
    account_id: str
    kind: SettlementKind
    previous_balance: float
    interest: float = 0.0
    accrued: float = 0.0
    minimum_payment: int = 0
    debit: int = 0
    new_balance: float = 0.0
    missed_payments: int = 0
    next_payment_due: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentOutcome:
    payment: int
    previous_balance: float
    new_balance: float

    @property
    def paid_off(self) -> bool:
        return self.new_balance == 0


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def next_cutoff(now: datetime, hour: int = DEFAULT_CUTOFF_HOUR_UTC) -> datetime:
    """Return the first `hour:00` UTC strictly after `now`."""

    now = ensure_utc(now)
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += ONE_DAY
    return candidate


def advance_due_date(due: datetime, now: datetime) -> datetime:
    """
    Move a due date forward by one day.

    If the loan has fallen more than a day behind (the process was down),
    keep stepping a day at a time so the new due date lands in the future.
    """

    due = ensure_utc(due) + ONE_DAY
    now = ensure_utc(now)
    while due <= now:
        due += ONE_DAY
    return due


def minimum_payment(balance: float) -> int:
    return max(MIN_PAYMENT_FLOOR, math.ceil(balance * MIN_PAYMENT_RATE))


def total_debt(loans: Sequence[Loan]) -> float:
    return sum(loan.balance for loan in loans)


def validate_loan_request(
    amount: int,
    account_balance: int,
    existing_loans: Sequence[Loan],
) -> None:
    """Raise the matching `EconomyError` if a loan of `amount` may not be granted."""

    if amount <= 0:
        raise InvalidAmount("Loan amount must be greater than zero.", details={"amount": amount})

    active = [loan for loan in existing_loans if loan.is_active]
    if active:
        raise ExistingDebt(loan_count=len(active), total_debt=total_debt(active))

    required = amount * COLLATERAL_RATIO
    if account_balance < required:
        raise InsufficientCollateral(amount=amount, balance=account_balance, required=required)


def apply_payment(loan_balance: float, payment: int) -> PaymentOutcome:
    if payment <= 0:
        raise InvalidAmount("Payment must be greater than zero.", details={"amount": payment})
    return PaymentOutcome(
        payment=payment,
        previous_balance=loan_balance,
        new_balance=max(0.0, loan_balance - payment),
    )


def compute_settlement(loan: Loan, account_balance: int, now: datetime) -> Settlement:
    """
    Work out the daily settlement for `loan` at `now` without touching storage.

    Interest accrues on the outstanding balance; the minimum payment is taken
    from the account if it can cover it, otherwise a late fee is added and the
    missed-payment counter goes up.
    """

    if ensure_utc(now) < ensure_utc(loan.next_payment_due):
        return Settlement(
            loan_id=loan.id,
            account_id=loan.account_id,
            kind=SettlementKind.SKIPPED,
            previous_balance=loan.balance,
            new_balance=loan.balance,
            missed_payments=loan.missed_payments,
            next_payment_due=loan.next_payment_due,
        )

    interest = loan.balance * loan.daily_rate
    accrued = loan.balance + interest
    min_payment = minimum_payment(accrued)
    next_due = advance_due_date(loan.next_payment_due, now)

    if account_balance >= min_payment:
        return Settlement(
            loan_id=loan.id,
            account_id=loan.account_id,
            kind=SettlementKind.PAID,
            previous_balance=loan.balance,
            interest=interest,
            accrued=accrued,
            minimum_payment=min_payment,
            debit=min_payment,
            new_balance=max(0.0, accrued - min_payment),
            missed_payments=0,
            next_payment_due=next_due,
        )

    return Settlement(
        loan_id=loan.id,
        account_id=loan.account_id,
        kind=SettlementKind.MISSED,
        previous_balance=loan.balance,
        interest=interest,
        accrued=accrued,
        minimum_payment=min_payment,
        debit=0,
        new_balance=accrued + LATE_FEE,
        missed_payments=loan.missed_payments + 1,
        next_payment_due=next_due,
    )
