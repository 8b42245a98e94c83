from __future__ import annotations

import functools
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from application.blackjack import BlackjackSessionManager, CountPeek, HandOutcome
from application.scheduler import utc_now
from domain.dice import DEFAULT_HIGH, DEFAULT_LOW, RollOutcome, resolve_roll
from domain.errors import (
    EconomyError,
    FailureReason,
    InsufficientFunds,
    InvalidAmount,
    LedgerConflict,
    NoDebt,
    PersistenceFailure,
)
from domain.loans import (
    DAILY_INTEREST_RATE,
    DEFAULT_CUTOFF_HOUR_UTC,
    PaymentOutcome,
    apply_payment,
    minimum_payment,
    next_cutoff,
    total_debt,
    validate_loan_request,
)
from domain.models import Account, Loan
from domain.repositories import LedgerRepository
from infrastructure.logging_setup import get_logger


log = get_logger(__name__)

DEFAULT_STARTING_BALANCE = 1000
MAX_PAYMENT_ATTEMPTS = 3


@dataclass
class Failure:
    """Why a command was refused; `reason` is what renderers switch on."""

    reason: FailureReason
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, exc: EconomyError) -> "Failure":
        return cls(reason=exc.reason, message=exc.message, details=dict(exc.details))


@dataclass
class OperationResult:
    """Generic result type for simple operations."""

    success: bool = True
    failure: Optional[Failure] = None


@dataclass
class BalanceResult(OperationResult):
    account_id: str = ""
    balance: int = 0
    previous_balance: Optional[int] = None


@dataclass
class RollResult(OperationResult):
    outcome: Optional[RollOutcome] = None
    balance: int = 0


@dataclass
class HandResult(OperationResult):
    outcome: Optional[HandOutcome] = None


@dataclass
class CountResult(OperationResult):
    peek: Optional[CountPeek] = None


@dataclass
class LoanResult(OperationResult):
    loan: Optional[Loan] = None
    balance: int = 0


@dataclass
class LoanLine:
    """A loan as shown in status listings."""

    loan: Loan
    minimum_payment: int
    borrower_balance: Optional[int] = None


@dataclass
class LoanStatusResult(OperationResult):
    loans: List[LoanLine] = field(default_factory=list)
    total_debt: float = 0.0


@dataclass
class PaymentResult(OperationResult):
    loan_id: Optional[int] = None
    payment: Optional[PaymentOutcome] = None
    balance: int = 0

    @property
    def paid_off(self) -> bool:
        return self.payment is not None and self.payment.paid_off


@dataclass
class ForgiveResult(OperationResult):
    account_id: str = ""
    loans_forgiven: int = 0
    total_forgiven: float = 0.0


def _command(result_cls: Callable[..., OperationResult]):
    """Turn `EconomyError`s raised by a command into a failed result."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except EconomyError as exc:
                log.info(
                    "command_refused",
                    command=func.__name__,
                    reason=exc.reason.value,
                    detail=exc.message,
                )
                return result_cls(success=False, failure=Failure.from_error(exc))

        return wrapper

    return decorator


def _validate_positive_amount(amount: int) -> None:
    if amount is None or amount <= 0:
        raise InvalidAmount("Amount must be greater than zero.", details={"amount": amount})


class EconomyService:
    """
    The command surface the chat layer talks to.

    Every method returns a result object; refusals come back as
    `success=False` with a `Failure`, never as an exception.
    """

    def __init__(
        self,
        ledger: LedgerRepository,
        blackjack: Optional[BlackjackSessionManager] = None,
        rng: Optional[random.Random] = None,
        starting_balance: int = DEFAULT_STARTING_BALANCE,
        dice_low: int = DEFAULT_LOW,
        dice_high: int = DEFAULT_HIGH,
        cutoff_hour: int = DEFAULT_CUTOFF_HOUR_UTC,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ledger = ledger
        self._rng = rng or random.SystemRandom()
        self.blackjack = blackjack or BlackjackSessionManager(ledger, rng=self._rng)
        self._starting_balance = starting_balance
        self._dice_low = dice_low
        self._dice_high = dice_high
        self._cutoff_hour = cutoff_hour
        self._clock = clock

    def ensure_account(self, user_id: str) -> Account:
        account = self._ledger.get_account(user_id)
        if account is not None:
            return account
        account = self._ledger.create_account(user_id, self._starting_balance)
        log.info("account_created", account_id=user_id, balance=account.balance)
        return account

    # Wallet

    @_command(BalanceResult)
    def check_balance(self, user_id: str) -> BalanceResult:
        account = self.ensure_account(user_id)
        return BalanceResult(account_id=account.id, balance=account.balance)

    @_command(RollResult)
    def place_dice_wager(self, user_id: str, amount: int) -> RollResult:
        account = self.ensure_account(user_id)
        outcome = resolve_roll(
            amount,
            account.balance,
            self._rng,
            low=self._dice_low,
            high=self._dice_high,
        )
        balance = self._ledger.adjust_balance(user_id, outcome.net_change)
        log.info(
            "dice_rolled",
            account_id=user_id,
            bet=amount,
            player_roll=outcome.player_roll,
            house_roll=outcome.house_roll,
            net_change=outcome.net_change,
        )
        return RollResult(outcome=outcome, balance=balance)

    # Blackjack

    @_command(HandResult)
    def start_blackjack(self, user_id: str, amount: int) -> HandResult:
        self.ensure_account(user_id)
        return HandResult(outcome=self.blackjack.start_game(user_id, amount))

    @_command(HandResult)
    def hit(self, user_id: str) -> HandResult:
        return HandResult(outcome=self.blackjack.hit(user_id))

    @_command(HandResult)
    def stand(self, user_id: str) -> HandResult:
        return HandResult(outcome=self.blackjack.stand(user_id))

    @_command(CountResult)
    def peek_count(self, user_id: str) -> CountResult:
        return CountResult(peek=self.blackjack.peek_count(user_id))

    # Loans

    @_command(LoanResult)
    def request_loan(self, user_id: str, amount: int, now: Optional[datetime] = None) -> LoanResult:
        now = now or self._clock()
        account = self.ensure_account(user_id)
        existing = self._ledger.get_active_loans(user_id)
        validate_loan_request(amount, account.balance, existing)

        loan = self._ledger.create_loan_atomic(
            user_id,
            amount,
            daily_rate=DAILY_INTEREST_RATE,
            next_payment_due=next_cutoff(now, self._cutoff_hour),
            created_at=now,
        )
        balance = self.ensure_account(user_id).balance
        log.info("loan_created", account_id=user_id, loan_id=loan.id, principal=amount)
        return LoanResult(loan=loan, balance=balance)

    @_command(LoanStatusResult)
    def list_loan_status(self, user_id: str) -> LoanStatusResult:
        self.ensure_account(user_id)
        loans = self._ledger.get_active_loans(user_id)
        return LoanStatusResult(
            loans=[LoanLine(loan=loan, minimum_payment=minimum_payment(loan.balance)) for loan in loans],
            total_debt=total_debt(loans),
        )

    @_command(PaymentResult)
    def make_loan_payment(
        self,
        user_id: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> PaymentResult:
        now = now or self._clock()
        _validate_positive_amount(amount)

        for attempt in range(1, MAX_PAYMENT_ATTEMPTS + 1):
            account = self.ensure_account(user_id)
            if amount > account.balance:
                raise InsufficientFunds(required=amount, available=account.balance)

            loans = self._ledger.get_active_loans(user_id)
            if not loans:
                raise NoDebt("No outstanding loans.")

            # Oldest loan first.
            loan = loans[0]
            outcome = apply_payment(loan.balance, amount)
            try:
                self._ledger.record_payment(
                    loan.id,
                    amount,
                    new_balance=outcome.new_balance,
                    expected_balance=loan.balance,
                    paid_at=now,
                )
            except LedgerConflict:
                log.warning("payment_conflict", loan_id=loan.id, attempt=attempt)
                continue

            balance = self.ensure_account(user_id).balance
            log.info(
                "loan_payment_recorded",
                account_id=user_id,
                loan_id=loan.id,
                payment=amount,
                new_balance=outcome.new_balance,
                paid_off=outcome.paid_off,
            )
            return PaymentResult(loan_id=loan.id, payment=outcome, balance=balance)

        raise PersistenceFailure("The loan kept changing; payment not applied.")

    # Admin

    @_command(BalanceResult)
    def admin_credit(self, user_id: str, amount: int) -> BalanceResult:
        _validate_positive_amount(amount)
        previous = self.ensure_account(user_id).balance
        balance = self._ledger.adjust_balance(user_id, amount)
        log.info("admin_credit", account_id=user_id, amount=amount, balance=balance)
        return BalanceResult(account_id=user_id, balance=balance, previous_balance=previous)

    @_command(BalanceResult)
    def admin_set_balance(self, user_id: str, amount: int) -> BalanceResult:
        if amount is None or amount < 0:
            raise InvalidAmount("Balance cannot be negative.", details={"amount": amount})
        previous = self.ensure_account(user_id).balance
        self._ledger.set_balance(user_id, amount)
        log.info("admin_set_balance", account_id=user_id, previous=previous, balance=amount)
        return BalanceResult(account_id=user_id, balance=amount, previous_balance=previous)

    @_command(ForgiveResult)
    def admin_forgive_loan(self, user_id: str) -> ForgiveResult:
        self.ensure_account(user_id)
        if not self._ledger.get_active_loans(user_id):
            raise NoDebt("Nothing to forgive.")
        count, total = self._ledger.forgive_loans(user_id)
        log.info("loans_forgiven", account_id=user_id, loans=count, total=total)
        return ForgiveResult(account_id=user_id, loans_forgiven=count, total_forgiven=total)

    @_command(LoanStatusResult)
    def admin_list_all_loans(self) -> LoanStatusResult:
        loans = self._ledger.get_all_active_loans()
        lines = []
        for loan in loans:
            account = self._ledger.get_account(loan.account_id)
            lines.append(
                LoanLine(
                    loan=loan,
                    minimum_payment=minimum_payment(loan.balance),
                    borrower_balance=account.balance if account else None,
                )
            )
        lines.sort(key=lambda line: line.loan.balance, reverse=True)
        return LoanStatusResult(loans=lines, total_debt=total_debt(loans))
