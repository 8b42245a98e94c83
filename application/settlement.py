from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from domain.errors import LedgerConflict, PersistenceFailure
from domain.loans import Settlement, SettlementKind, compute_settlement
from domain.repositories import LedgerRepository
from infrastructure.logging_setup import get_logger


log = get_logger(__name__)

MAX_WRITE_ATTEMPTS = 3


@dataclass
class SettlementReport:
    """Tally of one daily sweep."""

    processed: int = 0
    paid: int = 0
    missed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_loan_ids: List[int] = field(default_factory=list)


def settle_loan(ledger: LedgerRepository, loan_id: int, now: datetime) -> Settlement:
    """
    Apply the daily settlement to a single loan.

    Loan and account are re-read on every attempt and the write is guarded
    by the balance that was read, so a payment landing in between forces a
    recomputation instead of being overwritten.
    """

    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        loan = ledger.get_loan(loan_id)
        if loan is None:
            raise PersistenceFailure(f"Loan {loan_id} does not exist.")
        account = ledger.get_account(loan.account_id)
        if account is None:
            raise PersistenceFailure(f"Account {loan.account_id} for loan {loan_id} does not exist.")

        if not loan.is_active:
            # Paid off or forgiven after the sweep listed it.
            return Settlement(
                loan_id=loan.id,
                account_id=loan.account_id,
                kind=SettlementKind.SKIPPED,
                previous_balance=loan.balance,
                new_balance=loan.balance,
                missed_payments=loan.missed_payments,
                next_payment_due=loan.next_payment_due,
            )

        settlement = compute_settlement(loan, account.balance, now)
        if settlement.kind is SettlementKind.SKIPPED:
            return settlement

        try:
            ledger.apply_settlement(
                loan_id,
                new_balance=settlement.new_balance,
                missed_payments=settlement.missed_payments,
                next_payment_due=settlement.next_payment_due,
                expected_balance=loan.balance,
                debit=settlement.debit,
                paid_at=now if settlement.kind is SettlementKind.PAID else None,
            )
        except LedgerConflict:
            log.warning("settlement_conflict", loan_id=loan_id, attempt=attempt)
            continue

        if settlement.kind is SettlementKind.PAID:
            log.info(
                "loan_settlement_paid",
                loan_id=loan_id,
                account_id=loan.account_id,
                interest=settlement.interest,
                payment=settlement.debit,
                new_balance=settlement.new_balance,
            )
        else:
            log.info(
                "loan_settlement_missed",
                loan_id=loan_id,
                account_id=loan.account_id,
                interest=settlement.interest,
                new_balance=settlement.new_balance,
                missed_payments=settlement.missed_payments,
            )
        return settlement

    raise PersistenceFailure(
        f"Loan {loan_id} kept changing during settlement.",
        details={"loan_id": loan_id, "attempts": MAX_WRITE_ATTEMPTS},
    )


def run_daily_settlement(ledger: LedgerRepository, now: datetime) -> SettlementReport:
    """
    Settle every active loan that is due at `now`.

    A failure on one loan is logged and counted; the sweep carries on with
    the rest.
    """

    report = SettlementReport()
    loans = ledger.get_all_active_loans()
    log.info("settlement_sweep_started", loans=len(loans), now=now.isoformat())

    for loan in loans:
        report.processed += 1
        try:
            settlement = settle_loan(ledger, loan.id, now)
        except Exception:
            report.failed += 1
            report.failed_loan_ids.append(loan.id)
            log.exception("settlement_failed", loan_id=loan.id, account_id=loan.account_id)
            continue

        if settlement.kind is SettlementKind.PAID:
            report.paid += 1
        elif settlement.kind is SettlementKind.MISSED:
            report.missed += 1
        else:
            report.skipped += 1
            log.debug(
                "loan_settlement_skipped",
                loan_id=loan.id,
                next_payment_due=str(settlement.next_payment_due),
            )

    log.info(
        "settlement_sweep_finished",
        processed=report.processed,
        paid=report.paid,
        missed=report.missed,
        skipped=report.skipped,
        failed=report.failed,
    )
    return report
