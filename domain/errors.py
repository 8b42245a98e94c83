from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class FailureReason(str, Enum):
    """Stable codes for every way a command can be refused."""

    INVALID_AMOUNT = "invalid_amount"
    INVALID_BET = "invalid_bet"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    GAME_ALREADY_ACTIVE = "game_already_active"
    NO_ACTIVE_GAME = "no_active_game"
    GAME_FINISHED = "game_finished"
    ALREADY_PEEKED = "already_peeked"
    EXISTING_DEBT = "existing_debt"
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    NO_DEBT = "no_debt"
    PERSISTENCE_FAILURE = "persistence_failure"


class EconomyError(Exception):
    """Base error for the economy engine, carrying a reason code and details."""

    reason: FailureReason = FailureReason.PERSISTENCE_FAILURE

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        self.message = message or self.reason.value
        self.details = details or {}
        super().__init__(self.message)


class InvalidAmount(EconomyError):
    reason = FailureReason.INVALID_AMOUNT


class InvalidBet(InvalidAmount):
    reason = FailureReason.INVALID_BET


class InsufficientFunds(EconomyError):
    reason = FailureReason.INSUFFICIENT_FUNDS

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Need {required} but only {available} available.",
            details={"required": required, "available": available},
        )


class GameAlreadyActive(EconomyError):
    reason = FailureReason.GAME_ALREADY_ACTIVE


class NoActiveGame(EconomyError):
    reason = FailureReason.NO_ACTIVE_GAME


class GameFinished(EconomyError):
    reason = FailureReason.GAME_FINISHED


class AlreadyPeeked(EconomyError):
    reason = FailureReason.ALREADY_PEEKED


class ExistingDebt(EconomyError):
    reason = FailureReason.EXISTING_DEBT

    def __init__(self, loan_count: int, total_debt: float):
        super().__init__(
            f"{loan_count} loan(s) outstanding.",
            details={"loan_count": loan_count, "total_debt": total_debt},
        )


class InsufficientCollateral(EconomyError):
    reason = FailureReason.INSUFFICIENT_COLLATERAL

    def __init__(self, amount: int, balance: int, required: float):
        super().__init__(
            f"Balance {balance} is below the {required} collateral needed for {amount}.",
            details={"amount": amount, "balance": balance, "required": required},
        )


class NoDebt(EconomyError):
    reason = FailureReason.NO_DEBT


class PersistenceFailure(EconomyError):
    reason = FailureReason.PERSISTENCE_FAILURE


class LedgerConflict(PersistenceFailure):
    """A guarded write found the row changed since it was read."""
