from __future__ import annotations

import random
from dataclasses import dataclass

from domain.errors import InsufficientFunds, InvalidBet


DEFAULT_LOW = 1
DEFAULT_HIGH = 100


@dataclass(frozen=True)
class RollOutcome:
    player_roll: int
    house_roll: int
    won: bool
    net_change: int


def resolve_roll(
    bet: int,
    balance: int,
    rng: random.Random,
    low: int = DEFAULT_LOW,
    high: int = DEFAULT_HIGH,
) -> RollOutcome:
    """
    Settle a high-low dice wager against the house.

    The player must roll strictly higher than the house; ties go to the
    house. A win returns the stake plus an equal amount.
    """

    if bet <= 0:
        raise InvalidBet("Bet must be greater than zero.", details={"amount": bet})
    if bet > balance:
        raise InsufficientFunds(required=bet, available=balance)

    player_roll = rng.randint(low, high)
    house_roll = rng.randint(low, high)
    won = player_roll > house_roll

    return RollOutcome(
        player_roll=player_roll,
        house_roll=house_roll,
        won=won,
        net_change=bet if won else -bet,
    )
