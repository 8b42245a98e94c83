from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class Account:
    """
    A player's vault of Gold Coins.

    Accounts are created lazily the first time a user issues a command and
    are never removed. The balance is kept non-negative by the services,
    not by the store.
    """

    id: str
    balance: int


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"


@dataclass
class Shoe:
    """
    A per-user multi-deck card source.

    The top of the shoe is the end of `cards`, so drawing is a `pop()`.
    `last_refreshed` is a POSIX timestamp.
    """

    cards: List[Card]
    running_count: int = 0
    last_refreshed: float = 0.0


@dataclass
class BlackjackGame:
    """A single in-progress hand of blackjack for one user."""

    user_id: str
    wager: int
    player_hand: List[Card] = field(default_factory=list)
    dealer_hand: List[Card] = field(default_factory=list)
    count_peeked: bool = False
    finished: bool = False


@dataclass
class Loan:
    """
    A line of credit extended to an account.

    A loan whose balance is at or below zero is closed. Closed loans stay in
    the store; they are only ever zeroed, never deleted.
    """

    id: int
    account_id: str
    principal: int
    balance: float
    daily_rate: float
    next_payment_due: datetime
    missed_payments: int = 0
    last_payment_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.balance > 0
