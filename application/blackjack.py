from __future__ import annotations

import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from domain.cards import (
    build_shoe,
    card_value,
    draw_card,
    hand_value,
    is_bust,
    is_natural,
    true_count,
)
from domain.errors import (
    AlreadyPeeked,
    GameAlreadyActive,
    GameFinished,
    InsufficientFunds,
    InvalidBet,
    NoActiveGame,
)
from domain.models import BlackjackGame, Card, Shoe
from domain.repositories import LedgerRepository
from infrastructure.logging_setup import get_logger


log = get_logger(__name__)

DEALER_STANDS_ON = 17
# The count costs 10% of the wager, at least one coin.
COUNT_COST_DIVISOR = 10


class HandStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    BLACKJACK = "blackjack"
    PUSH = "push"
    WIN = "win"
    LOSE = "lose"
    BUST = "bust"


@dataclass(frozen=True)
class HandOutcome:
    """
    Snapshot of a hand after a player action.

    The dealer's first card stays face down while the hand is in progress
    and when the player busts (the dealer never plays that hand);
    `dealer_visible` applies that rule for renderers.
    """

    status: HandStatus
    wager: int
    player_hand: Tuple[Card, ...]
    dealer_hand: Tuple[Card, ...]
    net_change: int
    balance: int
    reshuffled: bool = False
    drawn_card: Optional[Card] = None

    @property
    def finished(self) -> bool:
        return self.status is not HandStatus.IN_PROGRESS

    @property
    def player_total(self) -> int:
        return hand_value(self.player_hand)

    @property
    def dealer_total(self) -> int:
        return hand_value(self.dealer_hand)

    @property
    def dealer_busted(self) -> bool:
        return self.finished and is_bust(self.dealer_hand)

    @property
    def dealer_visible(self) -> Tuple[Card, ...]:
        if self.status in (HandStatus.IN_PROGRESS, HandStatus.BUST):
            return self.dealer_hand[1:]
        return self.dealer_hand

    @property
    def dealer_up_value(self) -> int:
        return card_value(self.dealer_hand[1])


@dataclass(frozen=True)
class CountPeek:
    cost: int
    balance: int
    running_count: int
    true_count: float
    cards_remaining: int
    reshuffled: bool = False


class SessionRegistry:
    """
    In-memory store of active blackjack games and per-user shoes.

    Entries live only as long as the process; a game is added when it is
    dealt and removed as soon as it resolves.
    """

    def __init__(self) -> None:
        self._games: Dict[str, BlackjackGame] = {}
        self._shoes: Dict[str, Shoe] = {}

    def get_game(self, user_id: str) -> Optional[BlackjackGame]:
        return self._games.get(user_id)

    def has_game(self, user_id: str) -> bool:
        return user_id in self._games

    def open_game(self, game: BlackjackGame) -> None:
        if game.user_id in self._games:
            raise GameAlreadyActive("Finish the current hand first.")
        self._games[game.user_id] = game

    def close_game(self, user_id: str) -> None:
        game = self._games.pop(user_id, None)
        if game is not None:
            game.finished = True

    def get_shoe(self, user_id: str) -> Optional[Shoe]:
        return self._shoes.get(user_id)

    def set_shoe(self, user_id: str, shoe: Shoe) -> None:
        self._shoes[user_id] = shoe


class BlackjackSessionManager:
    """Runs one hand of blackjack per user against a fixed dealer policy."""

    def __init__(
        self,
        ledger: LedgerRepository,
        registry: Optional[SessionRegistry] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        decks_per_shoe: int = 2,
        shuffle_threshold: int = 15,
        shoe_expiration_seconds: float = 60 * 60,
    ) -> None:
        self._ledger = ledger
        self.registry = registry or SessionRegistry()
        self._rng = rng or random.SystemRandom()
        self._clock = clock
        self._decks_per_shoe = decks_per_shoe
        self._shuffle_threshold = shuffle_threshold
        self._shoe_expiration_seconds = shoe_expiration_seconds

    # Shoe handling

    def ensure_shoe(self, user_id: str, force_new: bool = False) -> Tuple[Shoe, bool]:
        """
        Return the user's shoe, replacing it first if it is missing, running
        low, or older than the expiration window. The flag reports whether a
        fresh shoe was built.
        """

        now = self._clock()
        shoe = self.registry.get_shoe(user_id)
        if (
            force_new
            or shoe is None
            or len(shoe.cards) < self._shuffle_threshold
            or now - shoe.last_refreshed >= self._shoe_expiration_seconds
        ):
            shoe = build_shoe(self._decks_per_shoe, self._rng, now)
            self.registry.set_shoe(user_id, shoe)
            log.info("shoe_reshuffled", user_id=user_id, cards=len(shoe.cards))
            return shoe, True
        return shoe, False

    def draw(self, user_id: str) -> Tuple[Card, bool]:
        shoe, reshuffled = self.ensure_shoe(user_id)
        if not shoe.cards:
            shoe, _ = self.ensure_shoe(user_id, force_new=True)
            reshuffled = True
        return draw_card(shoe), reshuffled

    # Game flow

    def _balance(self, user_id: str) -> int:
        account = self._ledger.get_account(user_id)
        return account.balance if account else 0

    def _active_game(self, user_id: str) -> BlackjackGame:
        game = self.registry.get_game(user_id)
        if game is None:
            raise NoActiveGame("No cards on the table.")
        if game.finished:
            raise GameFinished("This hand is already over.")
        return game

    def _hold_wager(self, user_id: str, wager: int) -> None:
        """Take the wager out of the vault for the length of the hand."""

        balance = self._ledger.adjust_balance(user_id, -wager)
        if balance < 0:
            # Another command spent the coins between the check and the debit.
            self._ledger.adjust_balance(user_id, wager)
            raise InsufficientFunds(required=wager, available=balance + wager)

    def _resolve(
        self,
        game: BlackjackGame,
        status: HandStatus,
        net_change: int,
        reshuffled: bool,
        drawn_card: Optional[Card] = None,
    ) -> HandOutcome:
        # The wager is held from the deal; return it together with the result.
        payout = game.wager + net_change
        if payout:
            balance = self._ledger.adjust_balance(game.user_id, payout)
        else:
            balance = self._balance(game.user_id)
        self.registry.close_game(game.user_id)

        log.info(
            "blackjack_resolved",
            user_id=game.user_id,
            status=status.value,
            wager=game.wager,
            net_change=net_change,
        )
        return HandOutcome(
            status=status,
            wager=game.wager,
            player_hand=tuple(game.player_hand),
            dealer_hand=tuple(game.dealer_hand),
            net_change=net_change,
            balance=balance,
            reshuffled=reshuffled,
            drawn_card=drawn_card,
        )

    def _in_progress(
        self,
        game: BlackjackGame,
        reshuffled: bool,
        drawn_card: Optional[Card] = None,
    ) -> HandOutcome:
        return HandOutcome(
            status=HandStatus.IN_PROGRESS,
            wager=game.wager,
            player_hand=tuple(game.player_hand),
            dealer_hand=tuple(game.dealer_hand),
            net_change=0,
            balance=self._balance(game.user_id),
            reshuffled=reshuffled,
            drawn_card=drawn_card,
        )

    def start_game(self, user_id: str, wager: int) -> HandOutcome:
        if wager <= 0:
            raise InvalidBet("Bet must be greater than zero.", details={"amount": wager})

        balance = self._balance(user_id)
        if wager > balance:
            raise InsufficientFunds(required=wager, available=balance)

        if self.registry.has_game(user_id):
            raise GameAlreadyActive("Finish the current hand first.")

        self._hold_wager(user_id, wager)
        try:
            reshuffled = False
            cards = []
            for _ in range(4):
                card, fresh = self.draw(user_id)
                cards.append(card)
                reshuffled = reshuffled or fresh

            game = BlackjackGame(
                user_id=user_id,
                wager=wager,
                player_hand=cards[:2],
                dealer_hand=cards[2:],
            )
            self.registry.open_game(game)
        except Exception:
            self._ledger.adjust_balance(user_id, wager)
            raise

        if is_natural(game.player_hand):
            if is_natural(game.dealer_hand):
                return self._resolve(game, HandStatus.PUSH, 0, reshuffled)
            # 3:2 on a natural: 2.5x returned, stake included.
            payout = wager * 5 // 2 - wager
            return self._resolve(game, HandStatus.BLACKJACK, payout, reshuffled)

        return self._in_progress(game, reshuffled)

    def hit(self, user_id: str) -> HandOutcome:
        game = self._active_game(user_id)

        card, reshuffled = self.draw(user_id)
        game.player_hand.append(card)

        if is_bust(game.player_hand):
            return self._resolve(game, HandStatus.BUST, -game.wager, reshuffled, drawn_card=card)
        return self._in_progress(game, reshuffled, drawn_card=card)

    def stand(self, user_id: str) -> HandOutcome:
        game = self._active_game(user_id)

        reshuffled = False
        while hand_value(game.dealer_hand) < DEALER_STANDS_ON:
            card, fresh = self.draw(user_id)
            game.dealer_hand.append(card)
            reshuffled = reshuffled or fresh

        player_total = hand_value(game.player_hand)
        dealer_total = hand_value(game.dealer_hand)

        if is_bust(game.dealer_hand) or player_total > dealer_total:
            return self._resolve(game, HandStatus.WIN, game.wager, reshuffled)
        if player_total < dealer_total:
            return self._resolve(game, HandStatus.LOSE, -game.wager, reshuffled)
        return self._resolve(game, HandStatus.PUSH, 0, reshuffled)

    def peek_count(self, user_id: str) -> CountPeek:
        game = self._active_game(user_id)
        if game.count_peeked:
            raise AlreadyPeeked("The count was already bought this hand.")

        cost = max(1, game.wager // COUNT_COST_DIVISOR)
        balance = self._balance(user_id)
        if balance < cost:
            raise InsufficientFunds(required=cost, available=balance)

        new_balance = self._ledger.adjust_balance(user_id, -cost)
        game.count_peeked = True

        shoe, reshuffled = self.ensure_shoe(user_id)
        remaining = len(shoe.cards)
        return CountPeek(
            cost=cost,
            balance=new_balance,
            running_count=shoe.running_count,
            true_count=true_count(shoe.running_count, remaining),
            cards_remaining=remaining,
            reshuffled=reshuffled,
        )
