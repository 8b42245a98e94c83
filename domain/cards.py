from __future__ import annotations

import random
from typing import List, Optional, Sequence

from domain.models import Card, Shoe


SUITS = ("♠️", "♥️", "♦️", "♣️")
RANKS = ("A", "2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K")
FACE_RANKS = ("J", "Q", "K")

CARDS_PER_DECK = len(SUITS) * len(RANKS)

LOW_COUNT_RANKS = ("2", "3", "4", "5", "6")
HIGH_COUNT_RANKS = ("10", "J", "Q", "K", "A")


def build_deck(deck_count: int = 1) -> List[Card]:
    """Return `deck_count` standard decks in a fixed, unshuffled order."""

    return [
        Card(rank=rank, suit=suit)
        for _ in range(deck_count)
        for suit in SUITS
        for rank in RANKS
    ]


def shuffle(cards: Sequence[Card], rng: random.Random) -> List[Card]:
    """
    Return a uniformly shuffled copy of `cards` (Fisher–Yates).

    Only `rng.randrange` is used so any `random.Random` compatible source
    can be injected.
    """

    shuffled = list(cards)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randrange(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def build_shoe(
    deck_count: int,
    rng: Optional[random.Random] = None,
    now: float = 0.0,
) -> Shoe:
    """Build a freshly shuffled shoe of `deck_count` decks with a zero count."""

    rng = rng or random.SystemRandom()
    return Shoe(
        cards=shuffle(build_deck(deck_count), rng),
        running_count=0,
        last_refreshed=now,
    )


def hi_lo_delta(rank: str) -> int:
    if rank in LOW_COUNT_RANKS:
        return 1
    if rank in HIGH_COUNT_RANKS:
        return -1
    return 0


def update_running_count(shoe: Shoe, card: Card) -> None:
    shoe.running_count += hi_lo_delta(card.rank)


def draw_card(shoe: Shoe) -> Card:
    """
    Remove the top card from the shoe and fold it into the running count.

    Raises `IndexError` when the shoe is empty; refreshing is the caller's job.
    """

    if not shoe.cards:
        raise IndexError("Cannot draw from an empty shoe.")
    card = shoe.cards.pop()
    update_running_count(shoe, card)
    return card


def true_count(running_count: int, cards_remaining: int) -> float:
    if cards_remaining <= 0:
        return 0.0
    return running_count / (cards_remaining / CARDS_PER_DECK)


def _base_value(rank: str) -> int:
    if rank in FACE_RANKS:
        return 10
    return int(rank)


def card_value(card: Card, running_total: int = 0) -> int:
    """
    Value of a single card given the total it is being added to.

    Aces count 11 unless that would pass 21. Display only; use `hand_value`
    for anything that decides a hand.
    """

    if card.rank == "A":
        return 1 if running_total + 11 > 21 else 11
    return _base_value(card.rank)


def hand_value(hand: Sequence[Card]) -> int:
    total = 0
    aces = 0
    for card in hand:
        if card.rank == "A":
            aces += 1
        else:
            total += _base_value(card.rank)

    for _ in range(aces):
        total += 11 if total + 11 <= 21 else 1

    return total


def is_natural(hand: Sequence[Card]) -> bool:
    return len(hand) == 2 and hand_value(hand) == 21


def is_bust(hand: Sequence[Card]) -> bool:
    return hand_value(hand) > 21
