from __future__ import annotations

from typing import Iterable, List, Sequence

import discord

from application.blackjack import HandOutcome, HandStatus
from application.services import (
    BalanceResult,
    CountResult,
    Failure,
    ForgiveResult,
    HandResult,
    LoanLine,
    LoanResult,
    LoanStatusResult,
    PaymentResult,
    RollResult,
)
from domain.errors import FailureReason
from domain.models import Card

GOLD = discord.Colour.gold()
RED = discord.Colour.red()
GREEN = discord.Colour.green()
BLUE = discord.Colour.blue()
ORANGE = discord.Colour.orange()

LOANS_PER_EMBED = 5

_FAILURE_TITLES = {
    FailureReason.INVALID_AMOUNT: "📝 Invalid Amount!",
    FailureReason.INVALID_BET: "🎲 Invalid Wager, Friend!",
    FailureReason.INSUFFICIENT_FUNDS: "💸 Insufficient Funds!",
    FailureReason.GAME_ALREADY_ACTIVE: "🃏 Game Already in Progress!",
    FailureReason.NO_ACTIVE_GAME: "🃏 No Active Game!",
    FailureReason.GAME_FINISHED: "🃏 Game Already Finished!",
    FailureReason.ALREADY_PEEKED: "🧮 Count Already Requested",
    FailureReason.EXISTING_DEBT: "🚫 Loan Denied!",
    FailureReason.INSUFFICIENT_COLLATERAL: "🚫 Loan Denied!",
    FailureReason.NO_DEBT: "✨ No Debts!",
    FailureReason.PERSISTENCE_FAILURE: "🚫 Transaction Failed!",
}


def _round2(value: float) -> float:
    return round(value * 100) / 100


def format_hand(hand: Sequence[Card], hide_first: bool = False) -> str:
    cards = " ".join(str(card) for card in hand)
    if hide_first:
        return f"🃏 {cards}"
    return cards


def failure_description(failure: Failure) -> str:
    details = failure.details
    reason = failure.reason

    if reason in (FailureReason.INVALID_AMOUNT, FailureReason.INVALID_BET):
        return "You gotta put down a real, positive number of coins, friend!"
    if reason is FailureReason.INSUFFICIENT_FUNDS:
        return (
            f"That takes **{details.get('required')}** Gold Coins but you only got "
            f"**{details.get('available')}** in your vault! Can't spend what you don't have, capisce?"
        )
    if reason is FailureReason.GAME_ALREADY_ACTIVE:
        return "You already got cards on the table! Finish with `!hit` or `!stand` first."
    if reason is FailureReason.NO_ACTIVE_GAME:
        return "You don't have any cards on the table, friend! Start with `!blackjack <amount>`."
    if reason is FailureReason.GAME_FINISHED:
        return "This hand is already over! Start a new game with `!blackjack <amount>`."
    if reason is FailureReason.ALREADY_PEEKED:
        return "You already paid for the count this hand. Finish the round for another peek."
    if reason is FailureReason.EXISTING_DEBT:
        if details.get("loan_count", 0) > 1:
            return (
                f"You already got **{details['loan_count']}** active loans! "
                "Pay off your current debts before asking for more."
            )
        return (
            f"You're already in hock for **{round(details.get('total_debt', 0))}** Gold Coins! "
            "Settle up before asking for more."
        )
    if reason is FailureReason.INSUFFICIENT_COLLATERAL:
        return (
            f"You want **{details.get('amount')}** coins but you only got **{details.get('balance')}**! "
            "That's not enough collateral for me. Build up some savings first."
        )
    if reason is FailureReason.NO_DEBT:
        return "You don't owe me anything, friend! Your slate is clean."
    return "Something went wrong with the books. Nothing was changed; try again in a moment."


def render_failure(failure: Failure) -> discord.Embed:
    colour = ORANGE if failure.reason is FailureReason.ALREADY_PEEKED else RED
    if failure.reason is FailureReason.NO_DEBT:
        colour = GREEN
    return discord.Embed(
        title=_FAILURE_TITLES.get(failure.reason, "🚫 Request Denied"),
        description=failure_description(failure),
        colour=colour,
    )


def render_generic_error() -> discord.Embed:
    return discord.Embed(
        title="🚫 Oops! Something Went Wrong!",
        description="Sorry friend, my goblin brain had a hiccup! Try that command again, capisce?",
        colour=RED,
    )


def render_balance(result: BalanceResult) -> discord.Embed:
    return discord.Embed(
        title="💰 Your Vault Status",
        description=f"You got **{result.balance}** Gold Coins stashed away, friend!",
        colour=GOLD,
    )


def render_admin_balance(result: BalanceResult, target: str) -> discord.Embed:
    previous = result.previous_balance or 0
    return discord.Embed(
        title="📚 Ledger Updated!",
        description=(
            f"{target}'s vault now holds **{result.balance}** Gold Coins.\n\n"
            f"• Previous balance: **{previous}** coins\n"
            f"• Net change: **{result.balance - previous}** coins"
        ),
        colour=BLUE,
    )


def render_roll(result: RollResult) -> discord.Embed:
    outcome = result.outcome
    rolls = f"**Your roll:** {outcome.player_roll}\n**My roll:** {outcome.house_roll}\n\n"
    if outcome.won:
        return discord.Embed(
            title="🎉 Bah! Lucky Shot, Friend!",
            description=(
                f"{rolls}You won **{outcome.net_change * 2}** Gold Coins!\n\n"
                f"💰 Your vault now holds: **{result.balance}** Gold Coins"
            ),
            colour=GREEN,
        )
    return discord.Embed(
        title="😈 Hah! Better Luck Next Time!",
        description=(
            f"{rolls}Those **{-outcome.net_change}** Gold Coins are mine now!\n\n"
            f"💸 Your vault now holds: **{result.balance}** Gold Coins"
        ),
        colour=RED,
    )


_HAND_TITLES = {
    HandStatus.IN_PROGRESS: "🃏 Cards on the Table!",
    HandStatus.BLACKJACK: "🃏 BLACKJACK! Outstanding!",
    HandStatus.PUSH: "🤝 Push - It's a Tie!",
    HandStatus.WIN: "🎉 Beat the House!",
    HandStatus.LOSE: "😈 House Advantage!",
    HandStatus.BUST: "💥 BUST! Over Twenty-One!",
}

_HAND_COLOURS = {
    HandStatus.IN_PROGRESS: BLUE,
    HandStatus.BLACKJACK: GREEN,
    HandStatus.PUSH: GOLD,
    HandStatus.WIN: GREEN,
    HandStatus.LOSE: RED,
    HandStatus.BUST: RED,
}


def _hand_description(outcome: HandOutcome) -> str:
    status = outcome.status
    if status is HandStatus.IN_PROGRESS:
        if outcome.drawn_card is not None:
            return f"You drew **{outcome.drawn_card}**!\n\n**Your total:** {outcome.player_total}"
        return f"**Bet:** {outcome.wager} Gold Coins\n**Your balance:** {outcome.balance} Gold Coins"
    if status is HandStatus.BLACKJACK:
        return (
            f"A natural twenty-one! That's **{outcome.net_change}** Gold Coins profit at 3:2.\n\n"
            f"💰 Your vault shows: **{outcome.balance}** Gold Coins"
        )
    if status is HandStatus.PUSH:
        return (
            f"We both got **{outcome.player_total}**. Your **{outcome.wager}** Gold Coins stay put.\n\n"
            f"💰 Vault balance: **{outcome.balance}** Gold Coins"
        )
    if status is HandStatus.WIN:
        result = f"{outcome.player_total} (dealer busted!)" if outcome.dealer_busted else outcome.player_total
        return (
            f"Your **{result}** beats my **{outcome.dealer_total}**! "
            f"You win **{outcome.net_change}** Gold Coins.\n\n"
            f"💰 Your vault now holds: **{outcome.balance}** Gold Coins"
        )
    if status is HandStatus.LOSE:
        return (
            f"My **{outcome.dealer_total}** beats your **{outcome.player_total}**! "
            f"Those **{outcome.wager}** Gold Coins are mine.\n\n"
            f"💸 Your vault balance: **{outcome.balance}** Gold Coins"
        )
    return (
        f"Your hand totaled **{outcome.player_total}**, over twenty-one!\n\n"
        f"💸 Those **{outcome.wager}** Gold Coins are mine. Balance: **{outcome.balance}** Gold Coins"
    )


def render_hand(result: HandResult) -> discord.Embed:
    outcome = result.outcome
    embed = discord.Embed(
        title=_HAND_TITLES[outcome.status],
        description=_hand_description(outcome),
        colour=_HAND_COLOURS[outcome.status],
    )

    player_value = f"{format_hand(outcome.player_hand)} = **{outcome.player_total}**"
    if outcome.status is HandStatus.BUST:
        player_value += " (BUST!)"
    embed.add_field(name="🃏 Your Hand", value=player_value, inline=True)

    if outcome.status in (HandStatus.IN_PROGRESS, HandStatus.BUST):
        dealer_value = f"{format_hand(outcome.dealer_visible, hide_first=True)} = **{outcome.dealer_up_value}+**"
    else:
        dealer_value = f"{format_hand(outcome.dealer_hand)} = **{outcome.dealer_total}**"
        if outcome.dealer_busted:
            dealer_value += " (BUST!)"
    embed.add_field(name="🎰 Dealer Hand", value=dealer_value, inline=True)

    if not outcome.finished:
        embed.add_field(
            name="🎮 Your Move",
            value="Use `!hit` to draw another card or `!stand` to keep your current hand!",
            inline=False,
        )
    if outcome.reshuffled:
        embed.add_field(
            name="Important: Fresh Shoe",
            value="Your personal shoe was reshuffled. The running count has been reset.",
            inline=False,
        )
    return embed


def render_count(result: CountResult) -> discord.Embed:
    peek = result.peek
    displayed_true_count = _round2(peek.true_count) or 0
    embed = discord.Embed(
        title="🧮 Shoe Count",
        description=f"Cost deducted: **{peek.cost}** Gold Coins\nNew balance: **{peek.balance}** Gold Coins",
        colour=ORANGE,
    )
    embed.add_field(name="Running Count", value=str(peek.running_count), inline=True)
    embed.add_field(name="True Count", value=str(displayed_true_count), inline=True)
    embed.add_field(name="Cards Remaining", value=str(peek.cards_remaining), inline=True)
    if peek.reshuffled:
        embed.add_field(
            name="Important",
            value="Your personal shoe reshuffled. Counts have been reset.",
            inline=False,
        )
    return embed


def render_loan(result: LoanResult) -> discord.Embed:
    loan = result.loan
    return discord.Embed(
        title="🏦 Loan Approved, Friend!",
        description=(
            f"I've fronted you **{loan.principal}** Gold Coins at **18% APR** (0.05% daily).\n\n"
            "📊 **Loan Details:**\n"
            f"• Principal: **{loan.principal}** Gold Coins\n"
            "• Minimum Payment: **3%** of balance or **25** coins daily\n"
            f"• First Payment Due: **{loan.next_payment_due:%Y-%m-%d %H:%M} UTC**\n\n"
            f"💰 Your vault now holds: **{result.balance}** Gold Coins"
        ),
        colour=GREEN,
    )


def _loan_line(line: LoanLine, label: str) -> str:
    loan = line.loan
    text = f"**{label}**\n• Balance: **{_round2(loan.balance)}** Gold Coins\n"
    if line.borrower_balance is not None:
        text += f"• User's Gold: **{line.borrower_balance}** Gold Coins\n"
    text += (
        f"• Min Payment: **{line.minimum_payment}** Gold Coins\n"
        f"• Next Due: **{loan.next_payment_due:%Y-%m-%d}**\n"
        f"• Missed Payments: **{loan.missed_payments}**\n\n"
    )
    return text


def render_loan_status(result: LoanStatusResult) -> discord.Embed:
    if not result.loans:
        return discord.Embed(
            title="✨ Debt Free!",
            description="You don't owe me a single Gold Coin, friend! Want a loan? Use `!loan <amount>`.",
            colour=GREEN,
        )

    description = "Here's what you owe me, friend:\n\n"
    for index, line in enumerate(result.loans, start=1):
        description += _loan_line(line, f"Loan #{index}:")
    description += f"💰 **Total Debt:** **{_round2(result.total_debt)}** Gold Coins"

    embed = discord.Embed(title="📋 Your Outstanding Debts", description=description, colour=GOLD)
    embed.set_footer(text="Use !payloan <amount> to make a payment!")
    return embed


def render_payment(result: PaymentResult) -> discord.Embed:
    payment = result.payment
    if result.paid_off:
        return discord.Embed(
            title="🎉 DEBT FREE!",
            description=(
                f"You've paid off your entire loan with **{payment.payment}** Gold Coins!\n\n"
                f"• Your Vault: **{result.balance}** Gold Coins\n• Status: **DEBT FREE!**"
            ),
            colour=GREEN,
        )
    return discord.Embed(
        title="💰 Payment Received!",
        description=(
            f"**{payment.payment}** Gold Coins applied to your loan!\n\n"
            f"• Remaining Balance: **{_round2(payment.new_balance)}** Gold Coins\n"
            f"• Your Vault: **{result.balance}** Gold Coins"
        ),
        colour=GREEN,
    )


def render_forgiveness(result: ForgiveResult, target: str) -> discord.Embed:
    embed = discord.Embed(
        title="✨ Debt Forgiven!",
        description=(
            f"Wiped the slate clean for {target}!\n\n"
            f"• Total Amount: **{_round2(result.total_forgiven)}** Gold Coins\n"
            f"• Loans Cleared: **{result.loans_forgiven}**"
        ),
        colour=GREEN,
    )
    embed.set_footer(text="Remember: With great power comes great responsibility!")
    return embed


def _chunks(lines: Sequence[LoanLine], size: int) -> Iterable[Sequence[LoanLine]]:
    for start in range(0, len(lines), size):
        yield lines[start:start + size]


def render_all_loans(result: LoanStatusResult) -> List[discord.Embed]:
    if not result.loans:
        return [
            discord.Embed(
                title="📊 No Active Loans!",
                description="No one owes me anything right now, boss! Everyone's got clean slates.",
                colour=GREEN,
            )
        ]

    total = len(result.loans)
    embeds = []
    for page, chunk in enumerate(_chunks(result.loans, LOANS_PER_EMBED)):
        description = f"Found **{total}** active loans, boss!\n\n" if page == 0 else ""
        for line in chunk:
            description += _loan_line(line, f"Loan #{line.loan.id} - <@{line.loan.account_id}>")
        if page == 0:
            description += f"💰 **Total Outstanding Debt:** **{_round2(result.total_debt)}** Gold Coins"

        first = page * LOANS_PER_EMBED + 1
        last = first + len(chunk) - 1
        embed = discord.Embed(
            title="📊 All Active Loans" if page == 0 else "📊 All Active Loans (continued)",
            description=description,
            colour=GOLD,
        )
        embed.set_footer(text=f"Showing {first}-{last} of {total} loans")
        embeds.append(embed)
    return embeds
