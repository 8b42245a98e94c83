from __future__ import annotations

from typing import Optional

import discord
from discord.ext import commands

from application.scheduler import DailySettlementScheduler
from application.services import EconomyService, Failure
from domain.errors import FailureReason
from infrastructure.config import Settings
from infrastructure.logging_setup import bind_command_context, get_logger
from interfaces.discord import embeds


log = get_logger(__name__)


def parse_amount(raw: Optional[str]) -> Optional[int]:
    """Parse a chat argument as a whole number of coins, or None."""

    if raw is None:
        return None
    try:
        return int(raw.strip().replace(",", ""))
    except ValueError:
        return None


def _invalid_amount(raw: Optional[str]) -> discord.Embed:
    return embeds.render_failure(
        Failure(
            reason=FailureReason.INVALID_AMOUNT,
            message="Amount must be a whole number.",
            details={"raw": raw},
        )
    )


def _has_role(member: discord.abc.User, role_name: str) -> bool:
    roles = getattr(member, "roles", None) or []
    return any(role.name == role_name for role in roles)


def create_discord_bot(
    service: EconomyService,
    settings: Settings,
    scheduler: Optional[DailySettlementScheduler] = None,
) -> commands.Bot:
    """
    Configure and return a Discord bot that exposes the economy commands:
    balance, dice, blackjack, card counting, loans and the admin ledger tools.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.members = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(
        command_prefix=settings.command_prefix,
        intents=intents,
        help_command=None,
    )

    def is_member(member: discord.abc.User) -> bool:
        return _has_role(member, settings.member_role) or _has_role(member, settings.admin_role)

    def is_admin(member: discord.abc.User) -> bool:
        return _has_role(member, settings.admin_role)

    def admin_only():
        async def predicate(ctx: commands.Context) -> bool:
            if not is_admin(ctx.author):
                raise commands.MissingRole(settings.admin_role)
            return True

        return commands.check(predicate)

    @bot.check
    async def members_only(ctx: commands.Context) -> bool:
        if ctx.author.bot:
            return False
        if not is_member(ctx.author):
            raise commands.MissingRole(settings.member_role)
        bind_command_context(str(ctx.author.id), ctx.command.name if ctx.command else "")
        return True

    @bot.event
    async def on_ready():
        log.info("discord_ready", user=str(bot.user), user_id=bot.user.id)
        if scheduler is not None and not scheduler.running:
            scheduler.start()

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, commands.MissingRole):
            await ctx.reply(
                embed=discord.Embed(
                    title="🚫 No Deal, Friend!",
                    description=f"You need the **{error.missing_role}** role to do business with this goblin!",
                    colour=embeds.RED,
                )
            )
            return
        if isinstance(error, commands.CheckFailure):
            return
        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            usage = f"{settings.command_prefix}{ctx.command.qualified_name} {ctx.command.signature}"
            await ctx.reply(
                embed=discord.Embed(
                    title="📝 Invalid Command Format!",
                    description=f"Listen up! You gotta use: `{usage.strip()}`",
                    colour=embeds.RED,
                )
            )
            return

        original = getattr(error, "original", error)
        log.error(
            "command_failed",
            command=ctx.command.name if ctx.command else None,
            exc_info=original,
        )
        try:
            await ctx.reply(embed=embeds.render_generic_error())
        except discord.DiscordException:
            log.exception("error_reply_failed")

    async def reply(ctx: commands.Context, embed: discord.Embed) -> None:
        try:
            await ctx.reply(embed=embed)
        except discord.HTTPException:
            log.warning("reply_failed_falling_back_to_channel")
            await ctx.send(embed=embed)

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        p = settings.command_prefix
        embed = discord.Embed(
            title="🎰 Goblin's Guide to Getting Rich!",
            description="Welcome to my establishment, friend! Here's what we got on offer:",
            colour=embeds.GREEN,
        )
        embed.add_field(name=f"💰 {p}balance", value="Check your vault.", inline=False)
        embed.add_field(
            name=f"🎲 {p}roll <amount>",
            value=f"Roll {settings.dice_low}-{settings.dice_high} against the house; higher roll wins 2x.",
            inline=False,
        )
        embed.add_field(name=f"🃏 {p}blackjack <amount>", value="Play blackjack against the house.", inline=False)
        embed.add_field(name=f"👆 {p}hit", value="Draw another card.", inline=True)
        embed.add_field(name=f"✋ {p}stand", value="Keep your hand and let the dealer play.", inline=True)
        embed.add_field(
            name=f"🧮 {p}count",
            value="Pay 10% of your bet to peek at the running and true count of your shoe.",
            inline=False,
        )
        embed.add_field(name=f"🏦 {p}loan <amount>", value="Borrow at 18% APR, paid daily.", inline=False)
        embed.add_field(name=f"📊 {p}loanstatus", value="Check your outstanding debts.", inline=False)
        embed.add_field(name=f"💸 {p}payloan <amount>", value="Pay toward your oldest loan.", inline=False)

        if is_admin(ctx.author):
            embed.add_field(name="👑 **ADMIN COMMANDS**", value="━━━━━━━━━━━━━━━━━━━━", inline=False)
            embed.add_field(name=f"💎 {p}give @user <amount>", value="Add Gold Coins to a vault.", inline=True)
            embed.add_field(name=f"📚 {p}setgold @user <amount>", value="Set an exact balance.", inline=True)
            embed.add_field(name=f"✨ {p}forgiveloan @user", value="Clear all of a user's debts.", inline=True)
            embed.add_field(name=f"📊 {p}viewloans", value="View every active loan.", inline=True)

        embed.add_field(
            name="🏦 Loan System:",
            value=(
                "• 0.05% daily interest\n"
                "• Minimum payment: **3%** of balance or **25 coins**\n"
                "• Late fee: **50 Gold Coins** per missed payment"
            ),
            inline=False,
        )
        await reply(ctx, embed)

    @bot.command(name="balance")
    async def balance_cmd(ctx: commands.Context):
        result = service.check_balance(str(ctx.author.id))
        await reply(ctx, embeds.render_balance(result) if result.success else embeds.render_failure(result.failure))

    @bot.command(name="roll")
    async def roll_cmd(ctx: commands.Context, amount: Optional[str] = None):
        bet = parse_amount(amount)
        if bet is None:
            await reply(ctx, _invalid_amount(amount))
            return
        result = service.place_dice_wager(str(ctx.author.id), bet)
        await reply(ctx, embeds.render_roll(result) if result.success else embeds.render_failure(result.failure))

    @bot.command(name="blackjack")
    async def blackjack_cmd(ctx: commands.Context, amount: Optional[str] = None):
        bet = parse_amount(amount)
        if bet is None:
            await reply(ctx, _invalid_amount(amount))
            return
        result = service.start_blackjack(str(ctx.author.id), bet)
        await reply(ctx, embeds.render_hand(result) if result.success else embeds.render_failure(result.failure))

    @bot.command(name="hit")
    async def hit_cmd(ctx: commands.Context):
        result = service.hit(str(ctx.author.id))
        await reply(ctx, embeds.render_hand(result) if result.success else embeds.render_failure(result.failure))

    @bot.command(name="stand")
    async def stand_cmd(ctx: commands.Context):
        result = service.stand(str(ctx.author.id))
        await reply(ctx, embeds.render_hand(result) if result.success else embeds.render_failure(result.failure))

    @bot.command(name="count")
    async def count_cmd(ctx: commands.Context):
        result = service.peek_count(str(ctx.author.id))
        await reply(ctx, embeds.render_count(result) if result.success else embeds.render_failure(result.failure))

    @bot.command(name="loan")
    async def loan_cmd(ctx: commands.Context, amount: Optional[str] = None):
        principal = parse_amount(amount)
        if principal is None:
            await reply(ctx, _invalid_amount(amount))
            return
        result = service.request_loan(str(ctx.author.id), principal)
        await reply(ctx, embeds.render_loan(result) if result.success else embeds.render_failure(result.failure))

    @bot.command(name="loanstatus", aliases=["loans"])
    async def loan_status_cmd(ctx: commands.Context):
        result = service.list_loan_status(str(ctx.author.id))
        await reply(
            ctx,
            embeds.render_loan_status(result) if result.success else embeds.render_failure(result.failure),
        )

    @bot.command(name="payloan", aliases=["paydebt"])
    async def pay_loan_cmd(ctx: commands.Context, amount: Optional[str] = None):
        payment = parse_amount(amount)
        if payment is None:
            await reply(ctx, _invalid_amount(amount))
            return
        result = service.make_loan_payment(str(ctx.author.id), payment)
        await reply(ctx, embeds.render_payment(result) if result.success else embeds.render_failure(result.failure))

    @bot.command(name="give", aliases=["addgold"])
    @admin_only()
    async def give_cmd(ctx: commands.Context, target: discord.Member, amount: Optional[str] = None):
        value = parse_amount(amount)
        if value is None:
            await reply(ctx, _invalid_amount(amount))
            return
        result = service.admin_credit(str(target.id), value)
        if not result.success:
            await reply(ctx, embeds.render_failure(result.failure))
            return
        await reply(ctx, embeds.render_admin_balance(result, target.mention))

    @bot.command(name="setgold", aliases=["setbalance"])
    @admin_only()
    async def set_gold_cmd(ctx: commands.Context, target: discord.Member, amount: Optional[str] = None):
        value = parse_amount(amount)
        if value is None:
            await reply(ctx, _invalid_amount(amount))
            return
        result = service.admin_set_balance(str(target.id), value)
        if not result.success:
            await reply(ctx, embeds.render_failure(result.failure))
            return
        await reply(ctx, embeds.render_admin_balance(result, target.mention))

    @bot.command(name="forgiveloan")
    @admin_only()
    async def forgive_loan_cmd(ctx: commands.Context, target: discord.Member):
        result = service.admin_forgive_loan(str(target.id))
        if not result.success:
            await reply(ctx, embeds.render_failure(result.failure))
            return
        await reply(ctx, embeds.render_forgiveness(result, target.mention))

    @bot.command(name="viewloans", aliases=["allloans"])
    @admin_only()
    async def view_loans_cmd(ctx: commands.Context):
        result = service.admin_list_all_loans()
        if not result.success:
            await reply(ctx, embeds.render_failure(result.failure))
            return

        pages = embeds.render_all_loans(result)
        await reply(ctx, pages[0])
        for page in pages[1:]:
            await ctx.send(embed=page)

    return bot
