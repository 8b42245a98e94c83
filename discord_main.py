import asyncio

from dotenv import load_dotenv

from application.blackjack import BlackjackSessionManager
from application.scheduler import DailySettlementScheduler
from application.services import EconomyService
from infrastructure.config import load_settings
from infrastructure.db.ledger_repository_sqlite import SqliteLedgerRepository
from infrastructure.logging_setup import configure_logging, get_logger
from interfaces.discord.handlers import create_discord_bot


load_dotenv()

log = get_logger(__name__)


async def run() -> None:
    settings = load_settings()
    configure_logging(settings.log_level, settings.log_json)

    if not settings.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    ledger = SqliteLedgerRepository(settings.db_path)
    blackjack = BlackjackSessionManager(
        ledger,
        decks_per_shoe=settings.decks_per_shoe,
        shuffle_threshold=settings.shuffle_threshold,
        shoe_expiration_seconds=settings.shoe_expiration_seconds,
    )
    service = EconomyService(
        ledger,
        blackjack=blackjack,
        starting_balance=settings.starting_balance,
        dice_low=settings.dice_low,
        dice_high=settings.dice_high,
        cutoff_hour=settings.settlement_hour_utc,
    )
    scheduler = DailySettlementScheduler(ledger, hour=settings.settlement_hour_utc)

    bot = create_discord_bot(service, settings, scheduler)
    try:
        async with bot:
            await bot.start(settings.discord_token)
    finally:
        await scheduler.stop()
        log.info("bot_stopped")


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        log.info("shutdown_requested")


if __name__ == "__main__":
    main()
