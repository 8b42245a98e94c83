from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Deployment settings, read from the environment (and `.env`)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Discord
    discord_token: Optional[str] = Field(default=None, alias="DISCORD_TOKEN")
    command_prefix: str = Field(default="!", alias="COMMAND_PREFIX")
    member_role: str = Field(default="Gamba Bot Member", alias="MEMBER_ROLE")
    admin_role: str = Field(default="Gamba Bot Admin", alias="ADMIN_ROLE")

    # Storage
    db_path: str = Field(default="gamba.db", alias="DB_PATH")

    # Games
    starting_balance: int = Field(default=1000, alias="STARTING_BALANCE")
    dice_low: int = Field(default=1, alias="DICE_LOW")
    dice_high: int = Field(default=100, alias="DICE_HIGH")
    decks_per_shoe: int = Field(default=2, alias="DECKS_PER_SHOE")
    shuffle_threshold: int = Field(default=15, alias="SHUFFLE_THRESHOLD")
    shoe_expiration_seconds: int = Field(default=60 * 60, alias="SHOE_EXPIRATION_SECONDS")

    # Loans: 04:00 UTC is midnight US Eastern (daylight time).
    settlement_hour_utc: int = Field(default=4, alias="SETTLEMENT_HOUR_UTC")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    @field_validator("settlement_hour_utc")
    @classmethod
    def _check_hour(cls, value: int) -> int:
        if not 0 <= value <= 23:
            raise ValueError("SETTLEMENT_HOUR_UTC must be between 0 and 23")
        return value

    @field_validator("decks_per_shoe")
    @classmethod
    def _check_decks(cls, value: int) -> int:
        if value < 1:
            raise ValueError("DECKS_PER_SHOE must be at least 1")
        return value

    @model_validator(mode="after")
    def _check_dice_range(self) -> "Settings":
        if self.dice_low >= self.dice_high:
            raise ValueError("DICE_LOW must be smaller than DICE_HIGH")
        return self


def load_settings(env_file: Optional[str] = ".env") -> Settings:
    """Build `Settings`; invalid values raise `pydantic.ValidationError` (a `ValueError`)."""

    return Settings(_env_file=env_file)
