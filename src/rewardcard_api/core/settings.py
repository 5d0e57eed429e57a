from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./rewardcard.db"
    database_echo: bool = False

    # Stripe configuration
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_price_id_monthly: str = ""
    stripe_price_id_yearly: str = ""

    # Application URLs
    frontend_url: str = "http://localhost:3000"
    api_base_url: str = "http://localhost:8000"

    # Operator endpoints (observability); empty disables the check
    operator_api_key: str = ""

    # Stamp issuance
    stamp_cooldown_seconds: int = 15 * 60
    usage_window_days: int = 30
    stamp_ledger_max_attempts: int = 3
    member_id_prefix: str = "RC"

    # Business onboarding defaults
    default_total_stamps: int = 10
    default_reward: str = "Free Item"
    default_color_class: str = "from-orange-500 to-orange-600"

    @field_validator("stamp_ledger_max_attempts")
    @classmethod
    def _at_least_one_attempt(cls, value: int) -> int:
        return max(1, value)

    @property
    def allowed_price_ids(self) -> set[str]:
        return {
            price_id
            for price_id in (self.stripe_price_id_monthly, self.stripe_price_id_yearly)
            if price_id
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
