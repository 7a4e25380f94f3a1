"""
Runtime settings.

Values are read from the environment, optionally seeded from a `.env` file
in the project root. Breaker threshold, breaker cooldown and the backup
recovery window are fixed constants and intentionally not configurable.

Environment variables:
- SUPABASE_URL / SUPABASE_KEY: authoritative store (required when the client is built)
- AIRTABLE_API_KEY / AIRTABLE_BASE_ID: external sync target
- AIRTABLE_TABLE: registrations table (default "All Players by Year")
- AIRTABLE_DONATIONS_TABLE: donations table (default "Donations")
- ALERT_WEBHOOK_URL: where data-loss alerts are posted (optional)
- RETRY_MAX_ATTEMPTS / RETRY_BASE_DELAY_MS: resilient executor policy
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

BREAKER_FAILURE_THRESHOLD: int = 5
BREAKER_COOLDOWN_SECONDS: float = 60.0

EXTERNAL_SYNC_BREAKER: str = "external-sync"

# Donation product ids sold alongside registrations, with their fixed amounts.
DEFAULT_DONATION_PRODUCTS: Mapping[str, Decimal] = {
    "c8faba52-947c-4c0e-ae02-58406cfe5202": Decimal("10"),
    "80e47dc3-91ee-4b47-ad73-8c17dff81989": Decimal("20"),
    "ff86a5c7-c653-4f0e-b8b0-3b0fa3b80143": Decimal("50"),
    "9e1f3628-67c3-467e-bb99-91611426f0dc": Decimal("100"),
}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}")


@dataclass(frozen=True, slots=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    airtable_api_key: Optional[str] = None
    airtable_base_id: Optional[str] = None
    airtable_table: str = "All Players by Year"
    airtable_donations_table: str = "Donations"
    alert_webhook_url: Optional[str] = None
    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    donation_products: Mapping[str, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_DONATION_PRODUCTS)
    )

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_KEY"),
            airtable_api_key=os.getenv("AIRTABLE_API_KEY"),
            airtable_base_id=os.getenv("AIRTABLE_BASE_ID"),
            airtable_table=os.getenv("AIRTABLE_TABLE", "All Players by Year"),
            airtable_donations_table=os.getenv("AIRTABLE_DONATIONS_TABLE", "Donations"),
            alert_webhook_url=os.getenv("ALERT_WEBHOOK_URL") or None,
            retry_max_attempts=_int_env("RETRY_MAX_ATTEMPTS", 3),
            retry_base_delay_ms=_int_env("RETRY_BASE_DELAY_MS", 1000),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


__all__ = [
    "BREAKER_COOLDOWN_SECONDS",
    "BREAKER_FAILURE_THRESHOLD",
    "DEFAULT_DONATION_PRODUCTS",
    "EXTERNAL_SYNC_BREAKER",
    "Settings",
    "get_settings",
]
