"""
Engine configuration loaded from environment variables (.env supported).
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from constants import (
    AFFORDABILITY_API_TIMEOUT_SECONDS,
    AFFORDABILITY_BACKGROUND_DELAY_SECONDS,
    AFFORDABILITY_BACKGROUND_MAX_ATTEMPTS,
    AFFORDABILITY_LIFETIME_LIMIT,
    AFFORDABILITY_MAX_CONCURRENT,
    AFFORDABILITY_MIN_TIME_SECONDS,
    AFFORDABILITY_SYNC_WAIT_SECONDS,
    DEFAULT_FPL_YEAR,
    DEFAULT_MEMBER_WORKERS,
    QUOTE_CACHE_CAPACITY,
    QUOTE_CACHE_TTL_SECONDS,
    RATE_LIMIT_MAX_CONCURRENT,
    RATE_LIMIT_MAX_RETRIES,
    RATE_LIMIT_MIN_TIME_SECONDS,
    RATE_LIMIT_PRODUCTION_PER_MINUTE,
    RATE_LIMIT_REFRESH_INTERVAL_SECONDS,
    RATE_LIMIT_RETRY_BASE_SECONDS,
    RATE_LIMIT_TRIAL_LIFETIME_CAP,
    RATE_LIMIT_TRIAL_PER_MINUTE,
)

ENV_PRODUCTION = "production"
ENV_TRIAL = "trial"


@dataclass
class EngineConfig:
    """Configuration for the quote engine and its external integrations."""
    environment: str = ENV_PRODUCTION

    # Affordability API
    affordability_api_base_url: str = ""
    affordability_api_key: str = ""
    affordability_api_timeout: float = AFFORDABILITY_API_TIMEOUT_SECONDS

    # External lookups limiter
    rate_limit_reservoir: int = RATE_LIMIT_PRODUCTION_PER_MINUTE
    rate_limit_refresh_interval: float = RATE_LIMIT_REFRESH_INTERVAL_SECONDS
    rate_limit_lifetime_cap: Optional[int] = None
    rate_limit_max_concurrent: int = RATE_LIMIT_MAX_CONCURRENT
    rate_limit_min_time: float = RATE_LIMIT_MIN_TIME_SECONDS
    rate_limit_max_retries: int = RATE_LIMIT_MAX_RETRIES
    rate_limit_retry_base: float = RATE_LIMIT_RETRY_BASE_SECONDS

    # Affordability limiter (lifetime quota)
    affordability_lifetime_limit: int = AFFORDABILITY_LIFETIME_LIMIT
    affordability_max_concurrent: int = AFFORDABILITY_MAX_CONCURRENT
    affordability_min_time: float = AFFORDABILITY_MIN_TIME_SECONDS

    # Affordability lifecycle
    affordability_sync_wait: float = AFFORDABILITY_SYNC_WAIT_SECONDS
    affordability_background_delay: float = AFFORDABILITY_BACKGROUND_DELAY_SECONDS
    affordability_background_max_attempts: int = AFFORDABILITY_BACKGROUND_MAX_ATTEMPTS

    # Quote generation
    quote_cache_ttl: float = QUOTE_CACHE_TTL_SECONDS
    quote_cache_capacity: int = QUOTE_CACHE_CAPACITY
    member_workers: int = DEFAULT_MEMBER_WORKERS
    fpl_year: int = DEFAULT_FPL_YEAR

    @property
    def is_trial(self) -> bool:
        return self.environment == ENV_TRIAL

    @classmethod
    def from_environment(cls) -> "EngineConfig":
        """Load configuration from environment variables."""
        load_dotenv()

        environment = os.getenv("QUOTE_ENV", ENV_PRODUCTION).lower()
        if environment == ENV_TRIAL:
            default_reservoir = RATE_LIMIT_TRIAL_PER_MINUTE
            lifetime_cap = RATE_LIMIT_TRIAL_LIFETIME_CAP
        else:
            default_reservoir = RATE_LIMIT_PRODUCTION_PER_MINUTE
            lifetime_cap = None

        return cls(
            environment=environment,
            affordability_api_base_url=os.getenv("AFFORDABILITY_API_BASE_URL", ""),
            affordability_api_key=os.getenv("AFFORDABILITY_API_KEY", ""),
            affordability_api_timeout=float(os.getenv("AFFORDABILITY_API_TIMEOUT",
                                                      AFFORDABILITY_API_TIMEOUT_SECONDS)),
            rate_limit_reservoir=int(os.getenv("RATE_LIMIT_RESERVOIR", default_reservoir)),
            rate_limit_lifetime_cap=lifetime_cap,
            rate_limit_max_concurrent=int(os.getenv("RATE_LIMIT_MAX_CONCURRENT",
                                                    RATE_LIMIT_MAX_CONCURRENT)),
            rate_limit_min_time=int(os.getenv("RATE_LIMIT_MIN_TIME_MS",
                                              int(RATE_LIMIT_MIN_TIME_SECONDS * 1000))) / 1000,
            rate_limit_max_retries=int(os.getenv("RATE_LIMIT_MAX_RETRIES", RATE_LIMIT_MAX_RETRIES)),
            rate_limit_retry_base=int(os.getenv("RATE_LIMIT_RETRY_DELAY_MS",
                                                int(RATE_LIMIT_RETRY_BASE_SECONDS * 1000))) / 1000,
            affordability_lifetime_limit=int(os.getenv("AFFORDABILITY_LIFETIME_LIMIT",
                                                       AFFORDABILITY_LIFETIME_LIMIT)),
            affordability_sync_wait=float(os.getenv("AFFORDABILITY_SYNC_WAIT_SECONDS",
                                                    AFFORDABILITY_SYNC_WAIT_SECONDS)),
            affordability_background_delay=float(os.getenv("AFFORDABILITY_BACKGROUND_DELAY_SECONDS",
                                                           AFFORDABILITY_BACKGROUND_DELAY_SECONDS)),
            affordability_background_max_attempts=int(os.getenv("AFFORDABILITY_BACKGROUND_MAX_ATTEMPTS",
                                                                AFFORDABILITY_BACKGROUND_MAX_ATTEMPTS)),
            quote_cache_ttl=float(os.getenv("QUOTE_CACHE_TTL_SECONDS", QUOTE_CACHE_TTL_SECONDS)),
            quote_cache_capacity=int(os.getenv("QUOTE_CACHE_CAPACITY", QUOTE_CACHE_CAPACITY)),
            member_workers=int(os.getenv("MEMBER_WORKERS", DEFAULT_MEMBER_WORKERS)),
            fpl_year=int(os.getenv("FPL_YEAR", DEFAULT_FPL_YEAR)),
        )

    def validate(self) -> Tuple[bool, str]:
        """Validate configuration. Returns (is_valid, error_message)."""
        if self.environment not in (ENV_PRODUCTION, ENV_TRIAL):
            return False, f"QUOTE_ENV must be '{ENV_PRODUCTION}' or '{ENV_TRIAL}', got '{self.environment}'"
        if self.rate_limit_reservoir < 1:
            return False, "RATE_LIMIT_RESERVOIR must be at least 1"
        if self.rate_limit_max_concurrent < 1 or self.affordability_max_concurrent < 1:
            return False, "Limiter concurrency must be at least 1"
        if self.affordability_background_max_attempts < 1:
            return False, "AFFORDABILITY_BACKGROUND_MAX_ATTEMPTS must be at least 1"
        if self.member_workers < 1:
            return False, "MEMBER_WORKERS must be at least 1"
        if self.affordability_api_base_url and not self.affordability_api_key:
            return False, "AFFORDABILITY_API_KEY environment variable is not set"
        return True, ""
