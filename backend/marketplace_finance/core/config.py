# marketplace_finance/core/config.py

from __future__ import annotations

from decimal import Decimal
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

from pydantic_settings import BaseSettings, SettingsConfigDict


def _strip_asyncpg_unsupported_params(url: str) -> str:
    """
    asyncpg does NOT accept sslmode or channel_binding as connect kwargs.
    If these appear in the URL query, SQLAlchemy can end up passing them to
    asyncpg.connect(), causing:
      TypeError: connect() got an unexpected keyword argument 'sslmode'
    """
    parts = urlsplit(url)
    if not parts.query:
        return url

    params = parse_qsl(parts.query, keep_blank_values=True)
    filtered = [(k, v) for (k, v) in params if k not in {"sslmode", "channel_binding"}]
    new_query = urlencode(filtered, doseq=True)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, new_query, parts.fragment))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -----------------------------
    # Environment
    # -----------------------------
    # Use: development | staging | production
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # -----------------------------
    # DB
    # -----------------------------
    DATABASE_URL_ASYNC: str = "sqlite+aiosqlite:///./marketplace_finance.db"

    # -----------------------------
    # Commission
    # -----------------------------
    MIN_COMMISSION: Decimal = Decimal("0.01")

    # -----------------------------
    # Payout queue / batches
    # -----------------------------
    MIN_PAYOUT_AMOUNT: Decimal = Decimal("50.00")
    PAYOUT_MAX_ATTEMPTS: int = 3
    PAYOUT_BATCH_SIZE: int = 25
    PAYOUT_AUTO_BATCH_LIMIT: int = 100

    # -----------------------------
    # Impact analysis thresholds (percent / percentage points)
    # -----------------------------
    IMPACT_TRAILING_DAYS: int = 90
    IMPACT_HIGH_RISK_PCT: Decimal = Decimal("10")
    IMPACT_MEDIUM_RISK_PCT: Decimal = Decimal("3")
    IMPACT_RATE_DELTA_THRESHOLD: Decimal = Decimal("1.0")

    # -----------------------------
    # External collaborators
    # -----------------------------
    ORDER_LEDGER_URL: str = "http://localhost:8001"
    SUPPLIER_DIRECTORY_URL: str = "http://localhost:8002"
    PAYMENT_GATEWAY_URL: str = "http://localhost:8003"
    COLLABORATOR_TIMEOUT_SECONDS: float = 10.0

    # -----------------------------
    # Scheduled payout runs
    # -----------------------------
    PAYOUT_SCHEDULER_ENABLED: bool = False
    PAYOUT_SCHEDULE_DAY_OF_WEEK: str = "fri"
    PAYOUT_SCHEDULE_HOUR: int = 10

    @property
    def DATABASE_URL_ASYNC_CLEAN(self) -> str:
        return _strip_asyncpg_unsupported_params(self.DATABASE_URL_ASYNC)

    def model_post_init(self, __context) -> None:  # pydantic v2 hook
        env = (self.ENVIRONMENT or "").strip().lower()

        # Never run staging/production on the local SQLite fallback.
        if env in {"staging", "production"}:
            if self.DATABASE_URL_ASYNC.startswith("sqlite"):
                raise ValueError("DATABASE_URL_ASYNC must point at PostgreSQL in staging/production.")

        # Light sanity checks (all envs)
        if self.PAYOUT_MAX_ATTEMPTS < 1:
            raise ValueError("PAYOUT_MAX_ATTEMPTS must be at least 1.")
        if self.PAYOUT_BATCH_SIZE < 1:
            raise ValueError("PAYOUT_BATCH_SIZE must be at least 1.")
        if self.MIN_COMMISSION < 0 or self.MIN_PAYOUT_AMOUNT < 0:
            raise ValueError("MIN_COMMISSION and MIN_PAYOUT_AMOUNT must not be negative.")
        if self.IMPACT_MEDIUM_RISK_PCT > self.IMPACT_HIGH_RISK_PCT:
            raise ValueError("IMPACT_MEDIUM_RISK_PCT must not exceed IMPACT_HIGH_RISK_PCT.")


# this must exist for: `from marketplace_finance.core.config import settings`
settings = Settings()
