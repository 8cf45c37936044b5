from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    PROJECT_NAME: str = "Perp Trading Simulator"
    API_PREFIX: str = "/api"

    # Database
    # SQLite file for local runs; point at PostgreSQL in deployed environments
    DATABASE_URL: str = "sqlite:///./perpsim.db"

    # Environment ("local", "test" or "production")
    ENVIRONMENT: str = "local"

    # Security
    # SECRET_KEY signs bearer tokens handed out to the UI.
    # Generate with: python -c "import secrets; print(secrets.token_urlsafe(32))"
    SECRET_KEY: Optional[str] = None

    # Comma-separated list of browser origins allowed by CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173"

    # Market data providers
    BINANCE_BASE_URL: str = "https://api.binance.com/api/v3"
    COINGECKO_BASE_URL: str = "https://api.coingecko.com/api/v3"
    COINGECKO_API_KEY: Optional[str] = None
    MARKET_DATA_TIMEOUT: float = 10.0

    # Cache lifetimes (seconds)
    PRICE_TTL_SECONDS: int = 5
    BATCH_PRICE_TTL_SECONDS: int = 10
    CANDLE_TTL_SECONDS: int = 30
    TOKEN_LIST_TTL_SECONDS: int = 60

    # Automation scheduler
    RUN_AGENT_SCHEDULER: bool = True
    AGENT_SCAN_INTERVAL_SECONDS: float = 30.0
    AGENT_EXIT_CHECK_INTERVAL_SECONDS: float = 5.0

    # Calendar day boundaries for daily snapshots and "today" PnL
    REPORTING_TIMEZONE: str = "UTC"

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra environment variables

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()

# Validate SECRET_KEY is set outside of tests
if not settings.SECRET_KEY:
    import warnings
    import os
    if settings.ENVIRONMENT != "test" and os.getenv("ENVIRONMENT") != "test":
        warnings.warn(
            "SECRET_KEY is not set. Bearer tokens cannot be verified until it is configured. "
            "Generate with: python -c 'import secrets; print(secrets.token_urlsafe(32))'",
            UserWarning
        )
