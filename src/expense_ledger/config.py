from decimal import Decimal
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    database_url: str = "sqlite+aiosqlite:///./expense_ledger.db"
    database_busy_timeout_seconds: float = 30.0

    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"
    # JSON-lines copy of every log event
    log_file: str | None = None

    # Prometheus textfile-collector output, written after each CLI command
    metrics_textfile: str | None = None

    # CSV import settings
    import_default_savings_balance: Decimal = Decimal("1000")
    import_amount_tolerance: Decimal = Decimal("0.01")
    import_time_tolerance_seconds: int = 60


settings = Settings()
