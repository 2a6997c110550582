import os
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        max_projection_days: int,
        log_level: str,
        default_currency: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.max_projection_days = max_projection_days
        self.log_level = log_level
        self.default_currency = default_currency


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGERCAST_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledgercast.db"
    database_url = os.getenv("LEDGERCAST_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGERCAST_TIMEZONE", "UTC")
    max_projection_days = int(os.getenv("LEDGERCAST_MAX_PROJECTION_DAYS", "3660"))
    log_level = os.getenv("LEDGERCAST_LOG_LEVEL", "INFO").upper()
    default_currency = os.getenv("LEDGERCAST_DEFAULT_CURRENCY", "USD").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        max_projection_days=max_projection_days,
        log_level=log_level,
        default_currency=default_currency,
    )


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()
