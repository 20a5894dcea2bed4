import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_days: int,
        frontend_origin: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_days = token_max_age_days
        self.frontend_origin = frontend_origin
        self.log_level = log_level

    @property
    def token_max_age_secs(self) -> int:
        return self.token_max_age_days * 24 * 3600


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "Asia/Kolkata")
    secret_key = os.getenv(
        "FINANCE_SECRET_KEY",
        "4f9c2d0b7e51a6f38c0d94e2b17a5c6e9d03f8b2a41c7e6d5f09b3a2c8e71d46",
    )
    token_max_age_days = int(os.getenv("FINANCE_TOKEN_MAX_AGE_DAYS", "7"))
    frontend_origin = os.getenv("FINANCE_FRONTEND_ORIGIN", "http://localhost:3000")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_days=token_max_age_days,
        frontend_origin=frontend_origin,
        log_level=log_level,
    )
