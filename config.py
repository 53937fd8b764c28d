import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        statement_retention_months: int,
        default_horizon_days: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.statement_retention_months = statement_retention_months
        self.default_horizon_days = default_horizon_days


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CASHFLOW_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "cashflow.db"
    database_url = os.getenv("CASHFLOW_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("CASHFLOW_TIMEZONE", "America/Sao_Paulo")
    retention_months = int(os.getenv("CASHFLOW_STATEMENT_RETENTION_MONTHS", "12"))
    if retention_months < 1:
        raise ValueError("CASHFLOW_STATEMENT_RETENTION_MONTHS must be >= 1")
    default_horizon_days = int(os.getenv("CASHFLOW_DEFAULT_HORIZON_DAYS", "30"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        statement_retention_months=retention_months,
        default_horizon_days=default_horizon_days,
    )
