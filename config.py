import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_company_id: int,
        budget_tolerance_cents: int,
        read_retry_attempts: int,
        read_retry_backoff_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_company_id = default_company_id
        self.budget_tolerance_cents = budget_tolerance_cents
        self.read_retry_attempts = read_retry_attempts
        self.read_retry_backoff_secs = read_retry_backoff_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _default_database_url() -> str:
    url = os.getenv("FINANCE_DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{_ensure_data_dir() / 'finance.db'}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings(
        database_url=_default_database_url(),
        timezone=os.getenv("FINANCE_TIMEZONE", "UTC"),
        default_company_id=int(os.getenv("FINANCE_DEFAULT_COMPANY_ID", "1")),
        # 0.01 in the budget currency
        budget_tolerance_cents=int(os.getenv("FINANCE_BUDGET_TOLERANCE_CENTS", "1")),
        read_retry_attempts=int(os.getenv("FINANCE_READ_RETRY_ATTEMPTS", "3")),
        read_retry_backoff_secs=float(
            os.getenv("FINANCE_READ_RETRY_BACKOFF_SECS", "0.1")
        ),
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO").upper(),
    )
