import os
from functools import lru_cache
from pathlib import Path

DEFAULT_VARIANCE_THRESHOLD_PERCENT = 10.0


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        variance_threshold_percent: float,
        cash_account_code: str,
        auto_reports_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.variance_threshold_percent = variance_threshold_percent
        self.cash_account_code = cash_account_code
        self.auto_reports_enabled = auto_reports_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in ("0", "false", "no", "off")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "Asia/Jakarta")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    variance_threshold_percent = float(
        os.getenv(
            "FINANCE_VARIANCE_THRESHOLD_PERCENT",
            str(DEFAULT_VARIANCE_THRESHOLD_PERCENT),
        )
    )
    cash_account_code = os.getenv("FINANCE_CASH_ACCOUNT_CODE", "1001")
    auto_reports_enabled = _env_flag("FINANCE_AUTO_REPORTS", "1")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        variance_threshold_percent=variance_threshold_percent,
        cash_account_code=cash_account_code,
        auto_reports_enabled=auto_reports_enabled,
    )
