import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        default_currency: str,
        default_locale: str,
        page_size: int,
        max_page_size: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.default_currency = default_currency
        self.default_locale = default_locale
        self.page_size = page_size
        self.max_page_size = max_page_size
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _currency_code(raw: str) -> str:
    code = raw.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError(f"LEDGER_DEFAULT_CURRENCY must be a 3-letter code, got {raw!r}")
    return code


def _positive_int(name: str, default: int) -> int:
    value = int(os.getenv(name, str(default)))
    if value < 1:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    database_url = os.getenv(
        "LEDGER_DATABASE_URL", f"sqlite:///{data_dir / 'ledger.db'}"
    )
    max_page_size = _positive_int("LEDGER_MAX_PAGE_SIZE", 100)
    # the default page must itself be a valid request
    page_size = min(_positive_int("LEDGER_PAGE_SIZE", 20), max_page_size)
    return Settings(
        database_url=database_url,
        default_currency=_currency_code(os.getenv("LEDGER_DEFAULT_CURRENCY", "RUB")),
        default_locale=os.getenv("LEDGER_DEFAULT_LOCALE", "ru-RU"),
        page_size=page_size,
        max_page_size=max_page_size,
        log_level=os.getenv("LEDGER_LOG_LEVEL", "INFO").upper(),
    )
