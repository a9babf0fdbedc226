import pytest

from config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("LEDGER_DATA_DIR", str(tmp_path))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults(tmp_path) -> None:
    settings = get_settings()

    assert settings.database_url == f"sqlite:///{tmp_path.resolve() / 'ledger.db'}"
    assert settings.default_currency == "RUB"
    assert settings.default_locale == "ru-RU"
    assert (settings.page_size, settings.max_page_size) == (20, 100)
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("LEDGER_DEFAULT_CURRENCY", " usd ")
    monkeypatch.setenv("LEDGER_PAGE_SIZE", "500")
    monkeypatch.setenv("LEDGER_MAX_PAGE_SIZE", "50")
    monkeypatch.setenv("LEDGER_LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.default_currency == "USD"
    assert settings.page_size == 50
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("LEDGER_DEFAULT_CURRENCY", "RUBLE"),
        ("LEDGER_DEFAULT_CURRENCY", "R1B"),
        ("LEDGER_PAGE_SIZE", "0"),
        ("LEDGER_MAX_PAGE_SIZE", "-3"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        get_settings()
