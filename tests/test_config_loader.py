from decimal import Decimal

import pytest
from pydantic import ValidationError

from takaful_quote.utils.config_loader import QuoteFlowConfig, load_quote_flow_config

_ENV = (
    "CUSTOMER_LOOKUP_ENABLED",
    "ZAIN_TAKAFUL_API_URL",
    "ZAIN_TRAVEL_API_URL",
    "ZAIN_API_SESSION_TOKEN",
    "ZAIN_API_AUTH_TOKEN",
    "WHATSAPP_API_URL",
    "WHATSAPP_PHONE_NUMBER_ID",
    "WHATSAPP_ACCESS_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of these tests
    monkeypatch.setattr("takaful_quote.utils.config_loader.load_dotenv", lambda *a, **k: False)


def test_loads_yaml(tmp_path):
    path = tmp_path / "quote_flow.yml"
    path.write_text(
        "customer_lookup_enabled: true\n"
        "pricing:\n"
        "  vat_rate: '0.05'\n"
        "  installment_months: 6\n"
        "approvals:\n"
        "  simulate: grant\n"
        "  simulate_delay_seconds: 0\n",
        encoding="utf-8",
    )
    config = load_quote_flow_config(path)

    assert config.customer_lookup_enabled is True
    assert config.pricing.vat_rate == Decimal("0.05")
    assert config.pricing.installment_months == 6
    assert config.approvals.simulate == "grant"
    assert config.zain_api.base_url == QuoteFlowConfig().zain_api.base_url


def test_missing_file_gives_defaults(tmp_path):
    config = load_quote_flow_config(tmp_path / "absent.yml")
    assert config == QuoteFlowConfig()
    assert config.customer_lookup_enabled is False
    assert config.approvals.simulate is None


def test_invalid_values_are_rejected(tmp_path):
    path = tmp_path / "bad.yml"
    path.write_text("pricing:\n  vat_rate: 2\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_quote_flow_config(path)

    path.write_text("approvals:\n  simulate: maybe\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_quote_flow_config(path)


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("CUSTOMER_LOOKUP_ENABLED", "yes")
    monkeypatch.setenv("ZAIN_TAKAFUL_API_URL", "https://partner.test/api/")
    monkeypatch.setenv("ZAIN_API_AUTH_TOKEN", "Bearer t")
    monkeypatch.setenv("WHATSAPP_PHONE_NUMBER_ID", "123")
    monkeypatch.setenv("WHATSAPP_ACCESS_TOKEN", "tok")
    monkeypatch.setenv("ZAIN_TRAVEL_API_URL", "")

    config = load_quote_flow_config(tmp_path / "absent.yml")

    assert config.customer_lookup_enabled is True
    assert config.zain_api.base_url == "https://partner.test/api"
    assert config.zain_api.auth_token == "Bearer t"
    assert config.zain_api.travel_base_url == QuoteFlowConfig().zain_api.travel_base_url
    assert config.whatsapp.phone_number_id == "123"
    assert config.whatsapp.access_token == "tok"
