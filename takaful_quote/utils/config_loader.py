"""
Configuration loader for the quote flow
"""

import logging
import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "quote_flow.yml"


class PricingConfig(BaseModel):
    """VAT and installment settings"""

    vat_rate: Decimal = Field(default=Decimal("0.10"), ge=0, le=1)
    installment_months: int = Field(default=12, ge=1, le=60)
    currency: str = "BHD"


class ApprovalConfig(BaseModel):
    """Exception-approval adjudication"""

    # None: wait for a real decision. "grant" / "reject": resolve automatically (demos).
    simulate: Optional[str] = Field(default=None, pattern="^(grant|reject)$")
    simulate_delay_seconds: float = Field(default=1.2, ge=0.0)
    decided_by: str = "Credit Control"


class ZainApiConfig(BaseModel):
    """Partner endpoints for eligibility, vehicle data and plans"""

    base_url: str = "https://giguatp.prosys.ai/api/v2"
    travel_base_url: str = "https://api.zaininsure.prosys.ai"
    session_token: str = ""
    auth_token: str = ""
    device_id: str = "agent-portal-device-id"
    platform: str = "web"
    timeout_seconds: float = Field(default=20.0, gt=0)


class WhatsAppConfig(BaseModel):
    api_url: str = "https://graph.facebook.com/v17.0"
    phone_number_id: str = ""
    access_token: str = ""
    timeout_seconds: float = Field(default=15.0, gt=0)


class QuoteFlowConfig(BaseModel):
    """Complete quote flow configuration"""

    customer_lookup_enabled: bool = False
    draft_ttl_seconds: int = Field(default=604800, ge=60)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    approvals: ApprovalConfig = Field(default_factory=ApprovalConfig)
    zain_api: ZainApiConfig = Field(default_factory=ZainApiConfig)
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)


def _env_flag(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _apply_env_overrides(config: QuoteFlowConfig) -> QuoteFlowConfig:
    lookup = _env_flag("CUSTOMER_LOOKUP_ENABLED")
    if lookup is not None:
        config.customer_lookup_enabled = lookup

    zain = config.zain_api
    zain.base_url = (os.getenv("ZAIN_TAKAFUL_API_URL") or zain.base_url).rstrip("/")
    zain.travel_base_url = (os.getenv("ZAIN_TRAVEL_API_URL") or zain.travel_base_url).rstrip("/")
    zain.session_token = os.getenv("ZAIN_API_SESSION_TOKEN") or zain.session_token
    zain.auth_token = os.getenv("ZAIN_API_AUTH_TOKEN") or zain.auth_token

    wa = config.whatsapp
    wa.api_url = (os.getenv("WHATSAPP_API_URL") or wa.api_url).rstrip("/")
    wa.phone_number_id = os.getenv("WHATSAPP_PHONE_NUMBER_ID") or wa.phone_number_id
    wa.access_token = os.getenv("WHATSAPP_ACCESS_TOKEN") or wa.access_token
    return config


def load_quote_flow_config(config_path: Optional[Path] = None) -> QuoteFlowConfig:
    """
    Load and validate quote flow configuration from YAML file

    Args:
        config_path: Path to config file. Defaults to config/quote_flow.yml

    Returns:
        Validated QuoteFlowConfig object (defaults when the file is missing)

    Raises:
        ValidationError: If config doesn't match schema
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(os.getenv("QUOTE_FLOW_CONFIG", str(DEFAULT_CONFIG_PATH)))

    config_data = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("Quote flow config not found at %s, using defaults", config_path)

    try:
        config = QuoteFlowConfig(**config_data)
    except ValidationError as e:
        logger.error("Quote flow config validation failed: %s", e)
        raise

    logger.info("Loaded quote flow config from %s", config_path)
    return _apply_env_overrides(config)


@lru_cache(maxsize=1)
def get_quote_flow_config() -> QuoteFlowConfig:
    """Process-wide config, loaded once."""
    return load_quote_flow_config()
