import os
import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status, Request
from dotenv import load_dotenv

from takaful_quote.error_handler import ErrorHandler
from takaful_quote.integrations.clients.mocks.customers import MockCustomerDirectory
from takaful_quote.integrations.clients.mocks.discounts import StaffDiscountAuthority
from takaful_quote.quote.approvals import ApprovalDesk
from takaful_quote.quote.discounts import DiscountValidator
from takaful_quote.quote.eligibility import EligibilityResolver
from takaful_quote.quote.persistence import DraftPersistenceGateway
from takaful_quote.quote.plans import PlanSource
from takaful_quote.quote.session import QuoteServices, QuoteSessionManager
from takaful_quote.utils.config_loader import QuoteFlowConfig

load_dotenv()

logger = logging.getLogger(__name__)

_ALLOWLIST_PATHS = {
    "/",
    "/health",
    "/docs",
    "/docs/oauth2-redirect",
    "/openapi.json",
    "/redoc",
}


def get_api_keys():
    keys = os.getenv("API_KEYS", "")
    return [k.strip() for k in keys.split(",") if k.strip()]


async def api_key_protection(
    request: Request = None,  # keep Request type so FastAPI injects it; default None for direct calls/tests
    x_api_key: str = Header(default=None, alias="X-API-KEY"),
):
    debug = os.getenv("API_KEY_DEBUG", "").lower() in ("1", "true", "yes")
    path = request.url.path if request is not None else "<no-request>"
    if debug:
        logger.info("API key check: path=%s header_present=%s", path, bool(x_api_key))

    if request is not None and request.url.path in _ALLOWLIST_PATHS:
        return

    valid_keys = get_api_keys()
    candidate = (x_api_key or "").strip()

    ok = bool(candidate) and any(hmac.compare_digest(candidate, k) for k in valid_keys)
    if debug:
        logger.info("API key check: path=%s ok=%s configured_keys=%d", path, ok, len(valid_keys))

    if not ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API Key",
        )


# ============================================================================
# STORAGE
# ============================================================================

def build_draft_store():
    """Postgres when DATABASE_URL is set and enabled, else the in-memory store."""
    if os.getenv("DATABASE_URL") and os.getenv("USE_POSTGRES_DRAFTS", "").lower() in ("1", "true", "yes"):
        from takaful_quote.database.postgres_real import PostgresDB

        db = PostgresDB(connection_string=os.environ["DATABASE_URL"])
    else:
        from takaful_quote.database.postgres import PostgresDB

        db = PostgresDB()
    db.create_tables()
    return db


def build_session_cache(config: QuoteFlowConfig):
    if os.getenv("REDIS_URL"):
        from takaful_quote.database.redis_real import RedisCache

        return RedisCache(url=os.environ["REDIS_URL"], draft_ttl=config.draft_ttl_seconds)

    from takaful_quote.database.redis import RedisCache

    return RedisCache(draft_ttl=config.draft_ttl_seconds)


# ============================================================================
# INTEGRATIONS (the one place that picks mock vs real clients)
# ============================================================================

def integrations_mode() -> str:
    mode = os.getenv("INTEGRATIONS_MODE", "").strip().lower()
    if mode in ("mock", "real"):
        return mode
    return "real" if os.getenv("ZAIN_TAKAFUL_API_URL") else "mock"


def build_partner_clients(config: QuoteFlowConfig, mode: Optional[str] = None):
    """Returns (zain_client, link_dispatcher)."""
    mode = mode or integrations_mode()
    if mode == "real":
        from takaful_quote.integrations.clients.real_http.whatsapp import WhatsAppLinkDispatcher
        from takaful_quote.integrations.clients.real_http.zain_takaful import ZainTakafulClient

        logger.info("Using real Zain Takaful and WhatsApp clients")
        return ZainTakafulClient(config.zain_api), WhatsAppLinkDispatcher(config.whatsapp)

    from takaful_quote.integrations.clients.mocks.whatsapp import MockLinkDispatcher
    from takaful_quote.integrations.clients.mocks.zain_takaful import MockZainTakafulClient

    logger.info("Using mock Zain Takaful and WhatsApp clients")
    return MockZainTakafulClient(), MockLinkDispatcher()


def build_session_manager(
    config: QuoteFlowConfig,
    *,
    draft_store=None,
    session_cache=None,
    zain_client=None,
    dispatcher=None,
    discount_authority=None,
    customer_directory=None,
) -> QuoteSessionManager:
    """Wire every collaborator for the quote flow. Arguments override the defaults (tests)."""
    draft_store = draft_store if draft_store is not None else build_draft_store()
    session_cache = session_cache if session_cache is not None else build_session_cache(config)
    if zain_client is None or dispatcher is None:
        default_zain, default_dispatcher = build_partner_clients(config)
        zain_client = zain_client or default_zain
        dispatcher = dispatcher or default_dispatcher

    error_handler = ErrorHandler()
    gateway = DraftPersistenceGateway(draft_store, session_cache, draft_ttl=config.draft_ttl_seconds)
    services = QuoteServices(
        gateway=gateway,
        eligibility=EligibilityResolver(
            zain_client,
            customer_directory or MockCustomerDirectory(),
            customer_lookup_enabled=config.customer_lookup_enabled,
        ),
        vehicle_client=zain_client,
        registry_client=zain_client,
        plan_source=PlanSource(zain_client, vat_rate=config.pricing.vat_rate, error_handler=error_handler),
        discounts=DiscountValidator(discount_authority or StaffDiscountAuthority()),
        dispatcher=dispatcher,
        approvals=ApprovalDesk(
            draft_store,
            decided_by=config.approvals.decided_by,
            simulate=config.approvals.simulate,
            simulate_delay_seconds=config.approvals.simulate_delay_seconds,
        ),
        vat_rate=config.pricing.vat_rate,
        installment_months=config.pricing.installment_months,
        error_handler=error_handler,
    )
    return QuoteSessionManager(services, session_cache)
