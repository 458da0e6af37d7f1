"""Pytest fixtures for the quick quote flow: in-memory stores and mock partners."""

import pytest

from takaful_quote.api.dependencies import build_session_manager
from takaful_quote.database.postgres import PostgresDB
from takaful_quote.database.redis import RedisCache
from takaful_quote.integrations.clients.mocks.discounts import StaffDiscountAuthority
from takaful_quote.integrations.clients.mocks.whatsapp import MockLinkDispatcher
from takaful_quote.integrations.clients.mocks.zain_takaful import MockZainTakafulClient
from takaful_quote.quote.persistence import DraftHandle
from takaful_quote.utils.config_loader import QuoteFlowConfig


@pytest.fixture
def db():
    """In-memory PostgresDB stub for tests."""
    return PostgresDB()


@pytest.fixture
def cache():
    return RedisCache()


@pytest.fixture
def zain():
    return MockZainTakafulClient()


@pytest.fixture
def dispatcher():
    return MockLinkDispatcher()


@pytest.fixture
def authority():
    return StaffDiscountAuthority()


@pytest.fixture
def manager(db, cache, zain, dispatcher, authority):
    return build_session_manager(
        QuoteFlowConfig(),
        draft_store=db,
        session_cache=cache,
        zain_client=zain,
        dispatcher=dispatcher,
        discount_authority=authority,
    )


@pytest.fixture
def controller(manager):
    handle = DraftHandle("sess-1", agent_id="agent-1", agent_name="Agent One")
    return manager.services.controller_for(handle)
