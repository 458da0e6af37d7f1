"""
FastAPI application - Main entry point
"""

from dotenv import load_dotenv

load_dotenv()

import logging
from datetime import datetime

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

import takaful_quote.api.quotes_router as quotes_module
from takaful_quote.api.dependencies import api_key_protection, build_session_manager
from takaful_quote.api.quotes_router import router as quotes_router
from takaful_quote.utils.config_loader import get_quote_flow_config

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Zain Takaful Quick Quote API",
    description="Agent portal quote flow: customer, details, priced plans and payment link",
    version="1.0.0",
    dependencies=[Depends(api_key_protection)],  # protect everything by default
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================

config = get_quote_flow_config()
session_manager = build_session_manager(config)
quotes_module.session_manager = session_manager

app.include_router(quotes_router, prefix="/api/v1")


@app.on_event("shutdown")
async def shutdown_approvals():
    await session_manager.services.approvals.shutdown()


# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {"service": "Zain Takaful Quick Quote API", "status": "healthy", "version": "1.0.0", "timestamp": datetime.now().isoformat()}


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check (Redis session cache)."""
    return {
        "status": "healthy",
        "database": {"redis": session_manager.redis.ping()},
        "customer_lookup_enabled": config.customer_lookup_enabled,
        "timestamp": datetime.now().isoformat(),
    }
