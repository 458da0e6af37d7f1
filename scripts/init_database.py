#!/usr/bin/env python3
"""
Create the quote tables in Postgres: quote_drafts, quote_reference_counters,
quote_audit_log, agent_notifications.

Uses DATABASE_URL environment variable. Does NOT drop existing tables.
Run once before enabling USE_POSTGRES_DRAFTS.
"""

from __future__ import annotations

import os
import sys

from dotenv import load_dotenv
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import OperationalError

# Import all models so SQLAlchemy knows about them
from takaful_quote.database.models import (  # noqa: F401
    AgentNotification,
    Base,
    QuoteAuditEntry,
    QuoteDraft,
    QuoteReferenceCounter,
)
from takaful_quote.database.postgres_real import _normalize_connection_string


def main() -> int:
    load_dotenv()
    url = os.environ.get("DATABASE_URL")
    if not url:
        print("DATABASE_URL is not set", file=sys.stderr)
        return 1

    url = _normalize_connection_string(url)

    try:
        engine = create_engine(url, pool_pre_ping=True)

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")

        # Only missing tables are created
        Base.metadata.create_all(bind=engine)
        tables = inspect(engine).get_table_names()
        print("✅ Quote tables now exist:", sorted(tables))
        return 0

    except OperationalError as e:
        print(f"❌ Failed to connect to database: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
