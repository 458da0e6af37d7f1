#!/usr/bin/env python3
"""
Walk a motor quick quote end to end against the mock collaborators and print
each stage to the terminal.

Usage (from repo root, after `pip install -e .`):
  python scripts/run_quote_demo.py
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import date

from takaful_quote.api.dependencies import build_session_manager
from takaful_quote.database.postgres import PostgresDB
from takaful_quote.database.redis import RedisCache
from takaful_quote.integrations.clients.mocks.discounts import StaffDiscountAuthority
from takaful_quote.integrations.clients.mocks.whatsapp import MockLinkDispatcher
from takaful_quote.integrations.clients.mocks.zain_takaful import MockZainTakafulClient
from takaful_quote.utils.config_loader import QuoteFlowConfig


def setup_logging():
    """Log to terminal at INFO so every stage is visible."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )


def print_stage(title: str, data):
    """Print a stage header and data to the terminal."""
    print("\n" + "=" * 60)
    print(f"  {title}")
    print("=" * 60)
    if isinstance(data, (dict, list)):
        print(json.dumps(data, indent=2, default=str))
    else:
        print(data)
    print()


def summary(snapshot: dict) -> dict:
    quote = snapshot["quote"]
    return {
        "step": snapshot["step"],
        "status": quote["status"],
        "quote_reference": quote["quote_reference"],
        "notice": snapshot["notice"],
        "gates": snapshot["gates"],
        "in_flight": snapshot["in_flight"],
    }


async def main():
    setup_logging()
    db = PostgresDB()
    authority = StaffDiscountAuthority()
    dispatcher = MockLinkDispatcher()
    manager = build_session_manager(
        QuoteFlowConfig(),
        draft_store=db,
        session_cache=RedisCache(),
        zain_client=MockZainTakafulClient(),
        dispatcher=dispatcher,
        discount_authority=authority,
    )

    session_id, controller = await manager.create_session(agent_id="agent-7", agent_name="Demo Agent", insurance_type="MOTOR")
    print_stage("SESSION STARTED", {"session_id": session_id, **summary(controller.snapshot())})

    # --- Step 1: customer ---
    snap = await controller.search_customer("880101234")
    print_stage("STEP 1: CPR search (CRM lookup disabled)", summary(snap))

    controller.update_subscriber(
        {
            "subscriber_number": "33112233",
            "full_name": "Demo Customer",
            "mobile": "33112233",
            "email": "demo@example.com",
            "vehicle_number": "123456",
        }
    )
    snap = await controller.check_eligibility()
    print_stage("STEP 1: Subscriber eligibility (prepaid line)", {**summary(snap), "eligibility": snap["eligibility"]})

    snap = await controller.next()
    print_stage("STEP 1 -> 2", summary(snap))

    # --- Step 2: vehicle ---
    snap = await controller.lookup_vehicle("123456")
    print_stage("STEP 2: Vehicle lookup", {**summary(snap), "motor": snap["buffers"]["motor"]})

    await controller.update_motor({"start_date": date.today().isoformat()})
    snap = await controller.submit_motor()
    print_stage(
        "STEP 2 -> 3: Plans",
        [{"plan": c["plan"]["name"], "cash_total": c["cash"]["total"], "monthly": c["installment"]["monthly"]} for c in snap["plans"]],
    )

    # --- Step 3: quote ---
    await controller.select_plan(snap["plans"][0]["plan"]["id"])
    await controller.set_payment_method("INSTALLMENT")
    code = authority.codes_for("staff-4")[0].code
    snap = await controller.apply_discount(code)
    print_stage(f"STEP 3: Discount {code}", {**summary(snap), "discount": snap["discount"]})

    snap = await controller.request_exception()
    print_stage("STEP 3: Exception requested", summary(snap))

    await manager.services.approvals.resolve(snap["approval_ticket_id"], approved=True)
    print_stage("CREDIT CONTROL: Exception granted", summary(controller.snapshot()))

    snap = await controller.send_link()
    print_stage("STEP 3: Payment link", {**summary(snap), "sent": [s.body for s in dispatcher.sent]})

    snap = await controller.confirm_payment()
    print_stage("PAYMENT CONFIRMED", {**summary(snap), "views": snap["views"]})

    quote_id = snap["quote"]["id"]
    print_stage("AUDIT TRAIL", [(e.action, e.actor, e.details) for e in db.get_audit_log(quote_id)])
    print_stage("AGENT NOTIFICATIONS", [n.message for n in db.get_notifications("agent-7")])


if __name__ == "__main__":
    asyncio.run(main())
