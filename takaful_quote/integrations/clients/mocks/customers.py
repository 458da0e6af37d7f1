"""
CRM customer directory — MOCK client.

⚠️  Used only when `customer_lookup_enabled` is switched on without a real CRM.
    CPR 901111111 is a prepaid customer with poor credit; every other CPR
    resolves to a postpaid customer eligible for installments. Listing a CPR in
    `unknown_cprs` makes it a no-match.
"""

import logging
from typing import Iterable, Optional

from takaful_quote.integrations.contracts.interfaces import CustomerDirectory, CustomerRecord

logger = logging.getLogger(__name__)

LOW_CREDIT_CPR = "901111111"


class MockCustomerDirectory(CustomerDirectory):
    def __init__(self, unknown_cprs: Optional[Iterable[str]] = None) -> None:
        self.unknown_cprs = set(unknown_cprs or [])

    async def fetch_customer_by_cpr(self, cpr: str) -> Optional[CustomerRecord]:
        cpr = (cpr or "").strip()
        if not cpr or cpr in self.unknown_cprs:
            logger.info("[CRM MOCK] No customer for CPR %s", cpr)
            return None

        if cpr == LOW_CREDIT_CPR:
            return CustomerRecord(
                cpr=cpr,
                full_name="Noora Khamis",
                mobile="97339111111",
                email="noora.k@example.com",
                address="Riffa",
                zain_plan="PRE",
                is_eligible_for_zain=True,
                is_eligible_for_installments=False,
                credit_score=450,
            )

        return CustomerRecord(
            cpr=cpr,
            full_name="Khalid Al-Zain",
            mobile="97339000000",
            email="khalid@example.com",
            address="Manama",
            zain_plan="POST",
            is_eligible_for_zain=True,
            is_eligible_for_installments=True,
            credit_score=750,
        )
