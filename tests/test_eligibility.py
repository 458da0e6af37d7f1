"""Tests for installment eligibility and subscriber identification."""

from unittest.mock import AsyncMock

import pytest

from takaful_quote.integrations.clients.mocks.customers import MockCustomerDirectory
from takaful_quote.integrations.clients.mocks.zain_takaful import DRAFT_EXISTS_MESSAGE, MockZainTakafulClient
from takaful_quote.integrations.contracts.interfaces import EligibilityCheckResult
from takaful_quote.quote.eligibility import (
    DENIED_NOTICE,
    EligibilityResolver,
    SubscriberOutcome,
    can_request_exception,
    can_send_link,
    has_draft_signal,
    resolve_eligibility,
    subscriber_draft_data,
    travel_criteria_from_partner_draft,
)
from takaful_quote.quote.models import Customer, InsuranceType, PaymentMethod, QuoteRequest, QuoteStatus

DETAILS = {
    "subscriber_number": "33112233",
    "full_name": "Sara Ali",
    "mobile": "33112233",
    "email": "sara@example.com",
    "vehicle_number": "123456",
}


def _quote(eligible=False, status=QuoteStatus.DRAFT, plan="zain-super", method=PaymentMethod.CASH):
    return QuoteRequest(
        id="q-1",
        status=status,
        customer=Customer(cpr="880101234", is_eligible_for_installments=eligible),
        selected_plan_id=plan,
        payment_method=method,
    )


# ---------------------------------------------------------------------------
# Derived eligibility and gates
# ---------------------------------------------------------------------------

def test_eligibility_view_is_derived_from_customer_and_status():
    view = resolve_eligibility(_quote(eligible=False, status=QuoteStatus.APPROVAL_GRANTED))
    assert not view.is_naturally_eligible
    assert view.is_exception_granted
    assert view.is_eligible_for_installment

    view = resolve_eligibility(_quote(eligible=True))
    assert view.is_eligible_for_installment
    assert not view.is_pending_approval

    view = resolve_eligibility(_quote(status=QuoteStatus.APPROVAL_REJECTED))
    assert view.is_exception_rejected
    assert not view.is_eligible_for_installment

    assert not resolve_eligibility(QuoteRequest()).is_naturally_eligible


def test_exception_needs_a_plan_an_ineligible_customer_and_a_draft():
    assert can_request_exception(_quote())
    assert not can_request_exception(_quote(plan=None))
    assert not can_request_exception(_quote(eligible=True))
    assert not can_request_exception(_quote(status=QuoteStatus.PENDING_APPROVAL))
    assert not can_request_exception(_quote(status=QuoteStatus.APPROVAL_REJECTED))
    # An unsaved quote counts as a draft
    assert can_request_exception(_quote(status=None))


def test_send_link_gate():
    assert can_send_link(_quote())
    assert not can_send_link(_quote(plan=None))
    assert not can_send_link(_quote(method=PaymentMethod.INSTALLMENT))
    assert can_send_link(_quote(method=PaymentMethod.INSTALLMENT, eligible=True))
    assert can_send_link(_quote(method=PaymentMethod.INSTALLMENT, status=QuoteStatus.APPROVAL_GRANTED))
    assert not can_send_link(_quote(method=PaymentMethod.INSTALLMENT, status=QuoteStatus.PENDING_APPROVAL))
    assert can_send_link(_quote(method=PaymentMethod.CASH, status=QuoteStatus.APPROVAL_REJECTED))
    assert not can_send_link(_quote(status=QuoteStatus.ISSUED))


def test_link_can_be_resent_after_it_went_out():
    assert can_send_link(_quote(method=PaymentMethod.INSTALLMENT, status=QuoteStatus.PAYMENT_PENDING))
    assert can_send_link(_quote(status=QuoteStatus.LINK_SENT))


@pytest.mark.parametrize(
    "message, expected",
    [
        (DRAFT_EXISTS_MESSAGE, True),
        ("Existing DRAFT found", True),
        ("Mock eligibility check successful (Prepaid)", False),
        (None, False),
    ],
)
def test_has_draft_signal(message, expected):
    assert has_draft_signal(message) is expected


# ---------------------------------------------------------------------------
# Draft data
# ---------------------------------------------------------------------------

def test_subscriber_draft_data_for_prepaid_motor():
    result = EligibilityCheckResult(success=True, is_eligible=True, plan="pre")
    data = subscriber_draft_data("880101234", DETAILS, result, InsuranceType.MOTOR)

    customer = data["customer"]
    assert customer["cpr"] == "880101234"
    assert customer["zain_plan"] == "PRE"
    assert customer["type"] == "NEW"
    assert customer["is_eligible_for_zain"] is True
    assert customer["is_eligible_for_installments"] is False
    assert customer["credit_score"] == 700
    assert customer["active_lines"] == ["33112233"]
    assert data["subscriber_number"] == "33112233"
    assert data["contact_number_for_link"] == "33112233"
    assert data["vehicle"]["plate_number"] == "123456"
    assert data["vehicle"]["value"] == 0


def test_subscriber_draft_data_prefers_explicit_installment_flag_and_partner_contact():
    result = EligibilityCheckResult(
        success=True,
        is_eligible=True,
        plan="PRE",
        is_eligible_for_installment=True,
        mobile="39998877",
        name="Sara A.",
    )
    data = subscriber_draft_data("880101234", DETAILS, result, InsuranceType.TRAVEL)
    assert data["customer"]["is_eligible_for_installments"] is True
    assert data["customer"]["full_name"] == "Sara A."
    assert data["contact_number_for_link"] == "39998877"
    assert "vehicle" not in data


def test_subscriber_draft_data_when_not_eligible():
    result = EligibilityCheckResult(success=True, is_eligible=False, plan="POST", is_eligible_for_installment=True)
    data = subscriber_draft_data("880101234", DETAILS, result, InsuranceType.MOTOR, eligible=False)
    assert data["customer"]["is_eligible_for_zain"] is False
    assert data["customer"]["is_eligible_for_installments"] is False


def test_travel_criteria_from_partner_draft_maps_aliases():
    criteria = travel_criteria_from_partner_draft(
        {"id": 7, "destination": "SCHENGEN", "travelType": "FAMILY", "departureDate": "2030-01-10", "adultsCount": 2, "returnDate": ""}
    )
    assert criteria == {"destination": "SCHENGEN", "type": "FAMILY", "departure_date": "2030-01-10", "adults_count": 2}


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_prepaid_subscriber_is_eligible_without_installments():
    resolver = EligibilityResolver(MockZainTakafulClient())
    check = await resolver.check_subscriber("880101234", DETAILS, InsuranceType.MOTOR)

    assert check.outcome == SubscriberOutcome.ELIGIBLE
    assert check.draft_data["customer"]["is_eligible_for_installments"] is False


@pytest.mark.asyncio
async def test_postpaid_subscriber_is_naturally_eligible():
    resolver = EligibilityResolver(MockZainTakafulClient())
    check = await resolver.check_subscriber("880101234", dict(DETAILS, subscriber_number="39112233"), InsuranceType.MOTOR)

    assert check.outcome == SubscriberOutcome.ELIGIBLE
    assert check.draft_data["customer"]["zain_plan"] == "POST"
    assert check.draft_data["customer"]["is_eligible_for_installments"] is True


@pytest.mark.asyncio
async def test_draft_signal_in_message_is_a_draft_found_outcome():
    resolver = EligibilityResolver(MockZainTakafulClient(draft_subscribers={"33112233"}))
    check = await resolver.check_subscriber("880101234", DETAILS, InsuranceType.MOTOR)

    assert check.outcome == SubscriberOutcome.DRAFT_FOUND
    assert check.message == DRAFT_EXISTS_MESSAGE
    assert check.draft_data["subscriber_number"] == "33112233"


@pytest.mark.asyncio
async def test_ineligible_subscriber_is_denied_but_keeps_details():
    resolver = EligibilityResolver(MockZainTakafulClient(ineligible_subscribers={"33112233"}))
    check = await resolver.check_subscriber("880101234", DETAILS, InsuranceType.MOTOR)

    assert check.outcome == SubscriberOutcome.DENIED
    assert check.message == DENIED_NOTICE
    assert check.draft_data["customer"]["is_eligible_for_zain"] is False


@pytest.mark.asyncio
async def test_failed_lookup_is_reported_not_raised():
    resolver = EligibilityResolver(MockZainTakafulClient(failing_operations={"check_eligibility"}))
    check = await resolver.check_subscriber("880101234", DETAILS, InsuranceType.MOTOR)
    assert check.outcome == SubscriberOutcome.LOOKUP_FAILED
    assert check.message == "Eligibility service unavailable"

    client = AsyncMock()
    client.check_eligibility.side_effect = TimeoutError("timed out")
    check = await EligibilityResolver(client).check_subscriber("880101234", DETAILS, InsuranceType.MOTOR)
    assert check.outcome == SubscriberOutcome.LOOKUP_FAILED
    assert "timed out" in check.message


@pytest.mark.asyncio
async def test_travel_draft_found_by_email():
    draft = {"id": 42, "destination": "SCHENGEN"}
    resolver = EligibilityResolver(MockZainTakafulClient(travel_drafts={"sara@example.com": draft}))
    check = await resolver.check_subscriber("880101234", DETAILS, InsuranceType.TRAVEL)

    assert check.outcome == SubscriberOutcome.DRAFT_FOUND
    assert check.travel_draft == draft
    assert "ID: 42" in check.message
    assert "vehicle" not in check.draft_data


@pytest.mark.asyncio
async def test_travel_draft_lookup_failure_does_not_block_eligibility():
    resolver = EligibilityResolver(MockZainTakafulClient(failing_operations={"get_draft_travel_application"}))
    check = await resolver.check_subscriber("880101234", DETAILS, InsuranceType.TRAVEL)

    assert check.outcome == SubscriberOutcome.ELIGIBLE
    assert check.draft_data["customer"]["is_eligible_for_installments"] is True


@pytest.mark.asyncio
async def test_customer_search_is_a_no_match_when_disabled():
    zain = MockZainTakafulClient()
    resolver = EligibilityResolver(zain, MockCustomerDirectory())
    result = await resolver.search_customer("390101010")

    assert result.found is False
    assert zain.calls == []


@pytest.mark.asyncio
async def test_customer_search_finds_existing_customer():
    resolver = EligibilityResolver(MockZainTakafulClient(), MockCustomerDirectory(), customer_lookup_enabled=True)
    result = await resolver.search_customer("390101010")

    assert result.found is True
    customer = result.draft_data["customer"]
    assert customer["type"] == "EXISTING"
    assert customer["full_name"] == "Khalid Al-Zain"
    assert customer["zain_plan"] == "POST"
    assert customer["is_eligible_for_installments"] is True
    assert result.draft_data["contact_number_for_link"] == "97339000000"


@pytest.mark.asyncio
async def test_customer_search_unknown_or_failing_directory():
    resolver = EligibilityResolver(
        MockZainTakafulClient(),
        MockCustomerDirectory(unknown_cprs={"880101234"}),
        customer_lookup_enabled=True,
    )
    assert (await resolver.search_customer("880101234")).found is False

    directory = AsyncMock()
    directory.fetch_customer_by_cpr.side_effect = ConnectionError("crm down")
    resolver = EligibilityResolver(MockZainTakafulClient(), directory, customer_lookup_enabled=True)
    result = await resolver.search_customer("880101234")
    assert result.found is False
    assert result.message == "Customer lookup is unavailable. Enter the subscriber details."
