"""HTTP clients exercised against httpx.MockTransport."""

import json
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from takaful_quote.integrations.clients.real_http.whatsapp import WhatsAppLinkDispatcher, build_quote_link_message
from takaful_quote.integrations.clients.real_http.zain_takaful import ZainTakafulClient
from takaful_quote.integrations.contracts.interfaces import MotorPlansRequest, TravelPlansRequest
from takaful_quote.utils.config_loader import WhatsAppConfig, ZainApiConfig

BASE = "https://partner.test/api/v2"
TRAVEL = "https://travel.test"


def _zain(handler, **config):
    cfg = ZainApiConfig(base_url=BASE, travel_base_url=TRAVEL, **config)
    return ZainTakafulClient(cfg, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_eligibility_posts_json_with_tokens():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "message": "ok", "data": {"isEligible": True, "zainPlan": "PRE"}})

    client = _zain(handler, session_token="sess", auth_token="Bearer abc")
    result = await client.check_eligibility(" 33112233 ", full_name="Sara", vehicle_number="123456")

    assert seen["url"] == f"{BASE}/takaful-zain-eligibility-check"
    assert seen["headers"]["x-session-token"] == "sess"
    assert seen["headers"]["authorization"] == "Bearer abc"
    assert seen["body"] == {"subscriberNumber": "33112233", "fullName": "Sara", "vehicleNumber": "123456"}
    assert result.success is True
    assert result.is_eligible is True
    assert result.plan == "PRE"


@pytest.mark.asyncio
async def test_http_errors_become_failed_results():
    def handler(request):
        return httpx.Response(422, json={"errors": {"subscriberNumber": ["is invalid"]}})

    result = await _zain(handler).check_eligibility("1")
    assert result.success is False
    assert result.error == "Validation failed: subscriberNumber: is invalid"

    def message_handler(request):
        return httpx.Response(500, json={"message": "Service down"})

    motor = await _zain(message_handler).get_motor_data("123456")
    assert motor.success is False
    assert motor.error == "Service down"


@pytest.mark.asyncio
async def test_transport_errors_become_failed_results():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = await _zain(handler).get_vehicle_details("123456")
    assert result.success is False
    assert "refused" in result.error


@pytest.mark.asyncio
async def test_motor_data_and_registry():
    def handler(request):
        if request.url.path.endswith("takaful-zain-motor-data"):
            assert json.loads(request.content)["product"] == "motor"
            return httpx.Response(200, json={"data": {"vehicle": {"make": "Toyota", "model": "Camry", "year": "2022"}}})
        form = parse_qs(request.content.decode())
        assert form == {"plateNumber": ["123456"], "chassisNumber": ["CH1"]}
        return httpx.Response(200, json={"vehicleValue": 9000, "policyStartDate": "2025-01-01"})

    client = _zain(handler)
    motor = await client.get_motor_data("123456")
    registry = await client.get_vehicle_details("123456", "CH1")

    assert motor.success is True
    assert motor.data.make == "Toyota"
    assert motor.data.plate_number == "123456"
    assert registry.data.vehicle_value == 9000.0
    assert registry.data.policy_start_date == "2025-01-01"
    assert await client.get_models_for_make("honda") == ["Accord", "City", "Civic", "CR-V"]


@pytest.mark.asyncio
async def test_motor_plans_request_and_parse():
    def handler(request):
        body = json.loads(request.content)
        assert body["vehicleValue"] == 15000
        assert body["ageUnder24"] is True
        return httpx.Response(200, json={"plans": [{"id": "p1", "name": "Gold", "policyPrice": "110.000"}]})

    request = MotorPlansRequest(
        plate_number="123456",
        vehicle_value=15000,
        policy_start_date="2025-01-01",
        policy_end_date="2025-12-31",
        age_under_24=True,
    )
    result = await _zain(handler).get_motor_plans(request)
    assert result.success is True
    assert result.plans[0].policy_price == Decimal("110.000")


@pytest.mark.asyncio
async def test_invalid_plan_payload_is_a_failed_result():
    def handler(request):
        return httpx.Response(200, json={"plans": [{"id": "p1", "name": "Free", "policyPrice": 0}]})

    request = MotorPlansRequest(plate_number="1", vehicle_value=1, policy_start_date="", policy_end_date="")
    result = await _zain(handler).get_motor_plans(request)
    assert result.success is False
    assert "must be > 0" in result.error


@pytest.mark.asyncio
async def test_travel_endpoints():
    def handler(request):
        assert request.headers["x-platform"] == "web"
        if request.url.path.endswith("checkEligibility"):
            assert parse_qs(request.content.decode()) == {"zainNumber": ["39112233"], "email": ["a@b.com"]}
            return httpx.Response(200, json={"data": {"isEligible": True, "message": "Eligible"}})
        if request.url.path.endswith("getDraftTravelApplicationByEmail"):
            assert request.url.params["email"] == "a@b.com"
            return httpx.Response(200, json={"data": {"id": 5, "destination": "SCHENGEN"}})
        return httpx.Response(200, json={"data": {"plans": [{"id": "t1", "name": "Basic", "premium": 25}]}})

    client = _zain(handler)
    eligibility = await client.check_travel_eligibility("39112233", "a@b.com")
    draft = await client.get_draft_travel_application("a@b.com")
    plans = await client.get_travel_plans(TravelPlansRequest("WORLDWIDE", "2025-07-01", "2025-07-08", "INDIVIDUAL"))

    assert eligibility.is_eligible is True
    assert eligibility.is_eligible_for_installment is True
    assert eligibility.message == "Eligible"
    assert draft.draft == {"id": 5, "destination": "SCHENGEN"}
    assert plans.plans[0].premium == Decimal("25")


@pytest.mark.asyncio
async def test_empty_travel_draft_is_none():
    client = _zain(lambda request: httpx.Response(200, json={"data": {}}))
    draft = await client.get_draft_travel_application("a@b.com")
    assert draft.success is True
    assert draft.draft is None


def _whatsapp(handler, **config):
    cfg = WhatsAppConfig(api_url="https://graph.test/v17.0", **config)
    return WhatsAppLinkDispatcher(cfg, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_whatsapp_requires_credentials():
    dispatcher = _whatsapp(lambda request: httpx.Response(200))
    result = await dispatcher.send_quote_link("33112233", "NEW")
    assert result.success is False
    assert result.error == "WhatsApp credentials are not configured."


@pytest.mark.asyncio
async def test_whatsapp_sends_text_message():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"messages": [{"id": "wamid.1"}]})

    dispatcher = _whatsapp(handler, phone_number_id="123", access_token="tok")
    result = await dispatcher.send_quote_link("3311 2233", "EXISTING", quote_reference="Q-2025-0001", agent_name="Ali")

    assert result.success is True
    assert result.message_id == "wamid.1"
    assert seen["url"] == "https://graph.test/v17.0/123/messages"
    assert seen["auth"] == "Bearer tok"
    assert seen["body"]["to"] == "97333112233"
    assert seen["body"]["text"]["body"] == build_quote_link_message("EXISTING", "Q-2025-0001", "Ali")


@pytest.mark.asyncio
async def test_whatsapp_reports_graph_errors():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "Invalid recipient"}})

    dispatcher = _whatsapp(handler, phone_number_id="123", access_token="tok")
    result = await dispatcher.send_quote_link("33112233", "NEW")
    assert result.success is False
    assert result.error == "Invalid recipient"

    assert (await dispatcher.send_quote_link("", "NEW")).error == "No contact number for the payment link."


def test_link_message_greeting():
    assert build_quote_link_message("EXISTING", None, None).startswith("Welcome back")
    new = build_quote_link_message("NEW", "Q-1", "Ali")
    assert "Q-1" in new
    assert new.endswith("Your agent: Ali")
