import json
from datetime import datetime

import httpx
import pytest

from checkout import config
from checkout.attribution import capi, service
from checkout.errors import UpstreamUnavailable
from checkout.shopify.orders import PaymentConfirmation

CREATED_AT = "2026-01-01T00:00:00+00:00"

def _confirmation():
    return PaymentConfirmation(payment_intent_id="pi_7", amount_cents=2590, currency="eur", account_label="A")

def _snapshot(**attributes):
    return {
        "session_id": "s1",
        "created_at": CREATED_AT,
        "client_ip": "203.0.113.7",
        "user_agent": "pytest",
        "customer": {"email": " Ada@Example.com ", "full_name": "Ada Lovelace", "phone": "+33 6 00 00 00 01",
                     "city": "Paris", "postal_code": "75001", "country_code": "FR"},
        "items": [{"variant_id": 111, "quantity": 2, "line_price_cents": 2000}],
        "raw_cart": {"attributes": attributes},
    }

@pytest.fixture
def capi_enabled(monkeypatch):
    monkeypatch.setattr(config, "FB_PIXEL_ID", "123456")
    monkeypatch.setattr(config, "FB_CAPI_ACCESS_TOKEN", "token")

@pytest.fixture
def graph(monkeypatch):
    """Graph API simulée; `status`/`body` pilotent la réponse."""
    state = {"status": 200, "body": {"events_received": 1, "fbtrace_id": "trace-1"}, "requests": []}

    def handler(request):
        state["requests"].append(request)
        return httpx.Response(state["status"], json=state["body"])

    monkeypatch.setattr(capi, "http_client", lambda: httpx.Client(transport=httpx.MockTransport(handler)))
    return state

def test_event_id_prefers_order_id():
    assert service.event_id_for(5001, "pi_7") == "purchase_5001"
    assert service.event_id_for(None, "pi_7") == "purchase_pi_7"

def test_email_is_normalized_then_hashed():
    data = capi.build_user_data({"email": " Ada@Example.com "})
    assert data["em"] == [capi.hash_value("ada@example.com")]
    assert "ph" not in data

def test_phone_hashed_as_digits_only():
    data = capi.build_user_data({"phone": "+33 6 00-00"})
    assert data["ph"] == [capi.hash_value("3360000")]

def test_fbc_rebuilt_from_fbclid_and_session_creation():
    expected_ms = int(datetime.fromisoformat(CREATED_AT).timestamp() * 1000)
    ids = service.click_ids({"_wt_last_fbclid": "abc", "_fbp": "fb.1.1.2"}, CREATED_AT)
    assert ids == {"fbp": "fb.1.1.2", "fbc": f"fb.1.{expected_ms}.abc"}

def test_fbc_cookie_wins_over_fbclid():
    ids = service.click_ids({"_fbc": "fb.1.9.zzz", "_wt_last_fbclid": "abc"}, CREATED_AT)
    assert ids["fbc"] == "fb.1.9.zzz"

def test_custom_data_carries_utms():
    data = service.build_custom_data(
        _snapshot(), _confirmation(),
        {"_wt_last_source": "facebook", "_wt_last_campaign": "summer", "_wt_first_source": "google"},
    )
    assert data["value"] == 25.9
    assert data["currency"] == "EUR"
    assert data["num_items"] == 2
    assert data["contents"] == [{"id": "111", "quantity": 2, "item_price": 10.0}]
    assert data["utm_source"] == "facebook"
    assert data["utm_campaign"] == "summer"
    assert data["utm_first_source"] == "google"
    assert "utm_medium" not in data

def test_not_configured_is_a_noop(graph, seed_session, store):
    seed_session("s1")
    assert service.report_purchase(_confirmation(), _snapshot(), 5001) is None
    assert graph["requests"] == []
    assert "capi_tracking" not in store.get("checkout_sessions", "s1")

def test_sent_event_is_tracked_on_session(capi_enabled, graph, seed_session, store):
    seed_session("s1")
    tracking = service.report_purchase(_confirmation(), _snapshot(_wt_last_fbclid="abc"), 5001)

    assert tracking["status"] == "sent"
    assert tracking["fbtrace_id"] == "trace-1"
    request = graph["requests"][0]
    assert request.url.path.endswith("/123456/events")
    sent = json.loads(request.content)
    event = sent["data"][0]
    assert event["event_id"] == "purchase_5001"
    assert event["event_name"] == "Purchase"
    assert event["user_data"]["client_ip_address"] == "203.0.113.7"
    assert event["user_data"]["fbc"].endswith(".abc")
    assert sent["access_token"] == "token"
    assert store.get("checkout_sessions", "s1")["capi_tracking"]["event_id"] == "purchase_5001"

def test_failed_event_is_recorded_not_raised(capi_enabled, graph, seed_session, store):
    seed_session("s1")
    graph["status"] = 400
    graph["body"] = {"error": {"message": "Invalid parameter"}}

    tracking = service.report_purchase(_confirmation(), _snapshot(), 5001)

    assert tracking["status"] == "failed"
    assert tracking["error"] == "Invalid parameter"
    assert store.get("checkout_sessions", "s1")["capi_tracking"]["status"] == "failed"

def test_send_event_requires_events_received(capi_enabled, graph):
    graph["body"] = {"events_received": 0}
    with pytest.raises(UpstreamUnavailable):
        capi.send_event({"event_name": "Purchase"})
