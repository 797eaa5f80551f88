import json

import pytest
from conftest import make_account, stripe_signature

from checkout.errors import (
    InvalidRequest,
    InvalidSignature,
    NoWebhookSecretsConfigured,
    OrderCreationFailed,
    OrderInProgress,
)
from checkout.payments import stripe_client
from checkout.shopify import orders
from checkout.webhooks import service

def _event(session_id="s1", event_type="payment_intent.succeeded", **intent_fields):
    intent = {
        "id": "pi_42",
        "amount": 2000,
        "amount_received": 2000,
        "currency": "eur",
        "customer": "cus_9",
        "payment_method": "pm_9",
        "metadata": {"session_id": session_id} if session_id else {},
    }
    intent.update(intent_fields)
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": intent}}).encode("utf-8")

@pytest.fixture
def shopify_orders(monkeypatch):
    """Remplace orders.create_order; `results` pilote les retours successifs."""
    calls = []
    state = {"results": []}

    def fake_create_order(session_id, snapshot, confirmation, cfg, **kwargs):
        calls.append((session_id, snapshot, confirmation))
        if state["results"]:
            return state["results"].pop(0)
        return orders.OrderResult(5001, 1001)

    monkeypatch.setattr(orders, "create_order", fake_create_order)
    fake_create_order.calls = calls
    fake_create_order.state = state
    return fake_create_order

def test_secret_of_second_account_matches_and_third_never_tried(seed_config, seed_session, shopify_orders, monkeypatch):
    seed_config()
    seed_session("s1")
    tried = []
    real = stripe_client.signature_matches

    def spy(payload, header, secret):
        tried.append(secret)
        return real(payload, header, secret)

    monkeypatch.setattr(stripe_client, "signature_matches", spy)
    body = _event()
    event, account = service.verify_event(body, stripe_signature(body, "whsec_B"))

    assert account.label == "B"
    assert event["type"] == "payment_intent.succeeded"
    assert tried == ["whsec_A", "whsec_B"]

def test_invalid_signature(seed_config):
    seed_config()
    body = _event()
    with pytest.raises(InvalidSignature):
        service.verify_event(body, stripe_signature(body, "whsec_unknown"))

def test_tampered_payload_is_rejected(seed_config):
    seed_config()
    body = _event()
    header = stripe_signature(body, "whsec_A")
    with pytest.raises(InvalidSignature):
        service.verify_event(body.replace(b"2000", b"1"), header)

def test_missing_header(seed_config):
    seed_config()
    with pytest.raises(InvalidSignature):
        service.verify_event(_event(), "")

def test_no_secrets_configured(seed_config):
    seed_config(accounts=[make_account("A", webhook_secret=""), make_account("B", active=False)])
    body = _event()
    with pytest.raises(NoWebhookSecretsConfigured):
        service.verify_event(body, stripe_signature(body, "whsec_B"))

def test_succeeded_event_creates_order_and_marks_session_paid(seed_config, seed_session, shopify_orders, store):
    seed_config()
    seed_session("s1")
    body = _event()

    ack = service.handle_webhook(body, stripe_signature(body, "whsec_C"))

    assert ack == {"received": True, "order_id": 5001, "order_number": 1001, "account": "C"}
    doc = store.get("checkout_sessions", "s1")
    assert doc["shopify_order_id"] == 5001
    assert doc["payment_status"] == "paid"
    assert doc["stripe_account_used"] == "C"
    assert doc["stripe_payment_method_id"] == "pm_9"
    assert doc["stripe_customer_id"] == "cus_9"
    confirmation = shopify_orders.calls[0][2]
    assert confirmation.amount_cents == 2000
    assert confirmation.account_label == "C"

def test_replay_does_not_create_second_order(seed_config, seed_session, shopify_orders, store):
    seed_config()
    seed_session("s1")
    body = _event()
    header = stripe_signature(body, "whsec_A")

    first = service.handle_webhook(body, header)
    second = service.handle_webhook(body, header)

    assert first["order_id"] == 5001
    assert second == {"received": True, "already_processed": True}
    assert len(shopify_orders.calls) == 1
    assert store.get("checkout_sessions", "s1")["shopify_order_id"] == 5001

def test_claimed_session_is_not_processed_twice(seed_config, seed_session, shopify_orders):
    seed_config()
    seed_session("s1", order_claimed_at="2026-01-01T00:00:01+00:00")
    body = _event()
    ack = service.handle_webhook(body, stripe_signature(body, "whsec_A"))
    assert ack == {"received": True, "already_processed": True}
    assert shopify_orders.calls == []

def test_stats_recorded_for_matching_account(seed_config, seed_session, shopify_orders, store):
    seed_config()
    seed_session("s1")
    body = _event(amount_received=4500)
    service.handle_webhook(body, stripe_signature(body, "whsec_B"))

    stats = store._data["daily_stats"]
    (day_doc,) = stats.values()
    assert day_doc["total_cents"] == 4500
    assert day_doc["accounts"]["B"] == {"total_cents": 4500, "transaction_count": 1}

def test_order_failure_releases_claim_and_allows_retry(seed_config, seed_session, shopify_orders, store):
    seed_config()
    seed_session("s1")
    shopify_orders.state["results"] = [orders.FAILED]
    body = _event()
    header = stripe_signature(body, "whsec_A")

    ack = service.handle_webhook(body, header)
    assert ack == {"received": True, "error": "order_creation_failed"}
    doc = store.get("checkout_sessions", "s1")
    assert doc["order_error"]
    assert not doc.get("order_claimed_at")
    assert "daily_stats" not in store._data

    retry = service.handle_webhook(body, header)
    assert retry["order_id"] == 5001
    assert store.get("checkout_sessions", "s1")["order_error"] is None

def test_other_event_types_are_ignored(seed_config, shopify_orders):
    seed_config()
    body = _event(event_type="charge.refunded")
    ack = service.handle_webhook(body, stripe_signature(body, "whsec_A"))
    assert ack == {"received": True, "ignored": "charge.refunded"}
    assert shopify_orders.calls == []

def test_missing_session_id_is_acknowledged(seed_config, shopify_orders):
    seed_config()
    body = _event(session_id=None)
    ack = service.handle_webhook(body, stripe_signature(body, "whsec_A"))
    assert ack == {"received": True, "warning": "missing_session_id"}

def test_unknown_session_is_acknowledged(seed_config, shopify_orders):
    seed_config()
    body = _event(session_id="ghost")
    ack = service.handle_webhook(body, stripe_signature(body, "whsec_A"))
    assert ack == {"received": True, "error": "session_not_found"}

def test_unexpected_error_is_acknowledged(seed_config, seed_session, monkeypatch):
    from checkout.sessions import repository as sessions_repo
    seed_config()
    seed_session("s1")

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(sessions_repo, "get_session", boom)
    body = _event()
    ack = service.handle_webhook(body, stripe_signature(body, "whsec_A"))
    assert ack == {"received": True, "error": "internal_error"}

def test_cart_cleared_after_order(seed_config, seed_session, shopify_orders, monkeypatch):
    from checkout.shopify import cart
    cleared = []
    monkeypatch.setattr(cart, "clear_cart_quietly", lambda cfg, token: cleared.append(token))
    seed_config()
    seed_session("s1", raw_cart={"token": "tok-123"})
    body = _event()
    service.handle_webhook(body, stripe_signature(body, "whsec_A"))
    assert cleared == ["tok-123"]

def test_manual_order_requires_succeeded_intent(seed_config, seed_session, fake_stripe, shopify_orders):
    seed_config()
    seed_session("s1", stripe_account_used="A")
    fake_stripe.next_status = "requires_payment_method"
    intent = fake_stripe.create_payment_intent("sk_test_A", amount=2000, currency="eur", metadata={"session_id": "s1"})
    with pytest.raises(InvalidRequest):
        service.create_order_for_session("s1", intent["id"], {"email": "a@example.com"})
    assert shopify_orders.calls == []

def test_manual_order_rejects_intent_of_other_session(seed_config, seed_session, fake_stripe, shopify_orders):
    seed_config()
    seed_session("s1", stripe_account_used="A")
    fake_stripe.next_status = "succeeded"
    intent = fake_stripe.create_payment_intent("sk_test_A", amount=2000, currency="eur", metadata={"session_id": "other"})
    with pytest.raises(InvalidRequest):
        service.create_order_for_session("s1", intent["id"], {"email": "a@example.com"})

def test_manual_order_then_webhook_is_already_processed(seed_config, seed_session, fake_stripe, shopify_orders, store):
    seed_config()
    seed_session("s1", stripe_account_used="A")
    fake_stripe.next_status = "succeeded"
    intent = fake_stripe.create_payment_intent("sk_test_A", amount=2000, currency="eur", metadata={"session_id": "s1"})

    result = service.create_order_for_session("s1", intent["id"], {"email": "a@example.com", "fullName": "Ada L"})
    assert result == {"ok": True, "order_id": 5001, "order_number": 1001}
    assert store.get("checkout_sessions", "s1")["customer"]["email"] == "a@example.com"

    body = _event(id=intent["id"])
    ack = service.handle_webhook(body, stripe_signature(body, "whsec_A"))
    assert ack == {"received": True, "already_processed": True}
    assert len(shopify_orders.calls) == 1

def test_manual_order_failure_raises(seed_config, seed_session, fake_stripe, shopify_orders):
    seed_config()
    seed_session("s1", stripe_account_used="A")
    fake_stripe.next_status = "succeeded"
    intent = fake_stripe.create_payment_intent("sk_test_A", amount=2000, currency="eur", metadata={"session_id": "s1"})
    shopify_orders.state["results"] = [orders.FAILED]
    with pytest.raises(OrderCreationFailed):
        service.create_order_for_session("s1", intent["id"], {"email": "a@example.com"})

def test_manual_order_needs_all_parameters(seed_config):
    seed_config()
    with pytest.raises(InvalidRequest):
        service.create_order_for_session("s1", "", {"email": "a@example.com"})

def test_order_exception_still_releases_claim(seed_config, seed_session, monkeypatch, store):
    seed_config()
    seed_session("s1")

    def boom(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(orders, "create_order", boom)
    body = _event()
    ack = service.handle_webhook(body, stripe_signature(body, "whsec_A"))
    assert ack == {"received": True, "error": "order_creation_failed"}
    assert not store.get("checkout_sessions", "s1").get("order_claimed_at")

def test_claim_released_when_order_error_write_fails(seed_config, seed_session, shopify_orders, monkeypatch, store):
    seed_config()
    seed_session("s1")
    shopify_orders.state["results"] = [orders.FAILED]
    real_merge = store.merge

    def merge_failing_on_error(collection, doc_id, patch):
        if patch.get("order_error"):
            raise RuntimeError("store down")
        return real_merge(collection, doc_id, patch)

    monkeypatch.setattr(store, "merge", merge_failing_on_error)
    body = _event()
    header = stripe_signature(body, "whsec_A")

    first = service.handle_webhook(body, header)
    assert first == {"received": True, "error": "internal_error"}
    assert not store.get("checkout_sessions", "s1").get("order_claimed_at")

    retry = service.handle_webhook(body, header)
    assert retry["order_id"] == 5001
    assert store.get("checkout_sessions", "s1")["shopify_order_id"] == 5001

def test_manual_order_while_claim_held_is_in_progress(seed_config, seed_session, fake_stripe, shopify_orders, store):
    seed_config()
    seed_session("s1", stripe_account_used="A", order_claimed_at="2026-01-01T00:00:01+00:00")
    fake_stripe.next_status = "succeeded"
    intent = fake_stripe.create_payment_intent("sk_test_A", amount=2000, currency="eur", metadata={"session_id": "s1"})

    with pytest.raises(OrderInProgress):
        service.create_order_for_session("s1", intent["id"], {"email": "a@example.com"})
    assert shopify_orders.calls == []
    assert not store.get("checkout_sessions", "s1").get("shopify_order_id")
