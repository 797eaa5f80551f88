from checkout.shopify import orders

def test_payment_intent_endpoint(client, seed_config, seed_session, fake_stripe):
    seed_config()
    seed_session("s1")

    res = client.post("/api/v1/payment-intent", json={"sessionId": "s1", "customer": {"email": "a@example.com"}})

    assert res.status_code == 200
    body = res.json()
    assert body["paymentIntentId"] == "pi_1"
    assert body["clientSecret"].startswith("pi_1_secret")
    assert body["publishableKey"] == f"pk_test_{body['accountUsed']}"

def test_reload_returns_same_client_secret(client, seed_config, seed_session, fake_stripe):
    seed_config()
    seed_session("s1")
    first = client.post("/api/v1/payment-intent", json={"sessionId": "s1"}).json()
    second = client.post("/api/v1/payment-intent", json={"sessionId": "s1"}).json()
    assert first == second

def test_payment_intent_errors(client, seed_config, seed_session, fake_stripe):
    seed_config()
    res = client.post("/api/v1/payment-intent", json={"sessionId": "ghost"})
    assert res.status_code == 404
    assert res.json() == {"error": "Aucun panier trouvé pour cette session", "code": "session_not_found"}

    seed_session("empty", subtotal_cents=0, total_cents=0)
    assert client.post("/api/v1/payment-intent", json={"sessionId": "empty"}).json()["code"] == "invalid_amount"
    assert client.post("/api/v1/payment-intent", json={"sessionId": ""}).status_code == 422

def test_no_account_configured_is_500(client, seed_config, seed_session, fake_stripe):
    seed_config(accounts=[])
    seed_session("s1")
    res = client.post("/api/v1/payment-intent", json={"sessionId": "s1"})
    assert res.status_code == 500
    assert res.json()["code"] == "no_active_account"

def test_hosted_checkout_endpoint(client, seed_config, fake_stripe, store):
    seed_config()
    res = client.post("/api/v1/payments/checkout", json={"snapshot": {
        "currency": "EUR",
        "totalAmount": 4200,
        "lineItems": [{"id": 111, "title": "T-shirt", "price": 4200, "quantity": 1}],
        "customer": {"email": "a@example.com"},
    }})
    assert res.status_code == 200
    body = res.json()
    assert body["url"] == "https://checkout.stripe.test/cs_test_1"
    doc = store.get("checkout_sessions", body["sessionId"])
    assert doc["checkout_mode"] == "hosted"
    assert fake_stripe.ops("checkout")[0][2]["customer_email"] == "a@example.com"

def test_hosted_checkout_rejects_small_amount(client, seed_config, fake_stripe):
    seed_config()
    res = client.post("/api/v1/payments/checkout", json={"snapshot": {"currency": "eur", "totalAmount": 10}})
    assert res.status_code == 400
    assert fake_stripe.ops("checkout") == []

def test_upsell_endpoint(client, seed_config, seed_session, fake_stripe, monkeypatch):
    seed_config()
    seed_session("s1", payment_status="paid", stripe_customer_id="cus_1",
                 stripe_payment_method_id="pm_1", stripe_account_used="A")
    fake_stripe.next_status = "succeeded"
    monkeypatch.setattr(orders, "create_order", lambda *a, **k: orders.OrderResult(7, 8))

    res = client.post("/api/v1/upsell-charge", json={"sessionId": "s1", "variantId": 77, "priceCents": 1500})

    assert res.status_code == 200
    assert res.json() == {"success": True, "paymentIntentId": "pi_1", "shopifyUpdated": True}
    again = client.post("/api/v1/upsell-charge", json={"sessionId": "s1", "variantId": 77, "priceCents": 1500})
    assert again.status_code == 400

def test_upsell_declined_is_402(client, seed_config, seed_session, fake_stripe):
    seed_config()
    seed_session("s1", payment_status="paid", stripe_customer_id="cus_1",
                 stripe_payment_method_id="pm_1", stripe_account_used="A")
    fake_stripe.next_status = "requires_action"
    res = client.post("/api/v1/upsell-charge", json={"sessionId": "s1", "variantId": 77, "priceCents": 1500})
    assert res.status_code == 402
    assert res.json()["code"] == "payment_declined"

def test_payment_intent_captures_client_context(client, seed_config, seed_session, fake_stripe, store):
    seed_config()
    seed_session("s1")
    client.post("/api/v1/payment-intent", json={"sessionId": "s1"},
                headers={"X-Forwarded-For": "198.51.100.9", "User-Agent": "checkout-browser"})
    doc = store.get("checkout_sessions", "s1")
    assert doc["client_ip"] == "198.51.100.9"
    assert doc["user_agent"] == "checkout-browser"
