CART = {
    "token": "c1-abc",
    "currency": "eur",
    "items_subtotal_price": 2500,
    "total_price": 2500,
    "items": [{"id": 111, "variant_id": 111, "title": "T-shirt", "quantity": 1, "price": 2500, "line_price": 2500}],
}

def test_create_then_read_session(client):
    res = client.post("/api/v1/cart-session", json={"cart": CART}, headers={"User-Agent": "pytest-agent"})
    assert res.status_code == 200
    body = res.json()
    assert body["currency"] == "EUR"
    assert body["totalCents"] == 2500
    assert body["paymentIntentClientSecret"] is None

    again = client.get("/api/v1/cart-session", params={"sessionId": body["sessionId"]})
    assert again.status_code == 200
    assert again.json()["items"][0]["line_price_cents"] == 2500
    assert again.headers["Cache-Control"] == "no-store"

def test_missing_cart_is_422(client):
    assert client.post("/api/v1/cart-session", json={}).status_code == 422

def test_missing_session_id_is_400(client):
    assert client.get("/api/v1/cart-session").status_code == 400

def test_unknown_session_is_404(client):
    res = client.get("/api/v1/cart-session", params={"sessionId": "ghost"})
    assert res.status_code == 404
    assert res.json()["code"] == "session_not_found"
