from conftest import make_account

from checkout.accounts import rotation
from checkout.stats import service

def test_record_and_read_day():
    service.record_payment("A", 1000, day="2026-03-01")
    service.record_payment("B", 1500, day="2026-03-01")
    service.record_payment("A", 500, day="2026-03-02")

    day = service.get_day("2026-03-01")
    assert day["total_cents"] == 2500
    assert day["total_transactions"] == 2
    assert day["accounts"]["A"] == {"total_cents": 1000, "transaction_count": 1}

def test_empty_day():
    assert service.get_day("2020-01-01") == {
        "date": "2020-01-01", "total_cents": 0, "total_transactions": 0, "accounts": {},
    }

def test_overview_shows_rotation_state(seed_config, monkeypatch):
    now = 10 * 60 * 60 * 1000
    monkeypatch.setattr(rotation, "now_ms", lambda: now)
    seed_config(accounts=[
        make_account("A", last_used_at=now - 60_000),
        make_account("B", publishable_key=""),
    ])

    overview = service.admin_overview("2026-03-01")

    rows = {r["label"]: r for r in overview["rotation"]}
    assert rows["A"]["cooling_down"] is True
    assert rows["B"]["eligible"] is False
    assert "secret_key" not in rows["A"]
    assert overview["stats"]["date"] == "2026-03-01"

def test_recent_transactions_merges_active_accounts(seed_config, monkeypatch):
    from checkout.errors import UpstreamUnavailable
    from checkout.payments import stripe_client
    seed_config(accounts=[
        make_account("A"),
        make_account("B"),
        make_account("C", active=False),
        make_account("D"),
    ])
    listed = {
        "sk_test_A": [{"id": "pi_a1", "amount": 1000, "currency": "eur", "status": "succeeded", "created": 10,
                       "receipt_email": "a@example.com", "metadata": {"session_id": "s1"}}],
        "sk_test_B": [{"id": "pi_b1", "amount": 500, "currency": "eur", "status": "requires_payment_method",
                       "created": 20, "last_payment_error": {"code": "card_declined", "decline_code": "insufficient_funds",
                                                             "message": "Your card has insufficient funds."}}],
    }
    calls = []

    def fake_list(api_key, limit=100):
        calls.append(api_key)
        if api_key not in listed:
            raise UpstreamUnavailable("Stripe indisponible")
        return listed[api_key]

    monkeypatch.setattr(stripe_client, "list_payment_intents", fake_list)
    result = service.recent_transactions()

    assert calls == ["sk_test_A", "sk_test_B", "sk_test_D"]
    assert result["failed_accounts"] == ["D"]
    declined, paid = result["transactions"]
    assert (declined["id"], declined["account"], declined["decline_code"]) == ("pi_b1", "B", "insufficient_funds")
    assert declined["error_code"] == "card_declined"
    assert (paid["account"], paid["email"], paid["session_id"]) == ("A", "a@example.com", "s1")
    assert paid["decline_code"] is None
