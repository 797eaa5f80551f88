import hashlib
import hmac
import os
import time
from typing import Any, Dict, Generator, List, Optional

# Avant tout import de checkout: store mémoire, pas de Redis, clé admin connue
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

import pytest
from fastapi.testclient import TestClient

from checkout import config
from checkout.errors import UpstreamUnavailable
from checkout.infra import document_store
from checkout.infra.document_store import MemoryDocumentStore
from checkout.payments import stripe_client

ADMIN_KEY = "test-admin-key"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(scope="session")
def app():
    from checkout.app import app as fastapi_app
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

# Store mémoire neuf pour chaque test, attribution désactivée, clé admin fixée
@pytest.fixture(autouse=True)
def store(monkeypatch) -> MemoryDocumentStore:
    fresh = MemoryDocumentStore()
    monkeypatch.setattr(document_store, "_store", fresh)
    monkeypatch.setattr(config, "FB_PIXEL_ID", "")
    monkeypatch.setattr(config, "FB_CAPI_ACCESS_TOKEN", "")
    monkeypatch.setattr(config, "ADMIN_API_KEY", ADMIN_KEY)
    return fresh

@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"X-Admin-Key": ADMIN_KEY}

def make_account(label: str, **overrides: Any) -> Dict[str, Any]:
    account = {
        "label": label,
        "secret_key": f"sk_test_{label}",
        "publishable_key": f"pk_test_{label}",
        "webhook_secret": f"whsec_{label}",
        "active": True,
        "merchant_site": "",
        "last_used_at": 0,
    }
    account.update(overrides)
    return account

@pytest.fixture
def seed_config(store):
    """Écrit le document config/global (comptes A, B, C par défaut)."""
    def _seed(accounts: Optional[List[Dict[str, Any]]] = None, shopify: Optional[Dict[str, Any]] = None, **extra):
        doc = {
            "checkout_domain": "https://checkout.example.test",
            "default_currency": "eur",
            "shopify": shopify if shopify is not None else {
                "shop_domain": "shop.example.test",
                "admin_token": "shpat_test",
                "api_version": "2024-10",
                "storefront_token": "storefront_test",
            },
            "stripe_accounts": accounts if accounts is not None else [make_account(l) for l in ("A", "B", "C")],
        }
        doc.update(extra)
        store.set("config", "global", doc)
        return doc
    return _seed

@pytest.fixture
def seed_session(store):
    def _seed(session_id: str = "sess-1", **fields):
        doc = {
            "session_id": session_id,
            "created_at": "2026-01-01T00:00:00+00:00",
            "currency": "EUR",
            "items": [{"id": 111, "variant_id": 111, "title": "T-shirt", "quantity": 1,
                       "price_cents": 2000, "line_price_cents": 2000}],
            "subtotal_cents": 2000,
            "shipping_cents": 0,
            "total_cents": 2000,
            "raw_cart": {},
        }
        doc.update(fields)
        store.set("checkout_sessions", session_id, doc)
        return doc
    return _seed

def stripe_signature(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """En-tête Stripe-Signature réel: t=<ts>,v1=HMAC_SHA256(secret, "<ts>.<payload>")."""
    ts = int(timestamp or time.time())
    signed = f"{ts}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"

class FakeStripe:
    """Remplace les fonctions de checkout.payments.stripe_client (état en mémoire)."""

    def __init__(self):
        self.intents: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.next_status = "requires_payment_method"
        self._n = 0

    def ops(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    def create_payment_intent(self, api_key, **params):
        self._n += 1
        pid = f"pi_{self._n}"
        intent = {
            "id": pid,
            "client_secret": f"{pid}_secret_{self._n}",
            "amount": params["amount"],
            "currency": params["currency"],
            "status": self.next_status,
            "metadata": dict(params.get("metadata") or {}),
            "_api_key": api_key,
        }
        self.intents[pid] = intent
        self.calls.append(("create", api_key, params))
        return dict(intent)

    def retrieve_payment_intent(self, api_key, payment_intent_id):
        self.calls.append(("retrieve", api_key, payment_intent_id))
        intent = self.intents.get(payment_intent_id)
        if intent is None or intent["_api_key"] != api_key:
            raise UpstreamUnavailable("No such payment_intent")
        return dict(intent)

    def update_payment_intent(self, api_key, payment_intent_id, **params):
        self.calls.append(("update", api_key, payment_intent_id, params))
        intent = self.intents[payment_intent_id]
        intent.update({k: v for k, v in params.items() if k in ("amount", "currency", "metadata")})
        intent["client_secret"] = f"{payment_intent_id}_secret_updated"
        return dict(intent)

    def find_or_create_customer(self, api_key, **kwargs):
        self.calls.append(("customer", api_key, kwargs))
        return "cus_test"

    def create_checkout_session(self, api_key, **params):
        self.calls.append(("checkout", api_key, params))
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

@pytest.fixture
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()
    for name in (
        "create_payment_intent",
        "retrieve_payment_intent",
        "update_payment_intent",
        "find_or_create_customer",
        "create_checkout_session",
    ):
        monkeypatch.setattr(stripe_client, name, getattr(fake, name))
    return fake
