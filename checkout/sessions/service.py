"""
Cas d'usage 'sessions': normalisation du panier /cart.js et lecture du snapshot.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from checkout.config import DEFAULT_CURRENCY
from checkout.errors import InvalidRequest, SessionNotFound
from . import repository

logger = logging.getLogger(__name__)

def _to_cents(v: Any) -> int:
    try:
        return int(round(float(v or 0)))
    except (TypeError, ValueError):
        return 0

# module checkout.sessions.service
def normalize_items(raw_items: Any) -> List[Dict[str, Any]]:
    """
    Lignes /cart.js -> lignes du snapshot (montants en centimes, toujours int).
    - line_price absent: price * quantity.
    """
    if not isinstance(raw_items, list):
        return []
    items: List[Dict[str, Any]] = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        quantity = _to_cents(item.get("quantity"))
        price_cents = _to_cents(item.get("price"))
        line = item.get("line_price")
        line_price_cents = _to_cents(line) if isinstance(line, (int, float)) else price_cents * quantity
        items.append({
            "id": item.get("id"),
            "variant_id": item.get("variant_id") or item.get("id"),
            "title": item.get("title") or "",
            "variant_title": item.get("variant_title"),
            "quantity": quantity,
            "price_cents": price_cents,
            "line_price_cents": line_price_cents,
            "image": item.get("image"),
        })
    return items

def create_from_cart(
    cart: Dict[str, Any],
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crée la session à partir du panier de la boutique.
    - subtotal: items_subtotal_price s'il est positif, sinon somme des lignes.
    - shipping: 0 à ce stade (surcharge possible au moment du paiement).
    - total: total_price s'il est positif, sinon subtotal + shipping.
    - Le panier brut est conservé (token, attributes) pour l'attribution et le vidage du panier.
    - Aucun PaymentIntent n'est créé ici (création paresseuse par /payment-intent).
    """
    if not isinstance(cart, dict):
        raise InvalidRequest("Body non valide ou cart manquant")

    items = normalize_items(cart.get("items"))
    subtotal_from_cart = _to_cents(cart.get("items_subtotal_price"))
    subtotal_cents = subtotal_from_cart if subtotal_from_cart > 0 else sum(i["line_price_cents"] for i in items)
    shipping_cents = 0
    total_from_cart = _to_cents(cart.get("total_price"))
    total_cents = total_from_cart if total_from_cart > 0 else subtotal_cents + shipping_cents
    currency = str(cart.get("currency") or DEFAULT_CURRENCY).upper()

    session_id = str(uuid4())
    doc = {
        "session_id": session_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "currency": currency,
        "items": items,
        "subtotal_cents": subtotal_cents,
        "shipping_cents": shipping_cents,
        "total_cents": total_cents,
        "raw_cart": cart,
        "client_ip": client_ip,
        "user_agent": user_agent,
    }
    repository.insert_session(session_id, doc)
    logger.info("sessions.service.create_from_cart session_id=%s items=%s total=%s %s",
                session_id, len(items), total_cents, currency)
    return to_snapshot(doc)

def to_snapshot(doc: Dict[str, Any]) -> Dict[str, Any]:
    subtotal = doc.get("subtotal_cents")
    subtotal_cents = subtotal if isinstance(subtotal, int) else 0
    shipping = doc.get("shipping_cents")
    shipping_cents = shipping if isinstance(shipping, int) else 0
    total = doc.get("total_cents")
    total_cents = total if isinstance(total, int) else subtotal_cents + shipping_cents
    return {
        "session_id": doc.get("session_id"),
        "currency": str(doc.get("currency") or DEFAULT_CURRENCY).upper(),
        "items": doc.get("items") if isinstance(doc.get("items"), list) else [],
        "subtotal_cents": subtotal_cents,
        "shipping_cents": shipping_cents,
        "total_cents": total_cents,
        "payment_intent_client_secret": doc.get("payment_intent_client_secret"),
        "payment_status": doc.get("payment_status"),
        "shopify_order_number": doc.get("shopify_order_number"),
    }

def get_snapshot(session_id: str) -> Dict[str, Any]:
    doc = repository.get_session(session_id)
    if not doc:
        raise SessionNotFound()
    doc.setdefault("session_id", session_id)
    return to_snapshot(doc)

def _pick(body: Dict[str, Any], *keys: str) -> str:
    for k in keys:
        v = body.get(k)
        if v:
            return str(v).strip()
    return ""

def normalize_customer(body: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Contact client (formulaire checkout) -> dict snake_case stocké sur la session.
    Accepte les clés camelCase du front (fullName, postalCode, countryCode...).
    """
    body = body or {}
    first_name = _pick(body, "first_name", "firstName")
    last_name = _pick(body, "last_name", "lastName")
    full_name = _pick(body, "full_name", "fullName") or f"{first_name} {last_name}".strip()
    return {
        "full_name": full_name,
        "first_name": first_name,
        "last_name": last_name,
        "email": _pick(body, "email"),
        "phone": _pick(body, "phone"),
        "address1": _pick(body, "address1"),
        "address2": _pick(body, "address2"),
        "city": _pick(body, "city"),
        "postal_code": _pick(body, "postal_code", "postalCode", "zip"),
        "province": _pick(body, "province"),
        "country_code": _pick(body, "country_code", "countryCode").upper(),
    }
