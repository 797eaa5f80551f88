"""
Construction et envoi d'une commande Shopify pour une session payée.

- Déduplication client: recherche par email avant la commande (évite le conflit
  "phone has already been taken" d'une deuxième création client avec le même téléphone).
- Prix unitaire = total de ligne / quantité (remises de la boutique conservées).
- Champs d'adresse requis manquants: valeurs de remplissage ("N/A", téléphone factice, "00000").
- Unique retry automatique: sans bloc customer si Shopify rejette pour conflit de téléphone.
"""
import logging
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

from pydantic import BaseModel

from checkout.config import (
    DEFAULT_COUNTRY_CODE,
    ORDER_SHIPPING_CENTS,
    ORDER_SHIPPING_TITLE,
    PLACEHOLDER_PHONE,
)
from checkout.errors import UpstreamUnavailable
from checkout.accounts.models import ShopifyConfig
from . import client as shopify_client

logger = logging.getLogger(__name__)

class PaymentConfirmation(BaseModel):
    payment_intent_id: str
    amount_cents: int
    currency: str
    account_label: str
    customer_id: Optional[str] = None
    payment_method_id: Optional[str] = None

class OrderResult(NamedTuple):
    order_id: Optional[int]
    order_number: Optional[int]

FAILED = OrderResult(None, None)

def _money(cents: Any) -> str:
    return str((Decimal(int(cents)) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

# module checkout.shopify.orders
def normalize_variant_id(raw: Any) -> Optional[int]:
    """'gid://shopify/ProductVariant/123' -> 123; chiffres uniquement; None si vide ou <= 0."""
    s = str(raw or "")
    if s.startswith("gid://"):
        s = s.rsplit("/", 1)[-1]
    digits = re.sub(r"\D", "", s)
    if not digits or int(digits) <= 0:
        return None
    return int(digits)

def unit_price(line_cents: int, quantity: int) -> str:
    """Prix unitaire en unités majeures, 2 décimales, arrondi half-up."""
    value = Decimal(int(line_cents)) / Decimal(100) / Decimal(max(int(quantity), 1))
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

def split_name(customer: Dict[str, Any]) -> Tuple[str, str]:
    first = customer.get("first_name") or ""
    last = customer.get("last_name") or ""
    if not first and not last:
        parts = (customer.get("full_name") or "").split()
        first = parts[0] if parts else ""
        last = " ".join(parts[1:])
    return first or "N/A", last or "."

def build_line_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    lines: List[Dict[str, Any]] = []
    for item in items:
        variant_id = normalize_variant_id(item.get("variant_id") or item.get("id"))
        if variant_id is None:
            logger.warning("shopify.orders dropping line with invalid variant id=%r", item.get("variant_id") or item.get("id"))
            continue
        try:
            quantity = int(item.get("quantity") or 1)
        except (TypeError, ValueError):
            quantity = 1
        quantity = max(quantity, 1)
        line_cents = item.get("line_price_cents")
        if not isinstance(line_cents, int):
            line_cents = int(item.get("price_cents") or 0) * quantity
        lines.append({"variant_id": variant_id, "quantity": quantity, "price": unit_price(line_cents, quantity)})
    return lines

def build_address(customer: Dict[str, Any]) -> Dict[str, Any]:
    first, last = split_name(customer)
    return {
        "first_name": first,
        "last_name": last,
        "address1": customer.get("address1") or "N/A",
        "address2": customer.get("address2") or "",
        "city": customer.get("city") or "N/A",
        "province": customer.get("province") or "",
        "zip": customer.get("postal_code") or "00000",
        "country_code": (customer.get("country_code") or DEFAULT_COUNTRY_CODE).upper(),
        "phone": customer.get("phone") or PLACEHOLDER_PHONE,
    }

def find_customer_id(cfg: ShopifyConfig, email: str) -> Optional[int]:
    """Client Shopify existant pour cet email (meilleur effort: None en cas d'erreur)."""
    if not email:
        return None
    try:
        res = shopify_client.admin_request(
            cfg, "GET", "customers/search.json", params={"query": f"email:{email}", "fields": "id,email"}
        )
    except UpstreamUnavailable:
        return None
    if res.status_code != 200:
        logger.warning("shopify.orders.find_customer_id status=%s", res.status_code)
        return None
    try:
        customers = (res.json() or {}).get("customers") or []
    except ValueError:
        return None
    return customers[0].get("id") if customers else None

def build_order_payload(
    session_id: str,
    snapshot: Dict[str, Any],
    confirmation: PaymentConfirmation,
    existing_customer_id: Optional[int] = None,
    shipping_line: bool = True,
    note: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> Optional[Dict[str, Any]]:
    """Payload POST orders.json; None si aucune ligne valide."""
    line_items = build_line_items(snapshot.get("items") or [])
    if not line_items:
        return None
    customer = snapshot.get("customer") or {}
    address = build_address(customer)
    label = confirmation.account_label
    order: Dict[str, Any] = {
        "email": customer.get("email") or None,
        "currency": confirmation.currency.upper(),
        "financial_status": "paid",
        "fulfillment_status": None,
        "send_receipt": True,
        "send_fulfillment_receipt": False,
        "line_items": line_items,
        "shipping_address": address,
        "billing_address": dict(address),
        "transactions": [{
            "kind": "sale",
            "status": "success",
            "amount": _money(confirmation.amount_cents),
            "currency": confirmation.currency.upper(),
            "gateway": f"Stripe ({label})",
            "authorization": confirmation.payment_intent_id,
        }],
        "note": note or f"Checkout custom | Session: {session_id} | Stripe: {label}",
        "tags": ", ".join(tags or ["checkout-custom", "stripe-paid", label]),
    }
    if shipping_line:
        order["shipping_lines"] = [{"title": ORDER_SHIPPING_TITLE, "price": _money(ORDER_SHIPPING_CENTS), "code": "STANDARD"}]
    if existing_customer_id:
        order["customer"] = {"id": existing_customer_id}
    elif customer.get("email"):
        first, last = split_name(customer)
        new_customer = {"email": customer["email"], "first_name": first, "last_name": last}
        if customer.get("phone"):
            new_customer["phone"] = customer["phone"]
        order["customer"] = new_customer
    return {"order": order}

def is_phone_conflict(status_code: int, body: str) -> bool:
    text = (body or "").lower()
    return status_code == 422 and "phone" in text and ("taken" in text or "already" in text)

def _submit(cfg: ShopifyConfig, payload: Dict[str, Any]) -> Tuple[OrderResult, int, str]:
    res = shopify_client.admin_request(cfg, "POST", "orders.json", json=payload)
    if res.status_code in (200, 201):
        order = (res.json() or {}).get("order") or {}
        if order.get("id"):
            return OrderResult(order["id"], order.get("order_number")), res.status_code, ""
    return FAILED, res.status_code, res.text

def create_order(
    session_id: str,
    snapshot: Dict[str, Any],
    confirmation: PaymentConfirmation,
    shopify_cfg: ShopifyConfig,
    shipping_line: bool = True,
    note: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> OrderResult:
    """
    Crée la commande Shopify; ne lève jamais: OrderResult(None, None) en cas d'échec.
    """
    if not shopify_cfg.has_admin:
        logger.error("shopify.orders.create_order missing shop domain/admin token session_id=%s", session_id)
        return FAILED
    if not snapshot.get("items"):
        logger.error("shopify.orders.create_order no items session_id=%s", session_id)
        return FAILED

    email = (snapshot.get("customer") or {}).get("email") or ""
    existing_id = find_customer_id(shopify_cfg, email)
    payload = build_order_payload(
        session_id, snapshot, confirmation,
        existing_customer_id=existing_id, shipping_line=shipping_line, note=note, tags=tags,
    )
    if payload is None:
        logger.error("shopify.orders.create_order no valid line items session_id=%s", session_id)
        return FAILED

    try:
        result, status, body = _submit(shopify_cfg, payload)
        if result.order_id is None and "customer" in payload["order"] and is_phone_conflict(status, body):
            logger.warning("shopify.orders.create_order phone conflict, retrying without customer session_id=%s", session_id)
            payload["order"].pop("customer", None)
            result, status, body = _submit(shopify_cfg, payload)
    except UpstreamUnavailable:
        logger.exception("shopify.orders.create_order upstream failure session_id=%s", session_id)
        return FAILED
    except Exception:
        logger.exception("shopify.orders.create_order unexpected failure session_id=%s", session_id)
        return FAILED

    if result.order_id is None:
        logger.error("shopify.orders.create_order rejected session_id=%s status=%s body=%s", session_id, status, body[:500])
        return FAILED
    logger.info("shopify.orders.create_order created session_id=%s order_id=%s number=%s",
                session_id, result.order_id, result.order_number)
    return result
