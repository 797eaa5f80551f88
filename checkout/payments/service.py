"""
Cas d'usage 'payments': PaymentIntent de session, Checkout hébergé et upsell off-session.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from checkout.config import CHECKOUT_DOMAIN, DEFAULT_CURRENCY
from checkout.errors import (
    InvalidAmount,
    InvalidRequest,
    NoActiveAccount,
    PaymentDeclined,
    SessionNotFound,
    UpstreamUnavailable,
)
from checkout.accounts import repository as accounts_repo
from checkout.accounts import service as accounts_service
from checkout.accounts.models import ProcessorAccount
from checkout.accounts.rotation import RoundRobinCursor
from checkout.sessions import repository as sessions_repo
from checkout.sessions.service import normalize_customer
from checkout.shopify import orders
from checkout.utils.security import mask_secret
from . import stripe_client

logger = logging.getLogger(__name__)

MIN_HOSTED_AMOUNT_CENTS = 50

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def _positive_int(v: Any) -> int:
    return v if isinstance(v, int) and not isinstance(v, bool) and v > 0 else 0

def descriptor_suffix(label: str) -> str:
    return re.sub(r"[^A-Za-z0-9 ]", "", label or "")[:22].strip() or "CHECKOUT"

def compute_total(doc: Dict[str, Any], shipping_cents_override: Optional[int] = None) -> int:
    """
    Total à encaisser (centimes):
    - total_cents stocké s'il est positif
    - sinon subtotal_cents + shipping (surcharge client si positive, sinon shipping stocké)
    """
    stored_total = _positive_int(doc.get("total_cents"))
    if stored_total:
        return stored_total
    subtotal = doc.get("subtotal_cents") if isinstance(doc.get("subtotal_cents"), int) else 0
    shipping = _positive_int(shipping_cents_override) or (
        doc.get("shipping_cents") if isinstance(doc.get("shipping_cents"), int) else 0
    )
    return subtotal + shipping

def build_shipping(customer: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Adresse de livraison Stripe, seulement si au moins un champ utile est renseigné."""
    if not any(customer.get(k) for k in ("full_name", "address1", "city", "postal_code", "country_code")):
        return None
    shipping: Dict[str, Any] = {
        "name": customer.get("full_name") or "N/A",
        "address": {
            "line1": customer.get("address1") or "",
            "line2": customer.get("address2") or None,
            "city": customer.get("city") or "",
            "postal_code": customer.get("postal_code") or "",
            "state": customer.get("province") or "",
            "country": customer.get("country_code") or None,
        },
    }
    if customer.get("phone"):
        shipping["phone"] = customer["phone"]
    return shipping

def _choose_account(doc: Dict[str, Any]) -> ProcessorAccount:
    """
    - Session avec un intent existant et compte encore éligible: même compte (rechargement de page).
    - Sinon rotation (moins récemment utilisé + cooldown).
    - Rotation impossible: premier compte avec clé secrète.
    """
    cfg = accounts_repo.load_config()
    if doc.get("payment_intent_id"):
        previous = accounts_service.find_account(cfg.stripe_accounts, doc.get("stripe_account_used"))
        if previous and previous.is_eligible:
            return previous
    try:
        return accounts_service.get_active_account()
    except NoActiveAccount:
        logger.warning("payments.service rotation unavailable, falling back to first keyed account")
        return accounts_service.first_account_with_secret(cfg.stripe_accounts)

def _ensure_customer(account: ProcessorAccount, doc: Dict[str, Any], customer: Dict[str, Any], session_id: str) -> Optional[str]:
    # Un id client Stripe n'est valable que pour le compte qui l'a créé
    if doc.get("stripe_customer_id") and doc.get("stripe_account_used") == account.label:
        return doc["stripe_customer_id"]
    if not customer.get("email"):
        return None
    address = None
    if customer.get("address1"):
        address = {
            "line1": customer["address1"],
            "line2": customer.get("address2") or None,
            "city": customer.get("city") or "",
            "postal_code": customer.get("postal_code") or "",
            "state": customer.get("province") or "",
            "country": customer.get("country_code") or None,
        }
    try:
        return stripe_client.find_or_create_customer(
            account.secret_key,
            email=customer["email"],
            name=customer.get("full_name") or None,
            phone=customer.get("phone") or None,
            address=address,
            metadata={"session_id": session_id, "stripe_account": account.label},
        )
    except UpstreamUnavailable:
        logger.warning("payments.service customer lookup failed session_id=%s", session_id)
        return None

# module checkout.payments.service
def ensure_payment_intent(
    session_id: str,
    customer: Optional[Dict[str, Any]] = None,
    shipping_cents_override: Optional[int] = None,
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Obtient le PaymentIntent de la session (réutilisé, mis à jour ou créé).
    - SessionNotFound si la session est absente; InvalidAmount si total <= 0.
    - Intent existant non annulé, montant et devise identiques: renvoyé tel quel.
    - Intent existant non annulé, montant ou devise différents: mis à jour sur place.
    - Toute erreur sur l'intent existant: création d'un nouvel intent.
    Retour: {client_secret, payment_intent_id, publishable_key, account_label}
    """
    doc = sessions_repo.get_session(session_id)
    if not doc:
        raise SessionNotFound()

    total_cents = compute_total(doc, shipping_cents_override)
    if not _positive_int(total_cents):
        raise InvalidAmount("Montant invalide (doit être un entier positif)")
    currency = str(doc.get("currency") or DEFAULT_CURRENCY).lower()

    contact = normalize_customer(customer) if customer else (doc.get("customer") or {})
    shipping = build_shipping(contact)
    account = _choose_account(doc)
    key = account.secret_key

    patch: Dict[str, Any] = {
        "total_cents": total_cents,
        "currency": currency.upper(),
        "customer": contact,
        "stripe_account_used": account.label,
    }
    if not _positive_int(doc.get("total_cents")) and _positive_int(shipping_cents_override):
        patch["shipping_cents"] = shipping_cents_override
    # IP / User-Agent du formulaire de paiement: plus récents que ceux du panier (attribution)
    if client_ip:
        patch["client_ip"] = client_ip
    if user_agent:
        patch["user_agent"] = user_agent

    intent: Optional[Dict[str, Any]] = None
    existing_id = doc.get("payment_intent_id")
    if existing_id and doc.get("stripe_account_used") == account.label:
        try:
            current = stripe_client.retrieve_payment_intent(key, existing_id)
            if current.get("status") != "canceled":
                if current.get("amount") == total_cents and str(current.get("currency") or "").lower() == currency:
                    intent = current
                else:
                    params: Dict[str, Any] = {
                        "amount": total_cents,
                        "currency": currency,
                        "metadata": {**(current.get("metadata") or {}), "amount_updated_at": _now_iso()},
                    }
                    if shipping:
                        params["shipping"] = shipping
                    intent = stripe_client.update_payment_intent(key, existing_id, **params)
                    logger.info("payments.service intent updated session_id=%s id=%s amount=%s",
                                session_id, existing_id, total_cents)
        except Exception:
            logger.exception("payments.service existing intent unusable session_id=%s id=%s", session_id, existing_id)
            intent = None

    if intent is None:
        customer_id = _ensure_customer(account, doc, contact, session_id)
        metadata = {"session_id": session_id, "stripe_account": account.label}
        if account.merchant_site:
            metadata["merchant_site"] = account.merchant_site
        params = {
            "amount": total_cents,
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "description": f"{session_id} | {contact.get('full_name') or 'Guest'}",
            "statement_descriptor_suffix": descriptor_suffix(account.label),
            "metadata": metadata,
        }
        if customer_id:
            params["customer"] = customer_id
            params["setup_future_usage"] = "off_session"
            patch["stripe_customer_id"] = customer_id
        if contact.get("email"):
            params["receipt_email"] = contact["email"]
        if shipping:
            params["shipping"] = shipping
        intent = stripe_client.create_payment_intent(key, **params)
        logger.info("payments.service intent created session_id=%s id=%s amount=%s %s account=%s",
                    session_id, intent.get("id"), total_cents, currency, account.label)

    patch["payment_intent_id"] = intent.get("id")
    patch["payment_intent_client_secret"] = intent.get("client_secret")
    sessions_repo.update_session(session_id, patch)

    return {
        "client_secret": intent.get("client_secret"),
        "payment_intent_id": intent.get("id"),
        "publishable_key": account.publishable_key,
        "account_label": account.label,
    }

def compute_hosted_total(snapshot: Dict[str, Any]) -> int:
    """total_cents s'il est entier >= 50, sinon somme(price * quantity) + shipping.selected.amount + tax."""
    total = snapshot.get("total_cents")
    if isinstance(total, int) and not isinstance(total, bool) and total >= MIN_HOSTED_AMOUNT_CENTS:
        return total
    items_sum = 0
    for it in snapshot.get("line_items") or []:
        try:
            items_sum += int(it.get("price") or 0) * int(it.get("quantity") or 0)
        except (TypeError, ValueError):
            continue
    selected = ((snapshot.get("shipping") or {}).get("selected") or {})
    try:
        shipping = int(selected.get("amount") or 0)
        tax = int(snapshot.get("tax") or 0)
    except (TypeError, ValueError):
        shipping, tax = 0, 0
    return items_sum + shipping + tax

def create_hosted_checkout(snapshot: Dict[str, Any], cursor: RoundRobinCursor) -> Dict[str, Any]:
    """
    Crée une page de paiement hébergée (Stripe Checkout).
    - Clé choisie par tourniquet (cursor), indépendant de la rotation avec cooldown.
    - Un document de session est créé: le webhook payment_intent.succeeded le retrouve
      via payment_intent_data.metadata.session_id, comme pour /payment-intent.
    Retour: {url, session_id}
    """
    if not snapshot:
        raise InvalidRequest("Snapshot manquant")
    currency = str(snapshot.get("currency") or DEFAULT_CURRENCY).lower()
    total_cents = compute_hosted_total(snapshot)
    if total_cents < MIN_HOSTED_AMOUNT_CENTS:
        raise InvalidAmount("Montant invalide (entier >= 50 requis)")
    if not re.fullmatch(r"[a-z]{3}", currency):
        raise InvalidRequest("Devise invalide")

    cfg = accounts_repo.load_config()
    account = cursor.next(cfg.stripe_accounts)
    logger.info("payments.service hosted checkout key=%s account=%s", mask_secret(account.secret_key), account.label)

    items: List[Dict[str, Any]] = []
    for it in snapshot.get("line_items") or []:
        try:
            quantity = int(it.get("quantity") or 0)
            price = int(it.get("price") or 0)
        except (TypeError, ValueError):
            logger.warning("payments.service hosted checkout skipping malformed line %r", it)
            continue
        items.append({
            "id": it.get("id"),
            "variant_id": it.get("variant_id") or it.get("id"),
            "title": it.get("title") or "",
            "quantity": quantity,
            "price_cents": price,
            "line_price_cents": price * quantity,
        })
    email = ((snapshot.get("customer") or {}).get("email") or "").strip()
    subtotal_cents = sum(i["line_price_cents"] for i in items)
    session_id = str(uuid4())
    sessions_repo.insert_session(session_id, {
        "session_id": session_id,
        "created_at": _now_iso(),
        "currency": currency.upper(),
        "items": items,
        "subtotal_cents": subtotal_cents,
        "shipping_cents": max(total_cents - subtotal_cents, 0),
        "total_cents": total_cents,
        "customer": normalize_customer(snapshot.get("customer")),
        "raw_cart": snapshot.get("raw_cart") or {},
        "stripe_account_used": account.label,
        "checkout_mode": "hosted",
    })

    domain = (cfg.checkout_domain or CHECKOUT_DOMAIN).rstrip("/")
    params: Dict[str, Any] = {
        "mode": "payment",
        "success_url": f"{domain}/thank-you?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{domain}/cancel",
        "line_items": [{
            "price_data": {"currency": currency, "product_data": {"name": "Order"}, "unit_amount": total_cents},
            "quantity": 1,
        }],
        "metadata": {"session_id": session_id},
        "payment_intent_data": {"metadata": {"session_id": session_id, "stripe_account": account.label}},
    }
    if email:
        params["customer_email"] = email
    session = stripe_client.create_checkout_session(account.secret_key, **params)
    sessions_repo.update_session(session_id, {"stripe_checkout_session_id": session.get("id")})
    return {"url": session.get("url"), "session_id": session_id}

def charge_upsell(
    session_id: str,
    variant_id: Any,
    price_cents: Any,
    product_title: str = "",
    variant_title: str = "",
    image: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Débit off-session d'un produit complémentaire après un paiement confirmé.
    - Refus: session non payée, upsell déjà payé, moyen de paiement non enregistré.
    - Compte: celui du paiement d'origine (à défaut, premier compte actif avec clé).
    - Commande Shopify séparée; en cas d'échec le débit est quand même enregistré
      (upsell_shopify_order_error, revue manuelle).
    """
    if not session_id or not variant_id:
        raise InvalidRequest("Paramètres manquants")
    if not _positive_int(price_cents):
        raise InvalidAmount()

    doc = sessions_repo.get_session(session_id)
    if not doc:
        raise SessionNotFound()
    if doc.get("payment_status") != "paid":
        raise InvalidRequest("Commande d'origine pas encore confirmée")
    if doc.get("upsell_status") == "paid":
        raise InvalidRequest("Upsell déjà débité")
    customer_id = doc.get("stripe_customer_id")
    payment_method_id = doc.get("stripe_payment_method_id")
    if not customer_id or not payment_method_id:
        raise InvalidRequest("Moyen de paiement non disponible pour cette commande")

    cfg = accounts_repo.load_config()
    label = doc.get("stripe_account_used")
    account = accounts_service.find_account(cfg.stripe_accounts, label) or next(
        (a for a in cfg.stripe_accounts if a.secret_key and a.active), None
    )
    if account is None:
        raise NoActiveAccount("Compte Stripe introuvable")

    currency = str(doc.get("currency") or DEFAULT_CURRENCY).lower()
    intent = stripe_client.create_payment_intent(
        account.secret_key,
        amount=price_cents,
        currency=currency,
        customer=customer_id,
        payment_method=payment_method_id,
        confirm=True,
        off_session=True,
        description=f"Upsell: {product_title} ({variant_title}) | Commande #{doc.get('shopify_order_number')}",
        statement_descriptor_suffix="UPSELL ORDER",
        metadata={
            "session_id": session_id,
            "upsell": "true",
            "original_order_id": str(doc.get("shopify_order_id") or ""),
            "original_order_number": str(doc.get("shopify_order_number") or ""),
            "product_title": product_title or "",
            "variant_title": variant_title or "",
        },
    )
    if intent.get("status") != "succeeded":
        logger.warning("payments.service upsell not succeeded session_id=%s status=%s", session_id, intent.get("status"))
        raise PaymentDeclined("Paiement non abouti")

    confirmation = orders.PaymentConfirmation(
        payment_intent_id=intent.get("id"),
        amount_cents=price_cents,
        currency=currency,
        account_label=account.label,
        customer_id=customer_id,
        payment_method_id=payment_method_id,
    )
    upsell_snapshot = {
        "currency": currency.upper(),
        "customer": doc.get("customer") or {},
        "items": [{
            "variant_id": variant_id,
            "title": product_title,
            "variant_title": variant_title,
            "quantity": 1,
            "line_price_cents": price_cents,
        }],
    }
    result = orders.create_order(
        session_id,
        upsell_snapshot,
        confirmation,
        cfg.shopify,
        shipping_line=False,
        note=f"UPSELL post-achat | Commande d'origine #{doc.get('shopify_order_number')} | Session: {session_id}",
        tags=["upsell", "checkout-custom", "stripe-paid", account.label],
    )

    patch: Dict[str, Any] = {
        "upsell_status": "paid",
        "upsell_paid_at": _now_iso(),
        "upsell_payment_intent_id": intent.get("id"),
        "upsell_amount_cents": price_cents,
        "upsell_product": {
            "variant_id": variant_id,
            "variant_title": variant_title,
            "product_title": product_title,
            "image": image,
        },
    }
    shopify_updated = result.order_id is not None
    if shopify_updated:
        patch["upsell_shopify_order_id"] = result.order_id
        patch["upsell_shopify_order_number"] = result.order_number
    else:
        patch["upsell_shopify_order_error"] = "Commande Shopify non créée, revue manuelle requise"
    sessions_repo.update_session(session_id, patch)
    logger.info("payments.service upsell charged session_id=%s id=%s shopify=%s", session_id, intent.get("id"), shopify_updated)

    return {"success": True, "payment_intent_id": intent.get("id"), "shopify_updated": shopify_updated}
