"""
Webhook Stripe multi-comptes: vérification par essai des secrets, puis création
de commande exactement une fois par session.

Tout événement vérifié est acquitté (200) avec un marqueur, même en cas d'échec
métier: Stripe relivre sur non-2xx et chaque relivraison risquerait un doublon.
Seules une signature invalide (400) et l'absence de secrets (500) ne sont pas acquittées.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

from checkout.config import MAX_WEBHOOK_SECRETS
from checkout.errors import (
    AlreadyProcessed,
    InvalidRequest,
    InvalidSignature,
    NoWebhookSecretsConfigured,
    OrderCreationFailed,
    OrderInProgress,
    SessionNotFound,
)
from checkout.accounts import repository as accounts_repo
from checkout.accounts import service as accounts_service
from checkout.accounts.models import ProcessorAccount
from checkout.attribution import service as attribution_service
from checkout.payments import stripe_client
from checkout.sessions import repository as sessions_repo
from checkout.sessions.service import normalize_customer
from checkout.shopify import cart as shopify_cart
from checkout.shopify import orders
from checkout.stats import service as stats_service

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

# module checkout.webhooks.service
def verify_event(raw_body: bytes, signature_header: str) -> Tuple[Dict[str, Any], ProcessorAccount]:
    """
    Essaie le secret webhook de chaque compte actif, arrêt au premier qui valide.
    - NoWebhookSecretsConfigured: aucun compte actif avec clé + secret webhook
    - InvalidSignature: en-tête absent ou aucun secret ne valide
    Retour: (événement décodé, compte dont le secret a validé)
    """
    cfg = accounts_repo.load_config()
    accounts = accounts_service.webhook_accounts(cfg, MAX_WEBHOOK_SECRETS)
    if not accounts:
        logger.error("webhooks.service.verify_event no webhook secrets configured")
        raise NoWebhookSecretsConfigured()
    if not signature_header:
        raise InvalidSignature("En-tête Stripe-Signature manquant")
    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidSignature()

    for account in accounts:
        if stripe_client.signature_matches(payload, signature_header, account.webhook_secret):
            try:
                event = json.loads(payload)
            except ValueError:
                raise InvalidRequest("Payload webhook illisible")
            logger.info("webhooks.service.verify_event matched account=%s type=%s", account.label, event.get("type"))
            return event, account

    logger.warning("webhooks.service.verify_event invalid signature tried=%s", len(accounts))
    raise InvalidSignature()

def fulfil_session(session_id: str, doc: Dict[str, Any], confirmation: orders.PaymentConfirmation) -> Dict[str, Any]:
    """
    Crée la commande d'une session payée puis les effets secondaires.
    - claim conditionnel (order_claimed_at) avant l'appel Shopify: une seule livraison gagne,
      les autres lèvent AlreadyProcessed
    - échec Shopify: claim libéré, order_error enregistré (réconciliation manuelle)
    - succès: références commande + payment_status="paid", stats du jour, attribution, vidage panier
    """
    if not sessions_repo.claim_order(session_id):
        raise AlreadyProcessed()

    cfg = accounts_repo.load_config()
    doc = {**doc, "session_id": session_id}
    try:
        result = orders.create_order(session_id, doc, confirmation, cfg.shopify)
    except Exception:
        logger.exception("webhooks.service order creation raised session_id=%s", session_id)
        result = orders.FAILED
    if result.order_id is None:
        # Le claim est libéré même si l'écriture de order_error échoue
        try:
            sessions_repo.update_session(session_id, {
                "order_error": "Création de la commande Shopify échouée",
                "order_error_at": _now_iso(),
                "stripe_account_used": confirmation.account_label,
                "payment_intent_id": confirmation.payment_intent_id,
            })
        finally:
            sessions_repo.release_order_claim(session_id)
        logger.error("webhooks.service order creation failed session_id=%s account=%s", session_id, confirmation.account_label)
        return {"received": True, "error": "order_creation_failed"}

    patch = {
        "shopify_order_id": result.order_id,
        "shopify_order_number": result.order_number,
        "order_created_at": _now_iso(),
        "payment_status": "paid",
        "stripe_account_used": confirmation.account_label,
        "payment_intent_id": confirmation.payment_intent_id,
        "stripe_payment_method_id": confirmation.payment_method_id,
        "stripe_customer_id": confirmation.customer_id or doc.get("stripe_customer_id"),
        "order_error": None,
    }
    sessions_repo.update_session(session_id, patch)
    logger.info("webhooks.service order created session_id=%s order_id=%s account=%s",
                session_id, result.order_id, confirmation.account_label)

    try:
        stats_service.record_payment(confirmation.account_label, confirmation.amount_cents)
    except Exception:
        logger.exception("webhooks.service stats increment failed session_id=%s", session_id)

    attribution_service.report_purchase(confirmation, {**doc, **patch}, result.order_id)

    cart_token = (doc.get("raw_cart") or {}).get("token")
    if cart_token and cfg.shopify.has_storefront:
        shopify_cart.clear_cart_quietly(cfg.shopify, cart_token)

    return {
        "received": True,
        "order_id": result.order_id,
        "order_number": result.order_number,
        "account": confirmation.account_label,
    }

def dispatch_event(event: Dict[str, Any], account: ProcessorAccount) -> Dict[str, Any]:
    event_type = event.get("type")
    if event_type != PAYMENT_SUCCEEDED:
        return {"received": True, "ignored": event_type}

    intent = ((event.get("data") or {}).get("object")) or {}
    session_id = (intent.get("metadata") or {}).get("session_id")
    if not session_id:
        logger.warning("webhooks.service missing session_id intent=%s account=%s", intent.get("id"), account.label)
        return {"received": True, "warning": "missing_session_id"}

    doc = sessions_repo.get_session(session_id)
    if not doc:
        logger.error("webhooks.service session not found session_id=%s", session_id)
        return {"received": True, "error": "session_not_found"}
    if doc.get("shopify_order_id"):
        logger.info("webhooks.service already processed session_id=%s order_id=%s", session_id, doc["shopify_order_id"])
        return {"received": True, "already_processed": True}

    customer = intent.get("customer")
    payment_method = intent.get("payment_method")
    confirmation = orders.PaymentConfirmation(
        payment_intent_id=intent.get("id") or "",
        amount_cents=int(intent.get("amount_received") or intent.get("amount") or 0),
        currency=str(intent.get("currency") or doc.get("currency") or ""),
        account_label=account.label,
        customer_id=customer.get("id") if isinstance(customer, dict) else customer,
        payment_method_id=payment_method.get("id") if isinstance(payment_method, dict) else payment_method,
    )
    try:
        return fulfil_session(session_id, doc, confirmation)
    except AlreadyProcessed:
        logger.info("webhooks.service claim lost session_id=%s account=%s", session_id, account.label)
        return {"received": True, "already_processed": True}

def handle_webhook(raw_body: bytes, signature_header: str) -> Dict[str, Any]:
    """
    Point d'entrée du webhook.
    - Erreurs de vérification: propagées (400 / 500)
    - Après vérification: toujours un acquittement {received: True, ...}
    """
    event, account = verify_event(raw_body, signature_header)
    try:
        return dispatch_event(event, account)
    except Exception:
        logger.exception("webhooks.service.handle_webhook internal error event=%s", event.get("id"))
        return {"received": True, "error": "internal_error"}

def create_order_for_session(session_id: str, payment_intent_id: str, customer: Dict[str, Any]) -> Dict[str, Any]:
    """
    Création manuelle (page de remerciement) quand le webhook n'est pas encore passé.
    - Le PaymentIntent est relu chez Stripe: il doit être "succeeded" et lié à cette session.
    - Même pipeline que le webhook (claim, commande, stats, attribution).
    """
    if not session_id or not payment_intent_id or not customer:
        raise InvalidRequest("sessionId, paymentIntentId et customer sont requis")
    doc = sessions_repo.get_session(session_id)
    if not doc:
        raise SessionNotFound()

    contact = normalize_customer(customer)
    sessions_repo.update_session(session_id, {"customer": contact})
    doc["customer"] = contact
    if doc.get("shopify_order_id"):
        return {"ok": True, "already_processed": True,
                "order_id": doc["shopify_order_id"], "order_number": doc.get("shopify_order_number")}

    cfg = accounts_repo.load_config()
    if not cfg.shopify.has_admin:
        raise OrderCreationFailed("Configuration Shopify manquante")
    account = accounts_service.find_account(cfg.stripe_accounts, doc.get("stripe_account_used")) \
        or accounts_service.first_account_with_secret(cfg.stripe_accounts)

    intent = stripe_client.retrieve_payment_intent(account.secret_key, payment_intent_id)
    if intent.get("status") != "succeeded":
        raise InvalidRequest("Paiement non confirmé")
    if (intent.get("metadata") or {}).get("session_id") != session_id:
        raise InvalidRequest("Paiement non associé à cette session")

    confirmation = orders.PaymentConfirmation(
        payment_intent_id=payment_intent_id,
        amount_cents=int(intent.get("amount_received") or intent.get("amount") or 0),
        currency=str(intent.get("currency") or doc.get("currency") or ""),
        account_label=account.label,
        customer_id=intent.get("customer") if isinstance(intent.get("customer"), str) else None,
        payment_method_id=intent.get("payment_method") if isinstance(intent.get("payment_method"), str) else None,
    )
    try:
        ack = fulfil_session(session_id, doc, confirmation)
    except AlreadyProcessed:
        current = sessions_repo.get_session(session_id) or {}
        if not current.get("shopify_order_id"):
            raise OrderInProgress()
        return {"ok": True, "already_processed": True,
                "order_id": current.get("shopify_order_id"), "order_number": current.get("shopify_order_number")}
    if ack.get("error"):
        raise OrderCreationFailed()
    return {"ok": True, "order_id": ack["order_id"], "order_number": ack["order_number"]}
