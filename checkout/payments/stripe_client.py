"""
Adaptateur Stripe: centralise les appels au SDK.
Chaque appel reçoit la clé du compte choisi (api_key=...): plusieurs comptes
coexistent dans le même processus, stripe.api_key global n'est jamais posé.
Client HTTP du SDK posé une fois à l'import, timeout HTTP_TIMEOUT_SECONDS.
"""
import logging
from typing import Any, Dict, List, Optional

import stripe

from checkout.config import HTTP_TIMEOUT_SECONDS
from checkout.errors import PaymentDeclined, UpstreamUnavailable

logger = logging.getLogger(__name__)

stripe.default_http_client = stripe.RequestsClient(timeout=HTTP_TIMEOUT_SECONDS)

def _as_dict(obj: Any) -> Dict[str, Any]:
    # Les objets Stripe récents ne sont plus des dict: to_dict() quand disponible
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)

# module checkout.payments.stripe_client
def retrieve_payment_intent(api_key: str, payment_intent_id: str) -> Dict[str, Any]:
    try:
        return _as_dict(stripe.PaymentIntent.retrieve(payment_intent_id, api_key=api_key))
    except stripe.StripeError as e:
        logger.warning("stripe_client.retrieve_payment_intent failed id=%s err=%s", payment_intent_id, e)
        raise UpstreamUnavailable("Stripe indisponible")

def list_payment_intents(api_key: str, limit: int = 100) -> List[Dict[str, Any]]:
    """PaymentIntents récents du compte (plus récents d'abord, une seule page)."""
    try:
        page = stripe.PaymentIntent.list(limit=limit, api_key=api_key)
    except stripe.StripeError as e:
        logger.warning("stripe_client.list_payment_intents failed err=%s", e)
        raise UpstreamUnavailable("Stripe indisponible")
    return [_as_dict(intent) for intent in (getattr(page, "data", None) or [])]

def last_payment_error(intent: Dict[str, Any]) -> Dict[str, Any]:
    error = intent.get("last_payment_error")
    return _as_dict(error) if error else {}

def update_payment_intent(api_key: str, payment_intent_id: str, **params: Any) -> Dict[str, Any]:
    try:
        return _as_dict(stripe.PaymentIntent.modify(payment_intent_id, api_key=api_key, **params))
    except stripe.StripeError as e:
        logger.warning("stripe_client.update_payment_intent failed id=%s err=%s", payment_intent_id, e)
        raise UpstreamUnavailable("Stripe indisponible")

def create_payment_intent(api_key: str, **params: Any) -> Dict[str, Any]:
    """
    Crée un PaymentIntent.
    - CardError (refus, authentification requise en off-session) -> PaymentDeclined (402)
    - Autres erreurs Stripe -> UpstreamUnavailable (502)
    """
    try:
        return _as_dict(stripe.PaymentIntent.create(api_key=api_key, **params))
    except stripe.CardError as e:
        logger.warning("stripe_client.create_payment_intent declined code=%s", getattr(e, "code", None))
        raise PaymentDeclined("Paiement refusé ou authentification requise")
    except stripe.StripeError as e:
        logger.exception("stripe_client.create_payment_intent failed")
        raise UpstreamUnavailable(str(getattr(e, "user_message", None) or "Stripe indisponible"))

def find_or_create_customer(
    api_key: str,
    *,
    email: str,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> str:
    """Retourne l'id du client Stripe pour cet email (recherche puis création)."""
    try:
        existing = stripe.Customer.list(email=email, limit=1, api_key=api_key)
        data = getattr(existing, "data", None) or []
        if data:
            return data[0]["id"]
        params: Dict[str, Any] = {"email": email, "metadata": metadata or {}}
        if name:
            params["name"] = name
        if phone:
            params["phone"] = phone
        if address:
            params["address"] = address
        return stripe.Customer.create(api_key=api_key, **params)["id"]
    except stripe.StripeError as e:
        logger.warning("stripe_client.find_or_create_customer failed err=%s", e)
        raise UpstreamUnavailable("Stripe indisponible")

def create_checkout_session(api_key: str, **params: Any) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout (page hébergée).
    Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
    """
    try:
        return _as_dict(stripe.checkout.Session.create(api_key=api_key, **params))
    except stripe.StripeError as e:
        logger.exception("stripe_client.create_checkout_session failed")
        raise UpstreamUnavailable(str(getattr(e, "user_message", None) or "Stripe indisponible"))

def signature_matches(payload: str, signature_header: str, webhook_secret: str) -> bool:
    """
    Vérifie l'en-tête Stripe-Signature (HMAC SHA-256 + tolérance d'horodatage) pour un secret.
    False si la signature ne correspond pas à ce secret.
    """
    try:
        stripe.WebhookSignature.verify_header(
            payload, signature_header, webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
        )
        return True
    except stripe.SignatureVerificationError:
        return False
