"""
Module 'payments' (feature-first): point d'entrée public.
Réunit le client Stripe multi-comptes et les cas d'usage de paiement.
"""

from .stripe_client import (
    retrieve_payment_intent,
    list_payment_intents,
    update_payment_intent,
    create_payment_intent,
    find_or_create_customer,
    create_checkout_session,
    signature_matches,
)
from .service import ensure_payment_intent, create_hosted_checkout, charge_upsell

__all__ = [
    # stripe
    "retrieve_payment_intent",
    "list_payment_intents",
    "update_payment_intent",
    "create_payment_intent",
    "find_or_create_customer",
    "create_checkout_session",
    "signature_matches",
    # services
    "ensure_payment_intent",
    "create_hosted_checkout",
    "charge_upsell",
]
