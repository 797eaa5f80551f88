import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from checkout.accounts.rotation import RoundRobinCursor
from checkout.utils.rate_limit import client_ip, optional_rate_limit
from . import service as payments_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["Payments API"])

class PaymentIntentIn(BaseModel):
    sessionId: str = Field(min_length=1)
    customer: Optional[Dict[str, Any]] = None
    shippingCents: Optional[int] = None

class HostedCheckoutIn(BaseModel):
    snapshot: Dict[str, Any] = Field(default_factory=dict)

class UpsellChargeIn(BaseModel):
    sessionId: str = ""
    variantId: Optional[Any] = None
    priceCents: Optional[int] = None
    productTitle: str = ""
    variantTitle: str = ""
    image: Optional[str] = None

def _round_robin(request: Request) -> RoundRobinCursor:
    cursor = getattr(request.app.state, "round_robin", None)
    if cursor is None:
        cursor = RoundRobinCursor()
        request.app.state.round_robin = cursor
    return cursor

def _hosted_snapshot(raw: Dict[str, Any]) -> Dict[str, Any]:
    # Clés camelCase du front -> snake_case du service
    snapshot = dict(raw)
    if "totalAmount" in snapshot and "total_cents" not in snapshot:
        snapshot["total_cents"] = snapshot.pop("totalAmount")
    if "lineItems" in snapshot and "line_items" not in snapshot:
        snapshot["line_items"] = snapshot.pop("lineItems")
    return snapshot

# module checkout.payments.views
@router.post("/payment-intent", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def create_payment_intent(body: PaymentIntentIn, request: Request):
    """
    PaymentIntent de la session (création paresseuse, réutilisation au rechargement).
    - Entrée JSON: { sessionId, customer?, shippingCents? }
    - Sortie: { clientSecret, paymentIntentId, publishableKey, accountUsed }
    - Erreurs: 404 session inconnue, 400 montant invalide, 500 aucun compte actif, 502 Stripe
    """
    result = payments_service.ensure_payment_intent(
        body.sessionId,
        customer=body.customer,
        shipping_cents_override=body.shippingCents,
        client_ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return {
        "clientSecret": result["client_secret"],
        "paymentIntentId": result["payment_intent_id"],
        "publishableKey": result["publishable_key"],
        "accountUsed": result["account_label"],
    }

@router.post("/payments/checkout", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_hosted_checkout(body: HostedCheckoutIn, request: Request):
    """
    Checkout Stripe hébergé (tourniquet sur les comptes ayant une clé secrète).
    - Entrée JSON: { snapshot: { lineItems|line_items, currency, totalAmount?, shipping?, tax?, customer? } }
    - Sortie: { url, sessionId }
    """
    result = payments_service.create_hosted_checkout(_hosted_snapshot(body.snapshot), _round_robin(request))
    return {"url": result["url"], "sessionId": result["session_id"]}

@router.post("/upsell-charge", dependencies=[Depends(optional_rate_limit(times=5, seconds=60))])
def upsell_charge(body: UpsellChargeIn):
    """
    Débit off-session d'un produit complémentaire sur la carte enregistrée.
    - 400: paramètres manquants, commande non payée, upsell déjà débité
    - 402: paiement refusé / authentification requise
    """
    result = payments_service.charge_upsell(
        body.sessionId,
        body.variantId,
        body.priceCents,
        product_title=body.productTitle,
        variant_title=body.variantTitle,
        image=body.image,
    )
    return {
        "success": result["success"],
        "paymentIntentId": result["payment_intent_id"],
        "shopifyUpdated": result["shopify_updated"],
    }
