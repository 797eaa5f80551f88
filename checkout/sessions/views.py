import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from checkout.utils.rate_limit import client_ip, optional_rate_limit
from . import service as sessions_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/cart-session", tags=["Cart session"])

class CartSessionIn(BaseModel):
    cart: Dict[str, Any]

def _camel(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "sessionId": snapshot["session_id"],
        "currency": snapshot["currency"],
        "items": snapshot["items"],
        "subtotalCents": snapshot["subtotal_cents"],
        "shippingCents": snapshot["shipping_cents"],
        "totalCents": snapshot["total_cents"],
        "paymentIntentClientSecret": snapshot.get("payment_intent_client_secret"),
        "paymentStatus": snapshot.get("payment_status"),
        "shopifyOrderNumber": snapshot.get("shopify_order_number"),
    }

# module checkout.sessions.views
@router.post("", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def create_cart_session(body: CartSessionIn, request: Request):
    """
    Appelé par le thème de la boutique avec le contenu de /cart.js.
    - Entrée JSON: { "cart": { items, items_subtotal_price, total_price, currency, token, attributes } }
    - Capture IP et User-Agent (attribution serveur).
    - Sortie: snapshot normalisé + sessionId.
    """
    snapshot = sessions_service.create_from_cart(
        body.cart,
        client_ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _camel(snapshot)

@router.get("")
def get_cart_session(sessionId: str = ""):
    """Relit le snapshot (page checkout). 400 si sessionId manquant, 404 si inconnu."""
    if not sessionId:
        raise HTTPException(status_code=400, detail="sessionId manquant")
    return _camel(sessions_service.get_snapshot(sessionId))
