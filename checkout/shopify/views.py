import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from checkout.accounts import repository as accounts_repo
from checkout.utils.rate_limit import optional_rate_limit
from checkout.webhooks import service as webhooks_service
from . import cart as shopify_cart
from . import discounts

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["Shopify"])

class CreateOrderIn(BaseModel):
    sessionId: str = ""
    paymentIntentId: str = ""
    customer: Optional[Dict[str, Any]] = None

class DiscountIn(BaseModel):
    code: str = ""
    sessionId: Optional[str] = None

class CartIdIn(BaseModel):
    cartId: str = ""

# module checkout.shopify.views
@router.post("/shopify/create-order", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_order(body: CreateOrderIn):
    """
    Création manuelle de la commande (si le webhook n'est pas encore arrivé).
    - Entrée JSON: { sessionId, paymentIntentId, customer }
    - Sortie: { ok, orderId, orderNumber } (alreadyProcessed si la commande existait)
    - Erreurs: 400 paramètres / paiement non confirmé, 404 session, 502 échec Shopify
    """
    result = webhooks_service.create_order_for_session(body.sessionId, body.paymentIntentId, body.customer or {})
    response = {"ok": True, "orderId": result.get("order_id"), "orderNumber": result.get("order_number")}
    if result.get("already_processed"):
        response["alreadyProcessed"] = True
    return response

@router.post("/discount/apply", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def apply_discount(body: DiscountIn):
    """
    Vérifie un code de réduction (pourcentage uniquement).
    - Sortie: { ok, code, valueType, percentValue, priceRuleId }
    """
    cfg = accounts_repo.load_config()
    found = discounts.lookup_discount(cfg.shopify, body.code)
    return {
        "ok": True,
        "code": found["code"],
        "valueType": found["value_type"],
        "percentValue": found["percent_value"],
        "priceRuleId": found["price_rule_id"],
    }

@router.post("/clear-cart", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def clear_cart(body: CartIdIn):
    """Vide le panier boutique (token /cart.js ou gid). Panier déjà vide: succès."""
    cfg = accounts_repo.load_config()
    return shopify_cart.clear_cart(cfg.shopify, body.cartId)

@router.post("/shopify-cart", dependencies=[Depends(optional_rate_limit(times=30, seconds=60))])
def shopify_cart_snapshot(body: CartIdIn):
    """
    Lecture serveur d'un panier Storefront par cartId (token ou gid).
    - Sortie: { currency, items[{title, quantity, unitPrice, image}], subtotal, discountTotal, shipping, tax, total, email }
    """
    cfg = accounts_repo.load_config()
    snap = shopify_cart.fetch_cart_snapshot(cfg.shopify, body.cartId)
    return {
        "currency": snap["currency"],
        "items": [
            {"title": i["title"], "quantity": i["quantity"], "unitPrice": i["unit_price_cents"], "image": i["image"]}
            for i in snap["items"]
        ],
        "subtotal": snap["subtotal_cents"],
        "discountTotal": snap["discount_cents"],
        "shipping": snap["shipping_cents"],
        "tax": snap["tax_cents"],
        "total": snap["total_cents"],
        "email": snap["email"],
    }
