"""
Panier boutique (Storefront GraphQL): vidage après paiement et lecture normalisée.
Vidage idempotent: un panier déjà vide est un succès sans mutation.
"""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List

from checkout.errors import InvalidRequest, UpstreamUnavailable
from checkout.accounts.models import ShopifyConfig
from . import client as shopify_client

logger = logging.getLogger(__name__)

CART_LINES_QUERY = """
query getCart($cartId: ID!) {
  cart(id: $cartId) {
    lines(first: 100) {
      edges { node { id } }
    }
  }
}
"""

CART_LINES_REMOVE = """
mutation cartLinesRemove($cartId: ID!, $lineIds: [ID!]!) {
  cartLinesRemove(cartId: $cartId, lineIds: $lineIds) {
    cart { id }
    userErrors { field message }
  }
}
"""

def cart_gid(cart_id: str) -> str:
    """Token /cart.js -> gid://shopify/Cart/<token> (inchangé s'il est déjà un gid)."""
    cart_id = (cart_id or "").strip()
    return cart_id if cart_id.startswith("gid://") else f"gid://shopify/Cart/{cart_id}"

# module checkout.shopify.cart
def clear_cart(cfg: ShopifyConfig, cart_id: str) -> Dict[str, Any]:
    """
    Supprime toutes les lignes (100 premières) du panier.
    Retour: {"success": True, "removed": <n>}
    """
    if not cart_id:
        raise InvalidRequest("cartId manquant")
    if not cfg.has_storefront:
        raise InvalidRequest("Configuration Storefront Shopify manquante")
    gid = cart_gid(cart_id)

    data = shopify_client.storefront_graphql(cfg, CART_LINES_QUERY, {"cartId": gid})
    if data.get("errors"):
        logger.error("shopify.cart.clear_cart graphql errors=%s", data["errors"])
        raise UpstreamUnavailable("Erreur GraphQL Shopify")
    edges = ((((data.get("data") or {}).get("cart") or {}).get("lines") or {}).get("edges")) or []
    line_ids: List[str] = [e["node"]["id"] for e in edges if (e.get("node") or {}).get("id")]
    if not line_ids:
        logger.info("shopify.cart.clear_cart already empty cart=%s", gid)
        return {"success": True, "removed": 0}

    result = shopify_client.storefront_graphql(cfg, CART_LINES_REMOVE, {"cartId": gid, "lineIds": line_ids})
    user_errors = (((result.get("data") or {}).get("cartLinesRemove") or {}).get("userErrors")) or []
    if result.get("errors") or user_errors:
        logger.error("shopify.cart.clear_cart remove failed errors=%s user_errors=%s", result.get("errors"), user_errors)
        raise UpstreamUnavailable("Suppression des lignes refusée par Shopify")
    logger.info("shopify.cart.clear_cart removed=%s cart=%s", len(line_ids), gid)
    return {"success": True, "removed": len(line_ids)}

def clear_cart_quietly(cfg: ShopifyConfig, cart_id: str) -> bool:
    """Variante meilleur effort (webhook): jamais d'exception."""
    try:
        clear_cart(cfg, cart_id)
        return True
    except Exception:
        logger.exception("shopify.cart.clear_cart_quietly failed cart=%s", cart_id)
        return False

CART_SNAPSHOT_QUERY = """
query cartSnapshot($cartId: ID!) {
  cart(id: $cartId) {
    id
    buyerIdentity { email }
    cost {
      subtotalAmount { amount currencyCode }
      totalAmount { amount currencyCode }
      totalTaxAmount { amount currencyCode }
    }
    lines(first: 50) {
      edges {
        node {
          quantity
          cost {
            amountPerQuantity { amount }
            totalAmount { amount }
          }
          merchandise {
            ... on ProductVariant {
              title
              product { title }
              image { url }
            }
          }
        }
      }
    }
  }
}
"""

def _amount_cents(amount: Any) -> int:
    # Montants Storefront en unités décimales ("19.90") -> centimes, arrondi demi-supérieur
    if amount is None:
        return 0
    try:
        return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return 0

def _snapshot_line(node: Dict[str, Any]) -> Dict[str, Any]:
    quantity = int(node.get("quantity") or 0)
    cost = node.get("cost") or {}
    line_total = _amount_cents((cost.get("totalAmount") or {}).get("amount"))
    per_unit = _amount_cents((cost.get("amountPerQuantity") or {}).get("amount"))
    merchandise = node.get("merchandise") or {}
    product_title = (merchandise.get("product") or {}).get("title")
    variant_title = merchandise.get("title")
    if product_title and variant_title:
        title = f"{product_title} - {variant_title}"
    else:
        title = product_title or variant_title or "Article"
    # Prix unitaire effectif (remises de ligne incluses)
    unit = int((Decimal(line_total) / quantity).quantize(Decimal("1"), rounding=ROUND_HALF_UP)) if quantity else per_unit
    return {
        "title": title,
        "quantity": quantity,
        "unit_price_cents": unit,
        "image": (merchandise.get("image") or {}).get("url") or "",
    }

def fetch_cart_snapshot(cfg: ShopifyConfig, cart_id: str) -> Dict[str, Any]:
    """
    Relit un panier Storefront côté serveur et le normalise en centimes.
    - remise estimée = sous-total + taxes - total (jamais négative)
    - frais de port non exposés par l'API panier: 0
    """
    if not cart_id:
        raise InvalidRequest("cartId manquant")
    if not cfg.has_storefront:
        raise InvalidRequest("Configuration Storefront Shopify manquante")
    data = shopify_client.storefront_graphql(cfg, CART_SNAPSHOT_QUERY, {"cartId": cart_gid(cart_id)})
    cart = (data.get("data") or {}).get("cart")
    if data.get("errors") or not cart:
        logger.error("shopify.cart.fetch_cart_snapshot no cart errors=%s", data.get("errors"))
        raise UpstreamUnavailable("Panier introuvable dans la réponse Shopify")

    cost = cart.get("cost") or {}
    subtotal = cost.get("subtotalAmount") or {}
    total = cost.get("totalAmount") or {}
    subtotal_cents = _amount_cents(subtotal.get("amount"))
    total_cents = _amount_cents(total.get("amount"))
    tax_cents = _amount_cents((cost.get("totalTaxAmount") or {}).get("amount"))
    edges = ((cart.get("lines") or {}).get("edges")) or []
    items = [_snapshot_line(e.get("node") or {}) for e in edges]
    logger.info("shopify.cart.fetch_cart_snapshot total=%s items=%s", total_cents, len(items))
    return {
        "currency": total.get("currencyCode") or subtotal.get("currencyCode") or "EUR",
        "items": items,
        "subtotal_cents": subtotal_cents,
        "discount_cents": max(0, subtotal_cents + tax_cents - total_cents),
        "shipping_cents": 0,
        "tax_cents": tax_cents,
        "total_cents": total_cents,
        "email": (cart.get("buyerIdentity") or {}).get("email") or "",
    }
