"""
Lecture d'un code de réduction Shopify (Admin REST).
Seules les règles en pourcentage sont acceptées par le checkout.
"""
import logging
from typing import Any, Dict

from fastapi import HTTPException

from checkout.errors import InvalidRequest, UpstreamUnavailable
from checkout.accounts.models import ShopifyConfig
from . import client as shopify_client

logger = logging.getLogger(__name__)

MISSING_SCOPE = "Le token Admin Shopify n'a pas les scopes read_discounts / read_price_rules"

# module checkout.shopify.discounts
def lookup_discount(cfg: ShopifyConfig, code: str) -> Dict[str, Any]:
    """
    discount_codes/lookup.json -> price_rules/<id>.json
    - 404: code inconnu ou inactif
    - 401/403 Shopify: scope manquant (erreur de configuration, 500)
    - règle non percentage: 400
    Retour: {code, value_type, percent_value, price_rule_id}
    """
    code = (code or "").strip()
    if not code:
        raise InvalidRequest("Code de réduction manquant")
    if not cfg.has_admin:
        raise HTTPException(status_code=500, detail="Configuration Shopify manquante")

    res = shopify_client.admin_request(cfg, "GET", "discount_codes/lookup.json", params={"code": code})
    if res.status_code == 404:
        raise HTTPException(status_code=404, detail="Code de réduction invalide ou inactif")
    if res.status_code in (401, 403):
        logger.error("shopify.discounts.lookup_discount missing scope status=%s", res.status_code)
        raise HTTPException(status_code=500, detail=MISSING_SCOPE)
    if res.status_code >= 400:
        logger.error("shopify.discounts.lookup_discount status=%s body=%s", res.status_code, res.text[:300])
        raise UpstreamUnavailable("Erreur Shopify (lookup du code)")

    discount_code = (res.json() or {}).get("discount_code") or {}
    price_rule_id = discount_code.get("price_rule_id")
    if not price_rule_id:
        raise InvalidRequest("Code non associé à une règle active")

    pr = shopify_client.admin_request(cfg, "GET", f"price_rules/{price_rule_id}.json")
    if pr.status_code in (401, 403):
        raise HTTPException(status_code=500, detail=MISSING_SCOPE)
    if pr.status_code >= 400:
        logger.error("shopify.discounts.lookup_discount price_rule status=%s", pr.status_code)
        raise UpstreamUnavailable("Erreur Shopify (règle de réduction)")
    rule = (pr.json() or {}).get("price_rule")
    if not rule:
        raise InvalidRequest("Règle de réduction introuvable")

    value_type = rule.get("value_type")
    if value_type != "percentage":
        raise InvalidRequest("Seules les réductions en pourcentage sont acceptées")
    try:
        percent = abs(float(rule.get("value") or 0))
    except (TypeError, ValueError):
        percent = 0.0
    return {
        "code": discount_code.get("code") or code,
        "value_type": value_type,
        "percent_value": percent,
        "price_rule_id": price_rule_id,
    }
