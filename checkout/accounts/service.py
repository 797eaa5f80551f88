"""
Cas d'usage 'accounts': rotation persistée, vue publique et écriture de la configuration.
"""
from typing import Any, Dict, List, Optional
import logging

from checkout.errors import NoActiveAccount
from . import repository
from . import rotation
from .models import CheckoutConfig, ProcessorAccount, ShopifyConfig

logger = logging.getLogger(__name__)

# module checkout.accounts.service
def get_active_account(now: Optional[int] = None) -> ProcessorAccount:
    """
    Sélectionne un compte (rotation.select_account) puis persiste last_used_at=now pour son label.
    - Read-modify-write de la liste complète: deux requêtes concurrentes peuvent s'écraser
      (impact limité à la répartition de charge).
    - Un échec d'écriture n'empêche pas le paiement: la sélection est retournée quand même.
    """
    cfg = repository.load_config()
    now = rotation.now_ms() if now is None else now
    selected = rotation.select_account(cfg.stripe_accounts, now=now)

    updated = [
        a.model_copy(update={"last_used_at": now}) if a.label == selected.label else a
        for a in cfg.stripe_accounts
    ]
    try:
        repository.save_accounts(updated)
    except Exception:
        logger.exception("accounts.service.get_active_account persist failed label=%s", selected.label)

    logger.info("accounts.service.get_active_account selected=%s", selected.label)
    return selected.model_copy(update={"last_used_at": now})

def first_account_with_secret(accounts: List[ProcessorAccount]) -> ProcessorAccount:
    for a in accounts:
        if a.secret_key:
            return a
    raise NoActiveAccount()

def find_account(accounts: List[ProcessorAccount], label: Optional[str]) -> Optional[ProcessorAccount]:
    if not label:
        return None
    for a in accounts:
        if a.label == label and a.secret_key:
            return a
    return None

def webhook_accounts(cfg: CheckoutConfig, limit: int) -> List[ProcessorAccount]:
    """Comptes capables de vérifier un webhook, bornés à `limit` (vérification O(n) par livraison)."""
    accounts = [a for a in cfg.stripe_accounts if a.can_verify_webhooks]
    if len(accounts) > limit:
        logger.warning("accounts.service.webhook_accounts truncated %s -> %s", len(accounts), limit)
    return accounts[:limit]

def public_config(cfg: Optional[CheckoutConfig] = None) -> Dict[str, Any]:
    """
    Vue lisible par le client: les secrets ne sont jamais renvoyés (write-only).
    - secret_key / webhook_secret / admin_token / storefront_token -> "" + drapeaux has_*.
    - publishable_key est public par nature et reste visible.
    """
    cfg = cfg or repository.load_config()
    return {
        "checkout_domain": cfg.checkout_domain,
        "default_currency": cfg.default_currency,
        "shopify": {
            "shop_domain": cfg.shopify.shop_domain,
            "api_version": cfg.shopify.api_version,
            "admin_token": "",
            "storefront_token": "",
            "has_admin_token": bool(cfg.shopify.admin_token),
            "has_storefront_token": bool(cfg.shopify.storefront_token),
        },
        "stripe_accounts": [
            {
                "label": a.label,
                "publishable_key": a.publishable_key,
                "secret_key": "",
                "webhook_secret": "",
                "has_secret_key": bool(a.secret_key),
                "has_webhook_secret": bool(a.webhook_secret),
                "active": a.active,
                "order": a.order,
                "merchant_site": a.merchant_site,
                "last_used_at": a.last_used_at,
            }
            for a in cfg.stripe_accounts
        ],
    }

def save_config(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Enregistre la configuration envoyée par l'onboarding.
    - Un secret vide conserve la valeur stockée (le formulaire ne reçoit jamais les secrets).
    - last_used_at n'est pas modifiable depuis le client: la valeur stockée est conservée.
    """
    current = repository.load_config()

    shopify_in = dict(payload.get("shopify") or {})
    for secret in ("admin_token", "storefront_token"):
        if not str(shopify_in.get(secret) or "").strip():
            shopify_in[secret] = getattr(current.shopify, secret)
    shopify = ShopifyConfig.model_validate({**current.shopify.model_dump(), **shopify_in})

    incoming = list(payload.get("stripe_accounts") or [])
    accounts: List[Dict[str, Any]] = []
    for idx, stored in enumerate(current.stripe_accounts):
        data = dict(incoming[idx]) if idx < len(incoming) and incoming[idx] else {}
        merged = {**stored.model_dump(), **data}
        for secret in ("secret_key", "webhook_secret"):
            if not str(data.get(secret) or "").strip():
                merged[secret] = getattr(stored, secret)
        merged["last_used_at"] = stored.last_used_at
        accounts.append(merged)

    cfg = CheckoutConfig.model_validate({
        "checkout_domain": payload.get("checkout_domain", current.checkout_domain),
        "default_currency": payload.get("default_currency", current.default_currency),
        "shopify": shopify.model_dump(),
        "stripe_accounts": accounts,
    })
    repository.save_config(cfg)
    return public_config(cfg)
