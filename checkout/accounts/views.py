import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from checkout.utils.security import require_admin_key
from . import service as accounts_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/config", tags=["Configuration"], dependencies=[Depends(require_admin_key)])

class ShopifyConfigIn(BaseModel):
    shop_domain: Optional[str] = None
    admin_token: Optional[str] = None
    api_version: Optional[str] = None
    storefront_token: Optional[str] = None

class AccountIn(BaseModel):
    label: Optional[str] = None
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    active: Optional[bool] = None
    order: Optional[int] = None
    merchant_site: Optional[str] = None

class ConfigIn(BaseModel):
    checkout_domain: Optional[str] = None
    default_currency: Optional[str] = None
    shopify: Optional[ShopifyConfigIn] = None
    stripe_accounts: List[AccountIn] = Field(default_factory=list)

# module checkout.accounts.views
@router.get("")
def get_config() -> Dict[str, Any]:
    """
    Configuration courante, secrets masqués (write-only).
    - Sécurité: ADMIN_API_KEY (Bearer ou X-Admin-Key)
    """
    return accounts_service.public_config()

@router.post("")
def post_config(body: ConfigIn) -> Dict[str, Any]:
    """
    Enregistre la configuration (onboarding).
    - Champs absents: valeur stockée conservée.
    - Secrets vides: valeur stockée conservée.
    """
    payload = body.model_dump(exclude_none=True)
    if body.shopify is not None:
        payload["shopify"] = body.shopify.model_dump(exclude_none=True)
    payload["stripe_accounts"] = [a.model_dump(exclude_none=True) for a in body.stripe_accounts]
    saved = accounts_service.save_config(payload)
    logger.info("accounts.views.post_config saved accounts=%s", sum(1 for a in saved["stripe_accounts"] if a["has_secret_key"]))
    return {"ok": True, "config": saved}
