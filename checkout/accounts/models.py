"""
Modèles du document de configuration (collection "config", document "global").
Les champs texte sont normalisés à la validation; les clés sont "squeezées"
(aucun espace, même interne) car elles sont souvent collées depuis un dashboard.
"""
import re
from typing import List

from pydantic import BaseModel, Field, field_validator

from checkout.config import ACCOUNT_SLOTS, DEFAULT_CURRENCY, SHOPIFY_API_VERSION

def _squeeze(v) -> str:
    return re.sub(r"\s+", "", str(v or ""))

class ProcessorAccount(BaseModel):
    label: str = ""
    secret_key: str = ""
    publishable_key: str = ""
    webhook_secret: str = ""
    active: bool = False
    order: int = 0
    merchant_site: str = ""
    last_used_at: int = 0  # epoch ms, 0 = jamais utilisé

    @field_validator("secret_key", "publishable_key", "webhook_secret", mode="before")
    @classmethod
    def _squeeze_keys(cls, v):
        return _squeeze(v)

    @field_validator("label", "merchant_site", mode="before")
    @classmethod
    def _strip(cls, v):
        return str(v or "").strip()

    @field_validator("last_used_at", "order", mode="before")
    @classmethod
    def _int_or_zero(cls, v):
        try:
            return int(v or 0)
        except (TypeError, ValueError):
            return 0

    @property
    def is_eligible(self) -> bool:
        """Éligible à la rotation: actif + clé secrète + clé publique."""
        return bool(self.active and self.secret_key and self.publishable_key)

    @property
    def can_verify_webhooks(self) -> bool:
        return bool(self.active and self.secret_key and self.webhook_secret)

class ShopifyConfig(BaseModel):
    shop_domain: str = ""
    admin_token: str = ""
    api_version: str = SHOPIFY_API_VERSION
    storefront_token: str = ""

    @field_validator("shop_domain", mode="before")
    @classmethod
    def _domain(cls, v):
        d = str(v or "").strip().lower()
        d = re.sub(r"^https?://", "", d)
        return d.rstrip("/")

    @field_validator("admin_token", "storefront_token", mode="before")
    @classmethod
    def _squeeze_tokens(cls, v):
        return _squeeze(v)

    @property
    def has_admin(self) -> bool:
        return bool(self.shop_domain and self.admin_token)

    @property
    def has_storefront(self) -> bool:
        return bool(self.shop_domain and self.storefront_token)

class CheckoutConfig(BaseModel):
    checkout_domain: str = ""
    default_currency: str = DEFAULT_CURRENCY
    shopify: ShopifyConfig = Field(default_factory=ShopifyConfig)
    stripe_accounts: List[ProcessorAccount] = Field(default_factory=list)

    @field_validator("default_currency", mode="before")
    @classmethod
    def _currency(cls, v):
        return (str(v or "").strip() or DEFAULT_CURRENCY).lower()

    @field_validator("stripe_accounts", mode="after")
    @classmethod
    def _four_slots(cls, accounts: List[ProcessorAccount]) -> List[ProcessorAccount]:
        """Toujours exactement ACCOUNT_SLOTS comptes (tronqué ou complété par des slots vides)."""
        slots = list(accounts[:ACCOUNT_SLOTS])
        while len(slots) < ACCOUNT_SLOTS:
            slots.append(ProcessorAccount(order=len(slots)))
        for idx, acc in enumerate(slots):
            if not acc.label:
                acc.label = f"Account {idx + 1}"
            if "order" not in acc.model_fields_set:
                acc.order = idx
        return slots
