"""
Accès au document de configuration (collection "config", document singleton "global").
"""
import logging
from typing import List

from checkout.infra.document_store import get_store
from .models import CheckoutConfig, ProcessorAccount

logger = logging.getLogger(__name__)

CONFIG_COLLECTION = "config"
CONFIG_DOC_ID = "global"

# module checkout.accounts.repository
def load_config() -> CheckoutConfig:
    """
    Lit le document global et le normalise (4 slots de comptes toujours présents).
    - Document absent: configuration vide (aucun compte éligible).
    """
    raw = get_store().get(CONFIG_COLLECTION, CONFIG_DOC_ID) or {}
    return CheckoutConfig.model_validate(raw)

def save_config(cfg: CheckoutConfig) -> CheckoutConfig:
    """Écrit le document complet (écrase le précédent)."""
    get_store().set(CONFIG_COLLECTION, CONFIG_DOC_ID, cfg.model_dump())
    logger.info("accounts.repository.save_config accounts=%s", sum(1 for a in cfg.stripe_accounts if a.secret_key))
    return cfg

def save_accounts(accounts: List[ProcessorAccount]) -> None:
    """
    Réécrit uniquement la liste des comptes (read-modify-write du tableau complet, last-writer-wins).
    """
    get_store().merge(
        CONFIG_COLLECTION,
        CONFIG_DOC_ID,
        {"stripe_accounts": [a.model_dump() for a in accounts]},
    )
