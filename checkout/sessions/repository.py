"""
Accès aux documents de session (collection "checkout_sessions", clé = session_id).
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from checkout.infra.document_store import get_store

logger = logging.getLogger(__name__)

SESSIONS_COLLECTION = "checkout_sessions"

# module checkout.sessions.repository
def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    if not session_id:
        return None
    return get_store().get(SESSIONS_COLLECTION, session_id)

def insert_session(session_id: str, doc: Dict[str, Any]) -> Dict[str, Any]:
    get_store().set(SESSIONS_COLLECTION, session_id, doc)
    return doc

def update_session(session_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
    """Fusion superficielle du patch; retourne le document résultant."""
    return get_store().merge(SESSIONS_COLLECTION, session_id, patch)

def claim_order(session_id: str) -> bool:
    """
    Réserve la création de commande pour cette session (écriture conditionnelle).
    - Pose order_claimed_at seulement si ni shopify_order_id ni order_claimed_at ne sont présents.
    - True: ce livreur crée la commande; False: déjà créée ou en cours ailleurs.
    """
    claimed = get_store().claim(
        SESSIONS_COLLECTION,
        session_id,
        "order_claimed_at",
        datetime.now(timezone.utc).isoformat(),
        unless=("shopify_order_id",),
    )
    if not claimed:
        logger.info("sessions.repository.claim_order lost session_id=%s", session_id)
    return claimed

def release_order_claim(session_id: str) -> None:
    """Libère le claim après un échec (la commande pourra être recréée manuellement)."""
    try:
        update_session(session_id, {"order_claimed_at": None})
    except Exception:
        logger.exception("sessions.repository.release_order_claim failed session_id=%s", session_id)
