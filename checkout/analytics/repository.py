"""
Registre des événements d'achat côté front (collection "purchase_events", clé = session_id).
"""
from typing import Any, Dict, Optional

from checkout.infra.document_store import get_store

EVENTS_COLLECTION = "purchase_events"

# module checkout.analytics.repository
def get_event(session_id: str) -> Optional[Dict[str, Any]]:
    return get_store().get(EVENTS_COLLECTION, session_id)

def create_event(session_id: str, doc: Dict[str, Any]) -> bool:
    return get_store().create(EVENTS_COLLECTION, session_id, doc)
