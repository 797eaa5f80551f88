import logging
from datetime import datetime, timezone
from typing import Any, Dict

from checkout.errors import InvalidRequest
from . import repository as analytics_repo

logger = logging.getLogger(__name__)

# module checkout.analytics.service
def record_purchase_event(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Enregistre l'événement d'achat envoyé par la page de remerciement.
    - Un seul événement par sessionId: les envois suivants ne réécrivent rien (success=False).
    - Le contenu (value, utm, ...) est stocké tel quel, horodaté.
    """
    session_id = str(data.get("sessionId") or "").strip()
    if not session_id:
        raise InvalidRequest("sessionId est obligatoire")
    now = datetime.now(timezone.utc).isoformat()
    created = analytics_repo.create_event(session_id, {**data, "sessionId": session_id, "created_at": now, "updated_at": now})
    if not created:
        logger.info("analytics.service duplicate purchase event session_id=%s", session_id)
        return {"success": False, "id": session_id, "message": "Événement déjà enregistré"}
    utm = data.get("utm") if isinstance(data.get("utm"), dict) else {}
    logger.info("analytics.service purchase event saved session_id=%s value=%s campaign=%s",
                session_id, data.get("value"), utm.get("campaign") or "direct")
    return {"success": True, "id": session_id, "message": "Événement enregistré"}

def purchase_event_exists(session_id: str) -> Dict[str, Any]:
    if not session_id:
        raise InvalidRequest("sessionId manquant")
    exists = analytics_repo.get_event(session_id) is not None
    return {"exists": exists, "count": 1 if exists else 0}
