import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from checkout.utils.rate_limit import optional_rate_limit
from . import service as analytics_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/analytics", tags=["Analytics"])

class PurchaseEventIn(BaseModel):
    # Champs libres du front (value, currency, utm, fbclid...) conservés
    model_config = ConfigDict(extra="allow")

    sessionId: str = ""

# module checkout.analytics.views
@router.post("/purchase", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def save_purchase_event(body: PurchaseEventIn):
    """
    Enregistre l'événement d'achat (dédoublonné par sessionId).
    - Sortie: { success, id, message }; success=false si déjà enregistré
    - 400 si sessionId manquant
    """
    return analytics_service.record_purchase_event(body.model_dump())

@router.get("/purchase")
def purchase_event_status(sessionId: str = ""):
    """{ exists, count } pour la session; 400 si sessionId manquant."""
    return analytics_service.purchase_event_exists(sessionId)
