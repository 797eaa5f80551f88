import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from checkout.utils.security import require_admin_key
from . import service as stats_service

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"], dependencies=[Depends(require_admin_key)])

# module checkout.stats.views
@router.get("/stats")
def get_stats(day: Optional[str] = None):
    """
    Statistiques d'un jour (défaut: aujourd'hui UTC) et vue de rotation.
    - day: YYYY-MM-DD, sinon 400
    """
    if day and not re.fullmatch(r"\d{4}-\d{2}-\d{2}", day):
        raise HTTPException(status_code=400, detail="day doit être au format YYYY-MM-DD")
    return stats_service.admin_overview(day)

@router.get("/transactions")
def get_transactions(limit: int = Query(default=100, ge=1, le=100)):
    """Derniers paiements de tous les comptes (codes de refus inclus) pour le support."""
    return stats_service.recent_transactions(limit)
