import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Request

from checkout import config

logger = logging.getLogger(__name__)

def _presented_key(request: Request) -> Optional[str]:
    # Priorité au Bearer, fallback en-tête X-Admin-Key
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    return (request.headers.get("X-Admin-Key") or "").strip() or None

def require_admin_key(request: Request) -> None:
    """
    Protège les endpoints d'administration (/config, /admin/*).
    - ADMIN_API_KEY absent: 503 (jamais d'accès ouvert par défaut).
    - Clé absente ou différente: 401.
    """
    expected = config.ADMIN_API_KEY
    if not expected:
        logger.error("ADMIN_API_KEY non configurée: endpoints admin désactivés")
        raise HTTPException(status_code=503, detail="Administration non configurée")
    presented = _presented_key(request)
    if not presented or not secrets.compare_digest(presented, expected):
        raise HTTPException(status_code=401, detail="Non authentifié")

def mask_secret(value: str) -> str:
    """Pour les logs: 'sk_live_ab…wxyz (len:107)'."""
    if not value:
        return "(vide)"
    return f"{value[:10]}…{value[-4:]} (len:{len(value)})"
