"""
Sélection du compte Stripe (logique pure, pas d'I/O).

Deux stratégies distinctes, utilisées par des chemins différents:
- select_account: moins récemment utilisé avec cooldown (PaymentIntent, /payment-intent).
- RoundRobinCursor: tourniquet simple sur les comptes ayant une clé secrète (Checkout hébergé).
"""
import threading
import time
from typing import List, Optional

from checkout.config import ROTATION_COOLDOWN_HOURS
from checkout.errors import NoActiveAccount
from .models import ProcessorAccount

COOLDOWN_MS = ROTATION_COOLDOWN_HOURS * 60 * 60 * 1000

def now_ms() -> int:
    return int(time.time() * 1000)

# module checkout.accounts.rotation
def select_account(
    accounts: List[ProcessorAccount],
    now: Optional[int] = None,
    cooldown_ms: int = COOLDOWN_MS,
) -> ProcessorAccount:
    """
    Choisit le compte qui reçoit le prochain paiement.
    - Candidats: active + secret_key + publishable_key, sinon NoActiveAccount.
    - Tri croissant sur last_used_at (0 = jamais utilisé, passe en premier).
    - Le plus ancien est retenu s'il est hors cooldown ou s'il est seul candidat;
      sinon le premier hors cooldown; à défaut, le plus ancien quand même.
    """
    now = now_ms() if now is None else now
    candidates = sorted((a for a in accounts if a.is_eligible), key=lambda a: a.last_used_at or 0)
    if not candidates:
        raise NoActiveAccount()

    oldest = candidates[0]
    if len(candidates) == 1 or now - (oldest.last_used_at or 0) >= cooldown_ms:
        return oldest
    for account in candidates:
        if now - (account.last_used_at or 0) >= cooldown_ms:
            return account
    return oldest

def is_cooling_down(account: ProcessorAccount, now: Optional[int] = None, cooldown_ms: int = COOLDOWN_MS) -> bool:
    now = now_ms() if now is None else now
    return bool(account.last_used_at) and now - account.last_used_at < cooldown_ms

class RoundRobinCursor:
    """
    État de rotation explicite pour le Checkout hébergé.
    Local au processus et non persisté: repart de zéro au redémarrage.
    """

    def __init__(self):
        self._index = -1
        self._lock = threading.Lock()

    def next(self, accounts: List[ProcessorAccount]) -> ProcessorAccount:
        keyed = [a for a in accounts if a.secret_key]
        if not keyed:
            raise NoActiveAccount("Aucun compte Stripe configuré")
        with self._lock:
            self._index = (self._index + 1) % len(keyed)
            return keyed[self._index]
