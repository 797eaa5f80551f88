"""
Statistiques journalières (collection "daily_stats", clé YYYY-MM-DD en UTC).
L'incrément est transactionnel côté store: aucune mise à jour perdue entre webhooks concurrents.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from checkout.errors import UpstreamUnavailable
from checkout.infra.document_store import get_store
from checkout.accounts import repository as accounts_repo
from checkout.accounts import rotation
from checkout.payments import stripe_client

logger = logging.getLogger(__name__)

STATS_COLLECTION = "daily_stats"

def today_utc() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")

# module checkout.stats.service
def record_payment(account_label: str, amount_cents: int, day: Optional[str] = None) -> Dict[str, Any]:
    """Ajoute un paiement confirmé aux totaux du jour (global + par compte)."""
    day = day or today_utc()
    doc = get_store().increment_daily_stats(day, account_label, int(amount_cents))
    logger.info("stats.service.record_payment day=%s account=%s amount=%s", day, account_label, amount_cents)
    return doc

def get_day(day: Optional[str] = None) -> Dict[str, Any]:
    day = day or today_utc()
    doc = get_store().get(STATS_COLLECTION, day)
    return doc or {"date": day, "total_cents": 0, "total_transactions": 0, "accounts": {}}

def admin_overview(day: Optional[str] = None) -> Dict[str, Any]:
    """Totaux du jour + état de rotation de chaque compte (sans secrets)."""
    now = rotation.now_ms()
    cfg = accounts_repo.load_config()
    return {
        "stats": get_day(day),
        "rotation": [
            {
                "label": a.label,
                "active": a.active,
                "eligible": a.is_eligible,
                "last_used_at": a.last_used_at,
                "cooling_down": rotation.is_cooling_down(a, now),
            }
            for a in cfg.stripe_accounts
        ],
    }

def _transaction_row(account_label: str, intent: Dict[str, Any]) -> Dict[str, Any]:
    error = stripe_client.last_payment_error(intent)
    return {
        "id": intent.get("id"),
        "account": account_label,
        "amount": intent.get("amount"),
        "currency": intent.get("currency"),
        "status": intent.get("status"),
        "created": intent.get("created"),
        "email": intent.get("receipt_email") or None,
        "session_id": (intent.get("metadata") or {}).get("session_id"),
        "error_code": error.get("code"),
        "error_message": error.get("message"),
        "decline_code": error.get("decline_code"),
    }

def recent_transactions(limit: int = 100) -> Dict[str, Any]:
    """
    Derniers PaymentIntents de chaque compte actif, fusionnés par date décroissante.
    Un compte injoignable est listé dans failed_accounts sans bloquer les autres.
    """
    cfg = accounts_repo.load_config()
    rows: List[Dict[str, Any]] = []
    failed: List[str] = []
    for account in cfg.stripe_accounts:
        if not account.active or not account.secret_key:
            continue
        try:
            intents = stripe_client.list_payment_intents(account.secret_key, limit=limit)
        except UpstreamUnavailable:
            failed.append(account.label)
            continue
        rows.extend(_transaction_row(account.label, intent) for intent in intents)
    rows.sort(key=lambda r: r.get("created") or 0, reverse=True)
    logger.info("stats.service.recent_transactions rows=%s failed=%s", len(rows), failed)
    return {"transactions": rows[:limit], "failed_accounts": failed}
