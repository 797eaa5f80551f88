"""
Stockage documentaire clé/valeur du checkout.

Quatre collections: "config" (document singleton "global"), "checkout_sessions"
(clé = session_id), "daily_stats" (clé = YYYY-MM-DD) et "purchase_events" (clé = session_id).

- SupabaseDocumentStore: tables (id text, data jsonb) + fonctions SQL (sql/schema.sql)
  pour les écritures qui doivent être atomiques (merge, claim conditionnel, incrément).
- MemoryDocumentStore: repli mono-processus (dev local, tests), mêmes garanties via un verrou.

get_store() retourne l'instance du processus selon STORE_BACKEND.
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import checkout.infra.supabase_client as supabase_client
from checkout.config import STORE_BACKEND
from checkout.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

class DocumentStore(ABC):
    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> bool:
        """Insère seulement si l'id est libre. True si ce client a créé le document."""

    @abstractmethod
    def merge(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """Fusion superficielle (clé par clé); crée le document s'il n'existe pas."""

    @abstractmethod
    def claim(self, collection: str, doc_id: str, field: str, value: Any, unless: Iterable[str] = ()) -> bool:
        """
        Écriture conditionnelle: pose `field` seulement si `field` et chaque champ de `unless`
        sont absents/vides. Retourne True si ce client a gagné le claim.
        """

    @abstractmethod
    def increment_daily_stats(self, day: str, account_label: str, amount_cents: int) -> Dict[str, Any]:
        ...

    @abstractmethod
    def ping(self) -> bool:
        ...

class MemoryDocumentStore(DocumentStore):
    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get(self, collection, doc_id):
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection, doc_id, data):
        with self._lock:
            self._data.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def create(self, collection, doc_id, data):
        with self._lock:
            docs = self._data.setdefault(collection, {})
            if doc_id in docs:
                return False
            docs[doc_id] = copy.deepcopy(data)
            return True

    def merge(self, collection, doc_id, patch):
        with self._lock:
            doc = self._data.setdefault(collection, {}).setdefault(doc_id, {})
            doc.update(copy.deepcopy(patch))
            return copy.deepcopy(doc)

    def claim(self, collection, doc_id, field, value, unless=()):
        with self._lock:
            doc = self._data.get(collection, {}).get(doc_id)
            if doc is None:
                return False
            if any(doc.get(f) for f in (field, *unless)):
                return False
            doc[field] = copy.deepcopy(value)
            return True

    def increment_daily_stats(self, day, account_label, amount_cents):
        with self._lock:
            docs = self._data.setdefault("daily_stats", {})
            doc = docs.get(day)
            if doc is None:
                doc = {"date": day, "total_cents": 0, "total_transactions": 0, "accounts": {}}
                docs[day] = doc
            acc = doc["accounts"].setdefault(account_label, {"total_cents": 0, "transaction_count": 0})
            acc["total_cents"] += int(amount_cents)
            acc["transaction_count"] += 1
            doc["total_cents"] += int(amount_cents)
            doc["total_transactions"] += 1
            doc["updated_at"] = _utc_now_iso()
            return copy.deepcopy(doc)

    def ping(self):
        return True

class SupabaseDocumentStore(DocumentStore):
    """
    Les erreurs réseau/PostgREST sont journalisées puis converties en UpstreamUnavailable:
    l'appelant décide s'il échoue (chemin requête) ou acquitte (chemin webhook).
    """

    def _client(self):
        return supabase_client.get_service_supabase()

    def get(self, collection, doc_id):
        try:
            res = (
                self._client()
                .table(collection)
                .select("data")
                .eq("id", doc_id)
                .limit(1)
                .execute()
            )
        except Exception:
            logger.exception("document_store.get failed collection=%s id=%s", collection, doc_id)
            raise UpstreamUnavailable("Document store indisponible")
        rows = res.data or []
        return (rows[0].get("data") or {}) if rows else None

    def set(self, collection, doc_id, data):
        try:
            (
                self._client()
                .table(collection)
                .upsert({"id": doc_id, "data": data, "updated_at": _utc_now_iso()})
                .execute()
            )
        except Exception:
            logger.exception("document_store.set failed collection=%s id=%s", collection, doc_id)
            raise UpstreamUnavailable("Document store indisponible")

    def create(self, collection, doc_id, data):
        # ON CONFLICT DO NOTHING: aucune ligne renvoyée si l'id existe déjà
        try:
            res = (
                self._client()
                .table(collection)
                .upsert(
                    {"id": doc_id, "data": data, "updated_at": _utc_now_iso()},
                    on_conflict="id",
                    ignore_duplicates=True,
                )
                .execute()
            )
        except Exception:
            logger.exception("document_store.create failed collection=%s id=%s", collection, doc_id)
            raise UpstreamUnavailable("Document store indisponible")
        return bool(res.data)

    def merge(self, collection, doc_id, patch):
        try:
            res = self._client().rpc(
                "merge_document",
                {"p_collection": collection, "p_id": doc_id, "p_patch": patch},
            ).execute()
        except Exception:
            logger.exception("document_store.merge failed collection=%s id=%s", collection, doc_id)
            raise UpstreamUnavailable("Document store indisponible")
        return res.data or {}

    def claim(self, collection, doc_id, field, value, unless=()):
        try:
            res = self._client().rpc(
                "claim_document_field",
                {
                    "p_collection": collection,
                    "p_id": doc_id,
                    "p_field": field,
                    "p_value": value,
                    "p_unless": list(unless),
                },
            ).execute()
        except Exception:
            logger.exception("document_store.claim failed collection=%s id=%s field=%s", collection, doc_id, field)
            raise UpstreamUnavailable("Document store indisponible")
        return bool(res.data)

    def increment_daily_stats(self, day, account_label, amount_cents):
        try:
            res = self._client().rpc(
                "increment_daily_stats",
                {"p_day": day, "p_account": account_label, "p_amount_cents": int(amount_cents)},
            ).execute()
        except Exception:
            logger.exception("document_store.increment_daily_stats failed day=%s account=%s", day, account_label)
            raise UpstreamUnavailable("Document store indisponible")
        return res.data or {}

    def ping(self):
        try:
            self._client().table("config").select("id").limit(1).execute()
            return True
        except Exception:
            logger.exception("document_store.ping failed")
            return False

_store: Optional[DocumentStore] = None

def get_store() -> DocumentStore:
    global _store
    if _store is None:
        if STORE_BACKEND == "memory":
            logger.warning("STORE_BACKEND=memory: état local au processus, à ne pas utiliser en multi-instance")
            _store = MemoryDocumentStore()
        else:
            _store = SupabaseDocumentStore()
    return _store
