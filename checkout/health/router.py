from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from checkout.infra.document_store import MemoryDocumentStore, get_store
from checkout.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/store")
def health_store():
    store = get_store()
    ok = store.ping()
    backend = "memory" if isinstance(store, MemoryDocumentStore) else "supabase"
    return JSONResponse({"backend": backend, "connect_ok": ok}, status_code=200 if ok else 503)

@router.get("/rate-limit")
def health_rate_limit(request: Request):
    return rate_limit_health_info(request)
