import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from . import service as webhooks_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])

# module checkout.webhooks.views
@router.post("/payments", include_in_schema=False)
async def payments_webhook(request: Request):
    """
    Webhook Stripe (tous comptes sur la même URL).
    - Signature: vérifiée contre le secret webhook de chaque compte actif
    - Réponses: 200 {received: true, ...} | 400 signature invalide | 500 aucun secret configuré
    Corps brut lu ici (async); vérification et création de commande dans le threadpool.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature") or ""
    ack = await run_in_threadpool(webhooks_service.handle_webhook, payload, sig_header)
    return JSONResponse(ack)
