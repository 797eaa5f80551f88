"""
Attribution serveur d'un achat confirmé (meilleur effort, ne lève jamais).

- event_id = "purchase_<order_id>" (repli: id du PaymentIntent), identique au pixel de la page de remerciement.
- fbc: attribut _fbc du panier, sinon reconstruit "fb.1.<création session en ms>.<fbclid>".
- UTM last-click (_wt_last_*) et first-click (_wt_first_*) lus dans les attributs du panier.
- Résultat (sent/failed) enregistré sur la session dans capi_tracking.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from checkout import config
from checkout.sessions import repository as sessions_repo
from checkout.shopify.orders import PaymentConfirmation
from . import capi

logger = logging.getLogger(__name__)

UTM_FIELDS = ("source", "medium", "campaign", "content", "term")

def event_id_for(order_id: Any, payment_intent_id: str) -> str:
    return f"purchase_{order_id}" if order_id else f"purchase_{payment_intent_id}"

def _created_at_ms(created_at: Any) -> int:
    if isinstance(created_at, (int, float)):
        return int(created_at)
    try:
        return int(datetime.fromisoformat(str(created_at)).timestamp() * 1000)
    except (TypeError, ValueError):
        return int(datetime.now(timezone.utc).timestamp() * 1000)

def click_ids(attributes: Dict[str, Any], created_at: Any) -> Dict[str, Optional[str]]:
    fbc = attributes.get("_fbc") or None
    fbclid = attributes.get("_wt_last_fbclid")
    if not fbc and fbclid:
        fbc = f"fb.1.{_created_at_ms(created_at)}.{fbclid}"
    return {"fbp": attributes.get("_fbp") or None, "fbc": fbc}

def build_custom_data(snapshot: Dict[str, Any], confirmation: PaymentConfirmation, attributes: Dict[str, Any]) -> Dict[str, Any]:
    items = snapshot.get("items") or []
    contents = []
    for item in items:
        quantity = int(item.get("quantity") or 0)
        line = int(item.get("line_price_cents") or 0)
        contents.append({
            "id": str(item.get("variant_id") or item.get("id") or ""),
            "quantity": quantity,
            "item_price": round(line / quantity / 100, 2) if quantity else 0,
        })
    data: Dict[str, Any] = {
        "currency": confirmation.currency.upper(),
        "value": confirmation.amount_cents / 100,
        "content_ids": [c["id"] for c in contents],
        "contents": contents,
        "num_items": sum(c["quantity"] for c in contents),
        "content_type": "product",
    }
    for field in UTM_FIELDS:
        value = attributes.get(f"_wt_last_{field}")
        if value:
            data[f"utm_{field}"] = value
    for field in ("source", "campaign"):
        value = attributes.get(f"_wt_first_{field}")
        if value:
            data[f"utm_first_{field}"] = value
    return data

# module checkout.attribution.service
def report_purchase(
    confirmation: PaymentConfirmation,
    snapshot: Dict[str, Any],
    order_id: Any,
) -> Optional[Dict[str, Any]]:
    """
    Envoie l'événement et persiste capi_tracking sur la session.
    None (rien d'envoyé, rien d'enregistré) si pixel ou token absents.
    """
    if not config.FB_PIXEL_ID or not config.FB_CAPI_ACCESS_TOKEN:
        logger.info("attribution.service.report_purchase skipped (pixel/token non configurés)")
        return None

    session_id = snapshot.get("session_id")
    event_id = event_id_for(order_id, confirmation.payment_intent_id)
    tracking: Dict[str, Any]
    try:
        attributes = ((snapshot.get("raw_cart") or {}).get("attributes")) or {}
        ids = click_ids(attributes, snapshot.get("created_at"))
        event = capi.build_event(
            event_id=event_id,
            user_data=capi.build_user_data(
                snapshot.get("customer") or {},
                client_ip=snapshot.get("client_ip"),
                user_agent=snapshot.get("user_agent"),
                fbp=ids["fbp"],
                fbc=ids["fbc"],
            ),
            custom_data=build_custom_data(snapshot, confirmation, attributes),
            event_source_url=f"{config.CHECKOUT_DOMAIN}/thank-you",
        )
        body = capi.send_event(event)
        tracking = {
            "status": "sent",
            "event_id": event_id,
            "fbtrace_id": body.get("fbtrace_id"),
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }
        logger.info("attribution.service.report_purchase sent event_id=%s", event_id)
    except Exception as e:
        logger.exception("attribution.service.report_purchase failed event_id=%s", event_id)
        tracking = {
            "status": "failed",
            "event_id": event_id,
            "error": str(e),
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }

    if session_id:
        try:
            sessions_repo.update_session(session_id, {"capi_tracking": tracking})
        except Exception:
            logger.exception("attribution.service.report_purchase persist failed session_id=%s", session_id)
    return tracking
