"""
Envoi d'un événement Purchase à l'API Conversions (Graph API).
Les données personnelles sont hachées (SHA-256, minuscules, sans espaces) avant envoi.
"""
import hashlib
import logging
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from checkout import config
from checkout.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

def http_client() -> httpx.Client:
    return httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS)

def hash_value(value: str) -> str:
    return hashlib.sha256(value.strip().lower().encode("utf-8")).hexdigest()

def _hashed(value: Optional[str]) -> Optional[List[str]]:
    # L'API attend un tableau de hashes par champ
    if not value or not str(value).strip():
        return None
    return [hash_value(str(value))]

def build_user_data(
    customer: Dict[str, Any],
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    fbp: Optional[str] = None,
    fbc: Optional[str] = None,
) -> Dict[str, Any]:
    phone_digits = re.sub(r"\D", "", customer.get("phone") or "")
    country = (customer.get("country_code") or "")[:2]
    fields = {
        "em": _hashed(customer.get("email")),
        "ph": _hashed(phone_digits),
        "fn": _hashed(customer.get("first_name") or (customer.get("full_name") or "").split(" ")[0]),
        "ln": _hashed(customer.get("last_name") or " ".join((customer.get("full_name") or "").split(" ")[1:])),
        "ct": _hashed(customer.get("city")),
        "zp": _hashed(customer.get("postal_code")),
        "country": _hashed(country),
        "client_ip_address": client_ip or None,
        "client_user_agent": user_agent or None,
        "fbp": fbp or None,
        "fbc": fbc or None,
    }
    return {k: v for k, v in fields.items() if v}

def build_event(
    *,
    event_id: str,
    user_data: Dict[str, Any],
    custom_data: Dict[str, Any],
    event_source_url: str,
    event_time: Optional[int] = None,
) -> Dict[str, Any]:
    return {
        "event_name": "Purchase",
        "event_time": event_time or int(time.time()),
        "event_id": event_id,
        "action_source": "website",
        "event_source_url": event_source_url,
        "user_data": user_data,
        "custom_data": custom_data,
    }

# module checkout.attribution.capi
def send_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    POST https://graph.facebook.com/<version>/<pixel>/events
    Retour: corps JSON ({events_received, fbtrace_id}); erreurs -> UpstreamUnavailable.
    """
    url = f"https://graph.facebook.com/{config.FB_GRAPH_VERSION}/{config.FB_PIXEL_ID}/events"
    try:
        with http_client() as client:
            res = client.post(url, json={"data": [event], "access_token": config.FB_CAPI_ACCESS_TOKEN})
    except httpx.HTTPError as e:
        logger.warning("attribution.capi.send_event network error=%s", e)
        raise UpstreamUnavailable("Graph API indisponible")
    try:
        body = res.json()
    except ValueError:
        body = {}
    if res.status_code >= 400 or not body.get("events_received"):
        message = ((body.get("error") or {}).get("message")) or f"HTTP {res.status_code}"
        raise UpstreamUnavailable(message)
    return body
