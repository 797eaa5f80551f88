"""
Client HTTP Shopify (Admin REST + Storefront GraphQL) sur httpx.
Timeout borné (HTTP_TIMEOUT_SECONDS); erreurs réseau -> UpstreamUnavailable.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from checkout.config import HTTP_TIMEOUT_SECONDS
from checkout.errors import UpstreamUnavailable
from checkout.accounts.models import ShopifyConfig

logger = logging.getLogger(__name__)

def http_client() -> httpx.Client:
    # follow_redirects: discount_codes/lookup.json répond par un 303
    return httpx.Client(timeout=HTTP_TIMEOUT_SECONDS, follow_redirects=True)

# module checkout.shopify.client
def admin_request(
    cfg: ShopifyConfig,
    method: str,
    path: str,
    json: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, Any]] = None,
) -> httpx.Response:
    """
    Appel Admin REST: https://<shop>/admin/api/<version>/<path>
    La réponse est renvoyée telle quelle (l'appelant interprète le statut).
    """
    url = f"https://{cfg.shop_domain}/admin/api/{cfg.api_version}/{path.lstrip('/')}"
    headers = {
        "X-Shopify-Access-Token": cfg.admin_token,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    try:
        with http_client() as client:
            return client.request(method, url, json=json, params=params, headers=headers)
    except httpx.HTTPError as e:
        logger.warning("shopify.client.admin_request failed %s %s err=%s", method, path, e)
        raise UpstreamUnavailable("Shopify indisponible")

def storefront_graphql(cfg: ShopifyConfig, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
    """Appel Storefront GraphQL; 5xx et erreurs réseau -> UpstreamUnavailable."""
    url = f"https://{cfg.shop_domain}/api/{cfg.api_version}/graphql.json"
    headers = {
        "X-Shopify-Storefront-Access-Token": cfg.storefront_token,
        "Content-Type": "application/json",
    }
    try:
        with http_client() as client:
            res = client.post(url, json={"query": query, "variables": variables}, headers=headers)
    except httpx.HTTPError as e:
        logger.warning("shopify.client.storefront_graphql failed err=%s", e)
        raise UpstreamUnavailable("Shopify indisponible")
    if res.status_code >= 500:
        logger.warning("shopify.client.storefront_graphql status=%s", res.status_code)
        raise UpstreamUnavailable("Shopify indisponible")
    try:
        return res.json()
    except ValueError:
        raise UpstreamUnavailable("Réponse Shopify illisible")
