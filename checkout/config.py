# checkout.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Graph API, admin)
- Expose les constantes métier (devise par défaut, cooldown de rotation, frais de port fixes)
Les comptes Stripe et les identifiants Shopify ne vivent PAS ici: ils sont dans
le document de configuration (collection "config", document "global").
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

# Supabase: URL et clé service (le backend écrit toujours avec le rôle service)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# "supabase" (défaut) ou "memory" (mono-instance: dev local, tests)
STORE_BACKEND = _clean_env(os.getenv("STORE_BACKEND") or "supabase").lower()

# Checkout
DEFAULT_CURRENCY = _clean_env(os.getenv("DEFAULT_CURRENCY") or "eur").lower()
CHECKOUT_DOMAIN = _clean_env(os.getenv("CHECKOUT_DOMAIN") or "http://localhost:8000").rstrip("/")
ROTATION_COOLDOWN_HOURS = _int_env("ROTATION_COOLDOWN_HOURS", 6)
MAX_WEBHOOK_SECRETS = _int_env("MAX_WEBHOOK_SECRETS", 8)
ACCOUNT_SLOTS = 4

# Shopify: valeurs par défaut appliquées à la commande
SHOPIFY_API_VERSION = _clean_env(os.getenv("SHOPIFY_API_VERSION") or "2024-10")
ORDER_SHIPPING_CENTS = _int_env("ORDER_SHIPPING_CENTS", 590)
ORDER_SHIPPING_TITLE = os.getenv("ORDER_SHIPPING_TITLE", "Spedizione Standard")
PLACEHOLDER_PHONE = _clean_env(os.getenv("PLACEHOLDER_PHONE") or "+39 000 0000000")
DEFAULT_COUNTRY_CODE = _clean_env(os.getenv("DEFAULT_COUNTRY_CODE") or "IT").upper()

# Graph API (conversions serveur)
FB_PIXEL_ID = _clean_env(os.getenv("FB_PIXEL_ID") or "")
FB_CAPI_ACCESS_TOKEN = _clean_env(os.getenv("FB_CAPI_ACCESS_TOKEN") or "")
FB_GRAPH_VERSION = _clean_env(os.getenv("FB_GRAPH_VERSION") or "v18.0")

# Appels réseau sortants (Shopify, Graph API)
HTTP_TIMEOUT_SECONDS = float(_int_env("HTTP_TIMEOUT_SECONDS", 10))

# Admin: clé pour /config et /admin/*
ADMIN_API_KEY = _clean_env(os.getenv("ADMIN_API_KEY") or "")

# Sécurité HTTP
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
