# bag2go.config
from pathlib import Path
import os
from typing import Dict
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du backend Bag2Go.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe, SendGrid, JWT)
- Expose la politique de fulfillment (prix, timeouts, leases, relances)
- Fournit les URLs de redirection du checkout (succès/annulation)
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _env_int(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

def _env_float(name: str, default: float) -> float:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default

def _parse_mapping(raw: str) -> Dict[str, str]:
    """
    Parse "AA=a@x.dev,DL=b@y.dev" en {"AA": "a@x.dev", "DL": "b@y.dev"}.
    - Ignore les entrées sans '=' ou avec une clé/valeur vide.
    """
    mapping: Dict[str, str] = {}
    for part in (raw or "").split(","):
        key, sep, value = part.partition("=")
        if not sep:
            continue
        key, value = key.strip().upper(), value.strip()
        if key and value:
            mapping[key] = value
    return mapping

APP_ENV = _clean_env(os.getenv("APP_ENV") or "development").lower()
IS_PRODUCTION = APP_ENV == "production"

# Supabase: URL et clé service (le store des commandes écrit en service-role)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# "supabase" (production) ou "memory" (dev local, démos)
ORDER_STORE_BACKEND = _clean_env(os.getenv("ORDER_STORE_BACKEND") or "supabase").lower()

# Jetons d'accès HS256 (compatibles Supabase Auth)
JWT_SECRET = _clean_env(os.getenv("JWT_SECRET") or os.getenv("SUPABASE_JWT_SECRET") or "")

# Cookies/ Sécurité
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]

# Stripe: clé privée, secret webhook et bornes réseau
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_TIMEOUT_SECONDS = _env_float("STRIPE_TIMEOUT_SECONDS", 10.0)
STRIPE_MAX_NETWORK_RETRIES = _env_int("STRIPE_MAX_NETWORK_RETRIES", 2)

# Tarification du checkout (montants en centimes)
BAG_PRICE_CENTS = _env_int("BAG_PRICE_CENTS", 2000)
CHECKOUT_CURRENCY = _clean_env(os.getenv("CHECKOUT_CURRENCY") or "usd").lower()
MAX_BAGS_PER_ORDER = _env_int("MAX_BAGS_PER_ORDER", 10)

# Pages de succès/annulation du checkout ({CHECKOUT_SESSION_ID} est remplacé par Stripe)
CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/summary?session_id={CHECKOUT_SESSION_ID}")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/schedule?cancelled=1")

# SendGrid: envoi des manifestes aux compagnies
SENDGRID_API_KEY = _clean_env(os.getenv("SENDGRID_API_KEY") or "")
SENDGRID_FROM = _clean_env(os.getenv("SENDGRID_FROM") or "manifests@bag2go.dev")
SENDGRID_API_URL = _clean_env(os.getenv("SENDGRID_API_URL") or "https://api.sendgrid.com/v3/mail/send")
MANIFEST_SANDBOX = (os.getenv("MANIFEST_SANDBOX", "false" if IS_PRODUCTION else "true").lower() == "true")
MANIFEST_TIMEOUT_SECONDS = _env_float("MANIFEST_TIMEOUT_SECONDS", 10.0)
MANIFEST_DEFAULT_EMAIL = _clean_env(os.getenv("MANIFEST_DEFAULT_EMAIL") or "ops@bag2go.dev")
AIRLINE_MANIFEST_EMAILS = _parse_mapping(os.getenv("AIRLINE_MANIFEST_EMAILS") or "")

# Fulfillment: lease de dispatch, relances et nettoyage
DISPATCH_LEASE_SECONDS = _env_int("DISPATCH_LEASE_SECONDS", 60)
NOTIFY_MAX_ATTEMPTS = _env_int("NOTIFY_MAX_ATTEMPTS", 5)
FULFILLMENT_RETRY_INTERVAL_SECONDS = _env_int("FULFILLMENT_RETRY_INTERVAL_SECONDS", 0)
ABANDONED_ORDER_MINUTES = _env_int("ABANDONED_ORDER_MINUTES", 30)

BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000")
