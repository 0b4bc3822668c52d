# marketplace.config
from pathlib import Path
from decimal import Decimal
import os
from dotenv import load_dotenv

# Chemin du projet puis chargement explicite du .env racine
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du service marketplace.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, fournisseurs mobile money)
- Paramètres du checkout (devise, frais, timeout, politique de restock)
- Sécurité cookies, CORS/hosts
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _flag(name: str, default: str = "false") -> bool:
    return _clean_env(os.getenv(name, default)).lower() in ("1", "true", "yes")

# Supabase: URL et clés (anon pour la lecture côté utilisateur, service pour les écritures serveur)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# URL publique du service (callbacks fournisseurs, liens de paiement en attente)
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")

# Fournisseurs mobile money (Rwanda)
MTN_API_BASE_URL = _clean_env(os.getenv("MTN_API_BASE_URL") or "https://api.mtn.com").rstrip("/")
MTN_API_KEY = _clean_env(os.getenv("MTN_API_KEY") or "")
AIRTEL_API_BASE_URL = _clean_env(os.getenv("AIRTEL_API_BASE_URL") or "https://api.airtel.com").rstrip("/")
AIRTEL_API_KEY = _clean_env(os.getenv("AIRTEL_API_KEY") or "")

PAYMENT_CURRENCY = _clean_env(os.getenv("PAYMENT_CURRENCY") or "RWF")
PAYMENT_TIMEOUT_SECONDS = float(_clean_env(os.getenv("PAYMENT_TIMEOUT_SECONDS") or "15"))
PAYMENT_FEE_RATE = Decimal(_clean_env(os.getenv("PAYMENT_FEE_RATE") or "0.02"))

# Politique de compensation: remettre le stock quand l'initiation du paiement échoue
RESTOCK_ON_PAYMENT_FAILURE = _flag("RESTOCK_ON_PAYMENT_FAILURE", "true")

# Cookies / sécurité
COOKIE_SECURE = _flag("COOKIE_SECURE")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

# Rate limiting (fastapi-limiter)
RATE_LIMIT_REDIS_URL = _clean_env(os.getenv("RATE_LIMIT_REDIS_URL") or "redis://127.0.0.1:6379/0")

# Notifications SMS (confirmation de commande, changements de statut); non configuré: envoi ignoré
SMS_API_URL = _clean_env(os.getenv("SMS_API_URL") or "").rstrip("/")
SMS_API_KEY = _clean_env(os.getenv("SMS_API_KEY") or "")
SMS_SENDER_ID = _clean_env(os.getenv("SMS_SENDER_ID") or "ECommerceRW")
SMS_TIMEOUT_SECONDS = float(_clean_env(os.getenv("SMS_TIMEOUT_SECONDS") or "10"))
