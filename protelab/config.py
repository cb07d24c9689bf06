"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24
MAX_RESULTS_RETURN = 1000

# ── Logging ──────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ── Object storage ───────────────────────────────────────────────────
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")
STORAGE_DIR = os.getenv("STORAGE_DIR", "./storage")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "order-images")
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

# ── Accounts ─────────────────────────────────────────────────────────
MIN_PASSWORD_LENGTH = 6

# Profile fields an admin may change through update_user_links.
USER_LINK_FIELDS = {
    "name", "nome_completo", "email", "role_extended", "filial_id",
    "clinica_id", "telefone", "documento", "cro", "cpf", "endereco",
    "cep", "cidade", "estado", "numero", "complemento", "ativo",
}

# ── Dashboard ────────────────────────────────────────────────────────
ANALYTICS_WINDOW_DAYS = 30
AGENDA_MAX_DAYS = 93

# ── Support chat ─────────────────────────────────────────────────────
SUPPORT_MESSAGE_MAX_LENGTH = 2000


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
