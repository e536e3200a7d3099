"""Runtime configuration read from the environment."""

import os


def _bool_env(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


ENVIRONMENT = os.getenv("ENVIRONMENT", "dev").lower()
IS_DEV = ENVIRONMENT == "dev"

# ---------- Database ----------
DATABASE_URL = os.getenv("APP_DATABASE_URL", "sqlite:///./dineflow.db")
USE_ALEMBIC = _bool_env("USE_ALEMBIC")

# ---------- Auth ----------
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "480"))
CRON_SECRET = os.getenv("CRON_SECRET")

# ---------- Billing ----------
VAT_RATE = float(os.getenv("VAT_RATE", "0.12"))
PAYMENT_METHODS = ("cash", "card", "qr_code", "digital")
RESTAURANT_TIMEZONE = os.getenv("RESTAURANT_TIMEZONE", "UTC")

# ---------- Reaper ----------
STALE_DINER_MINUTES = int(os.getenv("STALE_DINER_MINUTES", "120"))
RETENTION_HOURS = int(os.getenv("RETENTION_HOURS", "24"))
PURGE_BATCH_SIZE = int(os.getenv("PURGE_BATCH_SIZE", "100"))
PURGE_BATCH_DELAY_SECONDS = float(os.getenv("PURGE_BATCH_DELAY_SECONDS", "0.5"))
PURGE_TIME_BUDGET_SECONDS = float(os.getenv("PURGE_TIME_BUDGET_SECONDS", "30"))
REAPER_INTERVAL_SECONDS = int(os.getenv("REAPER_INTERVAL_SECONDS", "3600"))

# ---------- Storage retry ----------
STORAGE_RETRY_ATTEMPTS = int(os.getenv("STORAGE_RETRY_ATTEMPTS", "3"))
STORAGE_RETRY_BASE_DELAY = float(os.getenv("STORAGE_RETRY_BASE_DELAY", "1.0"))
STORAGE_RETRY_MAX_DELAY = float(os.getenv("STORAGE_RETRY_MAX_DELAY", "5.0"))

# ---------- HTTP ----------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
