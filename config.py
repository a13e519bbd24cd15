import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


# -----------------------------
# Runtime
# -----------------------------
APP_ENV = os.getenv("APP_ENV", "development")
PORT = int(os.getenv("PORT", 5000))

# -----------------------------
# Database
# -----------------------------
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "arcxzone")

# -----------------------------
# Security
# -----------------------------
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-key-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", 60 * 24))  # 1 day

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@arcxzone.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "securePassword123!")

CORS_ORIGINS = _env_list("CORS_ORIGINS", "http://localhost:5173,https://arc-xzone-webapp.vercel.app")

# -----------------------------
# Rate limiting
# -----------------------------
RATE_LIMIT_ENABLED = _env_flag("RATE_LIMIT_ENABLED", "true")
API_RATE_LIMIT = os.getenv("API_RATE_LIMIT", "100/15minutes")
SEARCH_RATE_LIMIT = os.getenv("SEARCH_RATE_LIMIT", "30/minute")

# -----------------------------
# Logging
# -----------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = _env_flag("LOG_JSON", "0")
LOG_TO_FILE = _env_flag("LOG_TO_FILE", "0")
LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_FILE = os.getenv("LOG_FILE", "access.log")
