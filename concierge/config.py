import logging
import os
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _read_secret(env_name: str, secret_paths: List[str]) -> Optional[str]:
    """Read a secret from the environment, then from mounted secret files"""
    value = os.getenv(env_name)
    if value:
        return value.strip()

    for path in secret_paths:
        try:
            with open(path, "r") as f:
                value = f.read().strip()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning(f"Error reading secret {path}: {e}")
            continue
        if value:
            return value

    return None


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SERVICE_NAME = "storefront-concierge"
    VERSION = "1.0.0"

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./concierge.db")

    # upstream responders
    DEFAULT_WEBHOOK_URL = os.getenv("N8N_WEBHOOK_URL")
    BYOK_WEBHOOK_URL = os.getenv("N8N_BYOK_WEBHOOK_URL")
    WEBHOOK_API_KEY = _read_secret(
        "N8N_API_KEY",
        ["/etc/secrets/n8n-api-key", "/var/secrets/n8n-api-key"],
    )
    WEBHOOK_TIMEOUT = float(os.getenv("WEBHOOK_TIMEOUT", "25"))
    ALLOW_CUSTOM_TO_PLAN_FALLTHROUGH = _env_flag("ALLOW_CUSTOM_TO_PLAN_FALLTHROUGH")

    # storefront catalog
    SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2024-10")
    CATALOG_TIMEOUT = float(os.getenv("CATALOG_TIMEOUT", "10"))
    CATALOG_PAGE_SIZE = 8

    # conversations
    SESSION_WINDOW_HOURS = int(os.getenv("SESSION_WINDOW_HOURS", "24"))
    HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "10"))

    UPGRADE_URL = os.getenv("UPGRADE_URL", "/app/billing")
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]
