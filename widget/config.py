import os

from dotenv import load_dotenv

load_dotenv()

CONCIERGE_URL = os.getenv("CONCIERGE_URL", "http://localhost:8000")
STOREFRONT_URL = os.getenv("STOREFRONT_URL", "")
SHOP_DOMAIN = os.getenv("WIDGET_SHOP_DOMAIN", "demo-store.myshopify.com")
STORAGE_PATH = os.getenv("WIDGET_STORAGE_PATH", os.path.expanduser("~/.storefront-widget.json"))

REQUEST_TIMEOUT = float(os.getenv("WIDGET_REQUEST_TIMEOUT", "30"))
MAX_MESSAGE_LENGTH = 5000
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0
SETTINGS_POLL_INTERVAL = float(os.getenv("WIDGET_SETTINGS_POLL_INTERVAL", "30"))

HISTORY_KEY = "ai_chat_history"
QUEUE_KEY = "ai_message_queue"
HISTORY_LIMIT = 10
HISTORY_TTL_SECONDS = 24 * 60 * 60

DEFAULT_PRIMARY_COLOR = "#ee5cee"
