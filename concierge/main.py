import logging
import os

import httpx

from concierge.api import create_app
from concierge.catalog import CatalogAdapter
from concierge.config import Config
from concierge.orchestrator import ChatOrchestrator
from concierge.router import ResponseRouter, mask_url
from concierge.store import ConversationStore, SettingsStore, make_engine

logging.basicConfig(level=getattr(logging, Config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

engine = make_engine(Config.DATABASE_URL)

orchestrator = ChatOrchestrator(
    store=ConversationStore(engine),
    settings_store=SettingsStore(engine),
    catalog=CatalogAdapter(httpx.AsyncClient(timeout=Config.CATALOG_TIMEOUT)),
    router=ResponseRouter(httpx.AsyncClient(timeout=Config.WEBHOOK_TIMEOUT)),
)

if Config.DEFAULT_WEBHOOK_URL:
    logger.info(f"Plan webhook: {mask_url(Config.DEFAULT_WEBHOOK_URL)}")
else:
    logger.warning("No plan webhook configured - replies will use local templates")

app = create_app(orchestrator)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
