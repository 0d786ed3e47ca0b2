import logging
from typing import Any, Dict, Optional

import httpx

from widget import config

logger = logging.getLogger(__name__)


class StorefrontCart:
    """Thin wrapper over the storefront's ajax cart endpoints. Errors come back as a status dict."""

    def __init__(self, storefront_url: str = config.STOREFRONT_URL, client: Optional[httpx.AsyncClient] = None):
        self.storefront_url = storefront_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=10.0)

    async def add(self, variant_id: str, quantity: int = 1) -> Dict[str, Any]:
        # storefront expects the numeric variant id, not the graphql gid
        numeric_id = str(variant_id).rsplit("/", 1)[-1]
        try:
            response = await self.client.post(
                f"{self.storefront_url}/cart/add.js",
                json={"items": [{"id": numeric_id, "quantity": max(1, int(quantity))}]},
            )
            response.raise_for_status()
            return {"status": "success", "cart": response.json()}
        except Exception as e:
            logger.error(f"Add to cart error: {e}")
            return {"status": "error", "message": str(e)}

    async def contents(self) -> Dict[str, Any]:
        try:
            response = await self.client.get(f"{self.storefront_url}/cart.js")
            response.raise_for_status()
            return {"status": "success", "cart": response.json()}
        except Exception as e:
            logger.error(f"Get cart error: {e}")
            return {"status": "error", "message": str(e)}

    def product_url(self, handle: Optional[str]) -> Optional[str]:
        if not handle:
            return None
        return f"{self.storefront_url}/products/{handle}"

    async def close(self):
        await self.client.aclose()
