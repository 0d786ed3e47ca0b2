import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from widget import config

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None,
                 payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def rejected(self) -> bool:
        """The server answered and refused; sending again won't change that"""
        return self.status_code is not None and 400 <= self.status_code < 500


def _error_payload(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class ChatTransport:
    def __init__(self, base_url: str = config.CONCIERGE_URL, shop_domain: str = config.SHOP_DOMAIN,
                 client: Optional[httpx.AsyncClient] = None, max_retries: int = config.MAX_RETRIES,
                 base_delay: float = config.RETRY_BASE_DELAY,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.base_url = base_url.rstrip("/")
        self.shop_domain = shop_domain
        self.client = client or httpx.AsyncClient(timeout=config.REQUEST_TIMEOUT)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-Shopify-Shop-Domain": self.shop_domain}

    async def send(self, text: str, session_id: Optional[str], customer_id: Optional[str] = None,
                   previous_messages: Optional[List[str]] = None, locale: Optional[str] = None,
                   client_message_id: Optional[str] = None) -> Dict[str, Any]:
        """POST a chat message, retrying network failures and 5xx with doubling delays"""
        payload = {
            "userMessage": text,
            "context": {
                "sessionId": session_id,
                "customerId": customer_id,
                "shopDomain": self.shop_domain,
                "previousMessages": previous_messages or [],
                "locale": locale,
                "clientMessageId": client_message_id,
            },
        }

        last_error = "Unknown error"
        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(f"{self.base_url}/chat", json=payload, headers=self.headers)
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if 400 <= status < 500:
                    raise DeliveryError(f"HTTP {status}", status_code=status,
                                        payload=_error_payload(e.response)) from e
                last_error = f"HTTP {status}"
            except httpx.TimeoutException:
                last_error = "Request timed out"
            except httpx.RequestError as e:
                last_error = f"Connection failed: {e}"
            except json.JSONDecodeError:
                last_error = "Invalid response from server"

            if attempt < self.max_retries - 1:
                delay = self.base_delay * (2 ** attempt)
                logger.warning(f"Chat delivery attempt {attempt + 1} failed ({last_error}); retrying in {delay}s")
                await self.sleep(delay)

        logger.error(f"Chat delivery failed after {self.max_retries} attempts: {last_error}")
        raise DeliveryError(last_error)

    async def track_click(self, product_id: str, session_id: Optional[str], handle: Optional[str] = None,
                          title: Optional[str] = None) -> bool:
        """Best effort, one attempt; a lost click is not worth holding up navigation for"""
        payload = {
            "productId": product_id,
            "productHandle": handle,
            "productTitle": title,
            "sessionId": session_id,
            "shop": self.shop_domain,
        }
        try:
            response = await self.client.post(f"{self.base_url}/track-product-click", json=payload, headers=self.headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Click tracking failed for {product_id}: {e}")
            return False
        return True

    async def fetch_settings(self) -> Dict[str, Any]:
        try:
            response = await self.client.get(
                f"{self.base_url}/widget-settings",
                params={"shop": self.shop_domain},
                headers=self.headers,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(f"HTTP {e.response.status_code}", status_code=e.response.status_code) from e
        except (httpx.RequestError, json.JSONDecodeError) as e:
            raise DeliveryError(f"Settings request failed: {e}") from e
        return data.get("settings") or {}

    async def close(self):
        await self.client.aclose()
