import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from concierge import classifier
from concierge.classifier import Classification
from concierge.config import Config
from concierge.personalization import UserPreferences

logger = logging.getLogger(__name__)

SESSION_ERROR = "session"
TRANSIENT_ERROR = "transient"
PREFERENCE_QUERY_TERMS = 3

# graphql error text that means the stored access token is no longer usable
SESSION_ERROR_MARKERS = (
    "invalid api key or access token",
    "access token",
    "access denied",
    "unauthorized",
    "not approved",
)

PRODUCTS_QUERY = """
query Products($first: Int!, $query: String, $sortKey: ProductSortKeys, $reverse: Boolean) {
  products(first: $first, query: $query, sortKey: $sortKey, reverse: $reverse) {
    edges {
      node {
        id
        title
        handle
        tags
        totalInventory
        featuredImage { url }
        variants(first: 1) {
          edges { node { id price compareAtPrice } }
        }
      }
    }
  }
}
"""


class ProductCandidate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    handle: Optional[str] = None
    price: Optional[str] = None
    compare_at_price: Optional[str] = Field(default=None, alias="compareAtPrice")
    image: Optional[str] = None
    inventory: Optional[int] = None
    tags: List[str] = []
    variant_id: Optional[str] = Field(default=None, alias="variantId")

    @property
    def is_on_sale(self) -> bool:
        try:
            return self.compare_at_price is not None and float(self.compare_at_price) > float(self.price or 0)
        except ValueError:
            return False

    def to_public(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


@dataclass
class FetchError:
    kind: str
    detail: str

    @property
    def is_session_error(self) -> bool:
        return self.kind == SESSION_ERROR


@dataclass
class FetchResult:
    products: List[ProductCandidate] = field(default_factory=list)
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, kind: str, detail: str) -> "FetchResult":
        return cls(products=[], error=FetchError(kind=kind, detail=detail))


def build_query_variables(classification: Classification, page_size: int = Config.CATALOG_PAGE_SIZE,
                          preferences: Optional[UserPreferences] = None) -> Dict[str, Any]:
    """Upstream filter/sort expression for a product intent"""
    variables: Dict[str, Any] = {"first": page_size, "query": None, "sortKey": None, "reverse": False}
    intent = classification.intent

    if intent == classifier.BESTSELLERS:
        # recently updated stock stands in for sales rank
        variables.update(sortKey="UPDATED_AT", reverse=True, query="status:active")
    elif intent == classifier.NEW_ARRIVALS:
        variables.update(sortKey="CREATED_AT", reverse=True, query="status:active")
    elif intent == classifier.ON_SALE:
        variables.update(query="tag:sale OR tag:on-sale", sortKey="UPDATED_AT", reverse=True)
    elif intent == classifier.RECOMMENDATIONS:
        terms = [t.replace('"', "") for t in preferences.query_terms(PREFERENCE_QUERY_TERMS)] if preferences else []
        if terms:
            # lean on what the shopper has asked for before
            variables.update(
                query=" OR ".join(f'title:*{t}* OR tag:"{t}" OR product_type:"{t}"' for t in terms),
                sortKey="RELEVANCE",
            )
        else:
            variables.update(query="status:active", sortKey="UPDATED_AT", reverse=True)
    elif intent == classifier.PRODUCT_SEARCH:
        terms = (classification.search_query or "").replace('"', "").strip()
        if terms:
            variables.update(
                query=f'title:*{terms}* OR product_type:"{terms}" OR tag:"{terms}"',
                sortKey="RELEVANCE",
            )
        else:
            variables.update(query="status:active", sortKey="UPDATED_AT", reverse=True)

    return variables


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def parse_products(payload: Any) -> List[ProductCandidate]:
    edges = _as_list(_as_dict(_as_dict(_as_dict(payload).get("data")).get("products")).get("edges"))
    products = []
    for edge in edges:
        node = _as_dict(_as_dict(edge).get("node"))
        if not node:
            logger.warning(f"Skipping malformed product edge: {edge!r:.80}")
            continue
        variants = _as_list(_as_dict(node.get("variants")).get("edges"))
        variant = _as_dict(_as_dict(variants[0]).get("node")) if variants else {}
        image = _as_dict(node.get("featuredImage"))
        try:
            products.append(ProductCandidate(
                id=node["id"],
                title=node.get("title") or "",
                handle=node.get("handle"),
                price=variant.get("price"),
                compare_at_price=variant.get("compareAtPrice"),
                image=image.get("url"),
                inventory=node.get("totalInventory"),
                tags=node.get("tags") or [],
                variant_id=variant.get("id"),
            ))
        except (KeyError, ValidationError) as e:
            logger.warning(f"Skipping malformed product node: {e}")
    return products


def filter_products(products: List[ProductCandidate], intent: str) -> List[ProductCandidate]:
    available = [p for p in products if p.inventory is None or p.inventory > 0]
    if intent == classifier.ON_SALE:
        discounted = [p for p in available if p.is_on_sale]
        if discounted:
            return discounted
    return available


def _is_session_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in SESSION_ERROR_MARKERS)


class CatalogAdapter:
    def __init__(self, client: Optional[httpx.AsyncClient] = None, api_version: str = Config.SHOPIFY_API_VERSION,
                 timeout: float = Config.CATALOG_TIMEOUT, page_size: int = Config.CATALOG_PAGE_SIZE):
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.api_version = api_version
        self.timeout = timeout
        self.page_size = page_size

    def endpoint(self, shop: str) -> str:
        return f"https://{shop}/admin/api/{self.api_version}/graphql.json"

    async def fetch_products(self, shop: str, classification: Classification, access_token: Optional[str],
                             preferences: Optional[UserPreferences] = None) -> FetchResult:
        """Fetch product candidates for a product intent; failures come back tagged, never raised"""
        if not access_token:
            logger.warning(f"No storefront access token for {shop}")
            return FetchResult.failure(SESSION_ERROR, "missing access token")

        general = build_query_variables(classification, self.page_size)
        variables = build_query_variables(classification, self.page_size, preferences)
        result = await self._fetch(shop, classification, access_token, variables)
        if result.ok and not result.products and variables != general:
            logger.info(f"No products match the saved preferences for {shop}; using the general query")
            result = await self._fetch(shop, classification, access_token, general)
        return result

    async def _fetch(self, shop: str, classification: Classification, access_token: str,
                     variables: Dict[str, Any]) -> FetchResult:
        try:
            response = await self.client.post(
                self.endpoint(shop),
                headers={"X-Shopify-Access-Token": access_token},
                json={"query": PRODUCTS_QUERY, "variables": variables},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            logger.error(f"Catalog timeout for {shop}: {e}")
            return FetchResult.failure(TRANSIENT_ERROR, "timeout")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Catalog HTTP {status} for {shop}")
            if status in (401, 403):
                return FetchResult.failure(SESSION_ERROR, f"HTTP {status}")
            return FetchResult.failure(TRANSIENT_ERROR, f"HTTP {status}")
        except httpx.RequestError as e:
            logger.error(f"Catalog connection error for {shop}: {e}")
            return FetchResult.failure(TRANSIENT_ERROR, "connection error")
        except json.JSONDecodeError as e:
            logger.error(f"Catalog returned invalid JSON for {shop}: {e}")
            return FetchResult.failure(TRANSIENT_ERROR, "invalid response")

        if not isinstance(payload, dict):
            return FetchResult.failure(TRANSIENT_ERROR, "invalid response")

        errors = payload.get("errors")
        if errors:
            if isinstance(errors, list):
                detail = "; ".join(str((err or {}).get("message", err)) if isinstance(err, dict) else str(err)
                                   for err in errors)
            else:
                detail = str(errors)
            logger.error(f"Catalog GraphQL errors for {shop}: {detail}")
            kind = SESSION_ERROR if _is_session_message(detail) else TRANSIENT_ERROR
            return FetchResult.failure(kind, detail)

        if not isinstance(payload.get("data"), dict):
            logger.error(f"Catalog response for {shop} has no data object")
            return FetchResult.failure(TRANSIENT_ERROR, "invalid response")

        products = filter_products(parse_products(payload), classification.intent)
        logger.info(f"Fetched {len(products)} products for {shop} ({classification.intent})")
        return FetchResult(products=products[:self.page_size])

    async def close(self):
        await self.client.aclose()
