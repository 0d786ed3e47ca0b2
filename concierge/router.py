"""
Response routing.

A reply comes from one of three responders: the shop's own webhook, the
webhook wired to the shop's plan tier, or the local template generator.
`ResponseRouter.select_responders` decides the order; each upstream gets
one retry before the next responder in the chain is tried. The local
generator never fails, so every routed message gets a reply.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, ValidationError

from concierge import classifier, plans, templates
from concierge.catalog import ProductCandidate
from concierge.classifier import Classification
from concierge.config import Config
from concierge.personalization import PersonalizationContext, personalization_boost

logger = logging.getLogger(__name__)

CUSTOM_WEBHOOK = "custom_webhook"
PLAN_WEBHOOK = "plan_webhook"
LOCAL_FALLBACK = "local_fallback"

MESSAGE_TYPES = {"product_recommendation", "general", "error", "limit_exceeded", "support"}
MAX_RECOMMENDATIONS = 8
POLICY_MIN_LENGTH = 50
POLICY_MAX_LENGTH = 500

# upstream replies that deny having product data
NO_PRODUCT_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"no\s+product\s+(information|info|data)",
        r"(don'?t|do\s+not)\s+have\s+(any\s+)?(product|access)",
        r"(can'?t|cannot|unable\s+to)\s+access\s+(the\s+|your\s+)?(product|catalog|store|inventory)",
        r"no\s+products?\s+(are\s+)?(available|found)",
        r"product\s+(information|data)\s+(is\s+)?(not|un)available",
    )
]

INVALID_URL_VALUES = {"", "https://", "http://", "null", "undefined", "none"}

STOPWORDS = {
    "the", "a", "an", "and", "or", "for", "of", "to", "in", "on", "with",
    "me", "my", "show", "find", "some", "any", "your",
}


class ResponderError(Exception):
    pass


class NormalizedReply(BaseModel):
    message: str
    message_type: Optional[str] = None
    recommendations: List[ProductCandidate] = []
    quick_replies: List[str] = []
    suggested_actions: List[Dict[str, Any]] = []
    confidence: Optional[float] = None
    requires_human_escalation: bool = False
    source: str = LOCAL_FALLBACK
    attempts: int = 0
    overridden: bool = False


@dataclass
class RouteContext:
    shop: str
    session_id: str
    classification: Classification
    plan: str = plans.DEFAULT_PLAN
    custom_webhook_url: Optional[str] = None
    customer_id: Optional[str] = None
    history: List[Dict[str, Any]] = field(default_factory=list)
    previous_messages: List[str] = field(default_factory=list)
    own_model_key: Optional[str] = None
    shipping_policy: Optional[str] = None
    return_policy: Optional[str] = None
    personalization: Optional[PersonalizationContext] = None

    @property
    def language(self) -> str:
        return self.classification.language


@dataclass
class RouteRequest:
    message: str
    products: List[ProductCandidate]
    context: RouteContext


def is_valid_webhook_url(url: Optional[str]) -> bool:
    """A configured webhook must be a real https URL, not a placeholder left behind by the settings form"""
    if not url or not isinstance(url, str):
        return False
    url = url.strip()
    if url.lower() in INVALID_URL_VALUES or len(url) <= 8:
        return False
    parsed = urlparse(url)
    return parsed.scheme == "https" and bool(parsed.netloc)


def mask_url(url: Optional[str]) -> str:
    if not url:
        return "<unset>"
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}/***" if parsed.netloc else "***"


def claims_no_products(text: str) -> bool:
    return any(p.search(text) for p in NO_PRODUCT_PATTERNS)


def rank_products(products: List[ProductCandidate], query: Optional[str],
                  personalization: Optional[PersonalizationContext] = None) -> List[ProductCandidate]:
    """Keyword score plus the shopper's personal boost. A title hit weighs more than a tag hit. Ties keep catalog order."""
    keywords = [w for w in re.findall(r"\w+", (query or "").lower()) if w not in STOPWORDS and len(w) > 1]
    if not keywords and (personalization is None or personalization.is_empty()):
        return list(products)

    def score(product: ProductCandidate) -> int:
        title = product.title.lower()
        tags = " ".join(product.tags).lower()
        total = personalization_boost(product, personalization)
        for word in keywords:
            if word in title:
                total += 5
            if word in tags:
                total += 2
        return total

    return sorted(products, key=score, reverse=True)


def _lenient_products(items: Any) -> List[ProductCandidate]:
    products = []
    if not isinstance(items, list):
        return products
    for item in items:
        try:
            products.append(ProductCandidate.model_validate(item))
        except ValidationError:
            continue
    return products


def _lenient_list(items: Any) -> List[Any]:
    return items if isinstance(items, list) else []


def normalize_reply(data: Any, request: RouteRequest, source: str) -> NormalizedReply:
    """Coerce whatever a webhook returned into a NormalizedReply, or raise ResponderError"""
    # some workflow tools wrap the reply in a single-element list
    if isinstance(data, list) and data and isinstance(data[0], dict):
        data = data[0]
    if not isinstance(data, dict):
        raise ResponderError(f"unexpected reply shape: {type(data).__name__}")

    text = None
    for key in ("message", "response", "output", "text"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            text = value.strip()
            break
    if not text:
        raise ResponderError("reply has no message text")

    recommendations = _lenient_products(data.get("recommendations")) or list(request.products)

    confidence = data.get("confidence")
    if not isinstance(confidence, (int, float)) or isinstance(confidence, bool) or not 0 <= confidence <= 1:
        confidence = None

    message_type = data.get("messageType")
    if message_type not in MESSAGE_TYPES:
        message_type = None

    return NormalizedReply(
        message=text,
        message_type=message_type,
        recommendations=recommendations[:MAX_RECOMMENDATIONS],
        quick_replies=[q.strip() for q in _lenient_list(data.get("quickReplies")) if isinstance(q, str) and q.strip()][:6],
        suggested_actions=[a for a in _lenient_list(data.get("suggestedActions")) if isinstance(a, dict)],
        confidence=float(confidence) if confidence is not None else None,
        requires_human_escalation=bool(data.get("requiresHumanEscalation", False)),
        source=source,
    )


class Responder:
    name = LOCAL_FALLBACK

    async def respond(self, request: RouteRequest) -> NormalizedReply:
        raise NotImplementedError


class WebhookResponder(Responder):
    def __init__(self, url: str, client: httpx.AsyncClient, api_key: Optional[str] = None,
                 timeout: float = Config.WEBHOOK_TIMEOUT):
        self.url = url
        self.client = client
        self.api_key = api_key
        self.timeout = timeout

    def build_payload(self, request: RouteRequest) -> Dict[str, Any]:
        ctx = request.context
        c = ctx.classification
        return {
            "userMessage": request.message,
            "sessionId": ctx.session_id,
            "products": [p.to_public() for p in request.products],
            "context": {
                "shopDomain": ctx.shop,
                "locale": c.language,
                "intent": c.intent,
                "sentiment": c.sentiment,
                "confidence": c.confidence,
                "customerId": ctx.customer_id,
                "plan": ctx.plan,
                "previousMessages": ctx.previous_messages,
                "conversationHistory": ctx.history,
                "messageCount": len(ctx.history),
                "isFirstMessage": not ctx.history,
                **(ctx.personalization or PersonalizationContext()).to_webhook(),
            },
        }

    def build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def respond(self, request: RouteRequest) -> NormalizedReply:
        try:
            response = await self.client.post(
                self.url,
                json=self.build_payload(request),
                headers=self.build_headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise ResponderError(f"{self.name} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise ResponderError(f"{self.name} returned HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ResponderError(f"{self.name} connection failed: {e}") from e
        except json.JSONDecodeError as e:
            raise ResponderError(f"{self.name} returned invalid JSON") from e

        try:
            return normalize_reply(data, request, self.name)
        except (TypeError, ValueError) as e:
            # pydantic's ValidationError is a ValueError
            raise ResponderError(f"{self.name} returned a malformed reply: {e}") from e


class CustomWebhookResponder(WebhookResponder):
    name = CUSTOM_WEBHOOK


class PlanWebhookResponder(WebhookResponder):
    name = PLAN_WEBHOOK

    def build_payload(self, request: RouteRequest) -> Dict[str, Any]:
        payload = super().build_payload(request)
        ctx = request.context
        if plans.get_plan(ctx.plan).uses_own_model_key and ctx.own_model_key:
            payload["context"]["openaiApiKey"] = ctx.own_model_key
        return payload


class LocalFallbackResponder(Responder):
    name = LOCAL_FALLBACK

    async def respond(self, request: RouteRequest) -> NormalizedReply:
        return self.build_reply(request)

    def build_reply(self, request: RouteRequest) -> NormalizedReply:
        ctx = request.context
        c = ctx.classification
        lang = c.language

        if c.is_support_intent:
            return NormalizedReply(
                message=self._support_text(ctx),
                message_type="support",
                quick_replies=templates.quick_replies_for(lang, "support"),
                confidence=c.confidence,
                source=self.name,
            )

        if request.products:
            products = request.products
            if c.intent == classifier.PRODUCT_SEARCH:
                products = rank_products(products, c.search_query, ctx.personalization)
            elif c.intent == classifier.RECOMMENDATIONS:
                products = rank_products(products, None, ctx.personalization)
            products = products[:MAX_RECOMMENDATIONS]

            key = c.intent if c.is_product_intent else "featured"
            lines = [templates.text_for(lang, key, query=c.search_query or "")]
            for i, p in enumerate(products, 1):
                lines.append(f"{i}. {p.title} - {p.price}" if p.price else f"{i}. {p.title}")

            return NormalizedReply(
                message="\n".join(lines),
                message_type="product_recommendation",
                recommendations=products,
                quick_replies=templates.quick_replies_for(lang, "products"),
                suggested_actions=self._product_actions(lang, products),
                confidence=c.confidence,
                source=self.name,
            )

        if c.is_product_intent:
            if c.intent == classifier.PRODUCT_SEARCH and c.search_query:
                text = templates.text_for(lang, "no_results", query=c.search_query)
            else:
                text = templates.text_for(lang, "no_products")
            return NormalizedReply(
                message=text,
                message_type="general",
                quick_replies=templates.quick_replies_for(lang, "default"),
                confidence=c.confidence,
                source=self.name,
            )

        return NormalizedReply(
            message=templates.text_for(lang, classifier.GENERAL_CHAT),
            message_type="general",
            quick_replies=templates.quick_replies_for(lang, "default"),
            confidence=c.confidence,
            source=self.name,
        )

    def _support_text(self, ctx: RouteContext) -> str:
        lang = ctx.language
        intent = ctx.classification.intent
        policy = None
        if intent == classifier.SHIPPING:
            policy = ctx.shipping_policy
        elif intent == classifier.RETURNS:
            policy = ctx.return_policy

        if policy and len(policy.strip()) > POLICY_MIN_LENGTH:
            body = policy.strip()
            if len(body) > POLICY_MAX_LENGTH:
                body = body[:POLICY_MAX_LENGTH].rstrip() + "..."
            return f"{templates.text_for(lang, 'policy_prefix')}\n\n{body}"

        return templates.text_for(lang, intent)

    def _product_actions(self, lang: str, products: List[ProductCandidate]) -> List[Dict[str, Any]]:
        actions = []
        for p in products[:3]:
            actions.append({
                "label": templates.action_label(lang, "view_product", p.title),
                "action": "view_product",
                "data": {"productId": p.id, "handle": p.handle},
            })
            if p.variant_id:
                actions.append({
                    "label": templates.action_label(lang, "add_to_cart", p.title),
                    "action": "add_to_cart",
                    "data": {"variantId": p.variant_id, "quantity": 1},
                })
        return actions


class ResponseRouter:
    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 default_webhook_url: Optional[str] = Config.DEFAULT_WEBHOOK_URL,
                 byok_webhook_url: Optional[str] = Config.BYOK_WEBHOOK_URL,
                 api_key: Optional[str] = Config.WEBHOOK_API_KEY,
                 timeout: float = Config.WEBHOOK_TIMEOUT,
                 allow_custom_to_plan_fallthrough: bool = Config.ALLOW_CUSTOM_TO_PLAN_FALLTHROUGH,
                 attempts_per_tier: int = 2):
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.default_webhook_url = default_webhook_url
        self.byok_webhook_url = byok_webhook_url
        self.api_key = api_key
        self.timeout = timeout
        self.allow_custom_to_plan_fallthrough = allow_custom_to_plan_fallthrough
        self.attempts_per_tier = attempts_per_tier
        self.local = LocalFallbackResponder()

    def plan_webhook_url(self, plan: str) -> Optional[str]:
        if plans.get_plan(plan).uses_own_model_key and self.byok_webhook_url:
            return self.byok_webhook_url
        return self.default_webhook_url

    def select_responders(self, context: RouteContext) -> List[Responder]:
        """Order in which responders are tried for this shop"""
        chain: List[Responder] = []
        plan_url = self.plan_webhook_url(context.plan)
        plan_responder = None
        if plan_url:
            plan_responder = PlanWebhookResponder(plan_url, self.client, self.api_key, self.timeout)

        if is_valid_webhook_url(context.custom_webhook_url):
            # the custom webhook is the shop's own cost model; don't bill the plan tier for its failures
            chain.append(CustomWebhookResponder(context.custom_webhook_url.strip(), self.client, None, self.timeout))
            if self.allow_custom_to_plan_fallthrough and plan_responder:
                chain.append(plan_responder)
        else:
            if context.custom_webhook_url:
                logger.warning(f"Ignoring invalid custom webhook for {context.shop}: {mask_url(context.custom_webhook_url)}")
            if plan_responder:
                chain.append(plan_responder)

        chain.append(self.local)
        return chain

    async def route(self, message: str, products: List[ProductCandidate], context: RouteContext) -> NormalizedReply:
        request = RouteRequest(message=message, products=list(products), context=context)
        attempts = 0

        for responder in self.select_responders(context):
            for attempt in range(1, self.attempts_per_tier + 1):
                attempts += 1
                try:
                    reply = await responder.respond(request)
                except ResponderError as e:
                    logger.warning(f"{responder.name} attempt {attempt} failed for {context.shop}: {e}")
                    continue

                reply.attempts = attempts
                logger.info(f"Reply for {context.shop} from {responder.name} after {attempts} attempt(s)")
                return self._check_product_claims(reply, request)

        # only reachable if a subclass makes the local responder fail
        reply = self.local.build_reply(request)
        reply.attempts = attempts
        return reply

    def _check_product_claims(self, reply: NormalizedReply, request: RouteRequest) -> NormalizedReply:
        if reply.source == LOCAL_FALLBACK or not request.products:
            return reply
        if not claims_no_products(reply.message):
            return reply

        logger.warning(f"{reply.source} claimed no product data with {len(request.products)} candidates; overriding")
        override = self.local.build_reply(request)
        override.attempts = reply.attempts
        override.overridden = True
        return override

    async def close(self):
        await self.client.aclose()
