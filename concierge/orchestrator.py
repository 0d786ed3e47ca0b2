import logging
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from concierge import classifier, plans, templates
from concierge.catalog import CatalogAdapter, ProductCandidate
from concierge.classifier import Classification
from concierge.personalization import PersonalizationContext
from concierge.router import NormalizedReply, ResponseRouter, RouteContext
from concierge.store import ConversationStore, HistoryEntry, NewMessage, QuotaStatus, RecentHistory, SettingsStore

logger = logging.getLogger(__name__)

CATALOG_ERROR = "catalog_error"


class ConversationLimitExceeded(Exception):
    def __init__(self, quota: QuotaStatus, upgrade: Optional[plans.PlanConfig] = None):
        super().__init__(f"Monthly conversation limit reached ({quota.used}/{quota.limit})")
        self.quota = quota
        self.upgrade = upgrade


@dataclass
class IncomingMessage:
    text: str
    shop: str
    session_id: Optional[str] = None
    customer_id: Optional[str] = None
    previous_messages: List[str] = field(default_factory=list)
    locale: Optional[str] = None
    client_message_id: Optional[str] = None


def generate_session_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


def derive_message_type(reply: NormalizedReply, classification: Classification) -> str:
    if reply.message_type:
        return reply.message_type
    if classification.is_support_intent:
        return "support"
    if reply.recommendations:
        return "product_recommendation"
    return "general"


class ChatOrchestrator:
    """Runs one shopper message through classification, quota, catalog, routing and persistence"""

    def __init__(self, store: ConversationStore, settings_store: SettingsStore,
                 catalog: CatalogAdapter, router: ResponseRouter):
        self.store = store
        self.settings_store = settings_store
        self.catalog = catalog
        self.router = router

    async def handle(self, incoming: IncomingMessage) -> Dict[str, Any]:
        started = time.monotonic()
        shop = incoming.shop
        session_id = incoming.session_id or generate_session_id()

        classification = classifier.classify(incoming.text, incoming.locale)
        settings = self.settings_store.get(shop)
        plan = plans.normalize_plan_code(settings.plan)

        logger.info(f"{shop}/{session_id}: intent={classification.intent} "
                    f"sentiment={classification.sentiment} language={classification.language}")

        if incoming.session_id and incoming.client_message_id:
            delivered = self._find_delivered(shop, incoming.session_id, incoming.client_message_id)
            if delivered is not None:
                # a queued message the client re-sent after losing our reply; no second quota or upstream call
                logger.info(f"Replaying reply for {shop}/{session_id} message {incoming.client_message_id}")
                return self._replay_envelope(delivered, session_id, classification, plan)

        quota = self.store.check_quota(shop, plan)
        if not quota.allowed:
            logger.warning(f"Conversation limit reached for {shop}: {quota.used}/{quota.limit}")
            raise ConversationLimitExceeded(quota, plans.next_upgrade(plan))

        history = self._load_history(shop, session_id)
        personalization = self._load_personalization(shop, session_id)

        products: List[ProductCandidate] = []
        catalog_error = None
        if classification.is_product_intent:
            result = await self.catalog.fetch_products(
                shop, classification, settings.access_token, preferences=personalization.preferences
            )
            if result.ok:
                products = result.products
            else:
                catalog_error = result.error

        if catalog_error is not None:
            reply = self._catalog_error_reply(classification, catalog_error.is_session_error)
        else:
            context = RouteContext(
                shop=shop,
                session_id=session_id,
                classification=classification,
                plan=plan,
                custom_webhook_url=settings.webhook_url,
                customer_id=incoming.customer_id,
                history=[entry.to_dict() for entry in history.messages],
                previous_messages=incoming.previous_messages,
                own_model_key=settings.openai_api_key,
                shipping_policy=settings.shipping_policy,
                return_policy=settings.return_policy,
                personalization=personalization,
            )
            reply = await self.router.route(incoming.text, products, context)

        message_type = derive_message_type(reply, classification)
        confidence = reply.confidence if reply.confidence is not None else classification.confidence
        escalate = reply.requires_human_escalation or (
            classification.sentiment == classifier.NEGATIVE and classification.is_support_intent
        )
        product_ids = [p.id for p in reply.recommendations]
        response_time_ms = round((time.monotonic() - started) * 1000, 1)

        self._persist_exchange(incoming, session_id, classification, reply, confidence, product_ids)
        self._learn(incoming, session_id, classification, product_ids)
        self._record_analytics(shop, classification, confidence, response_time_ms)

        return {
            "response": reply.message,
            "message": reply.message,
            "messageType": message_type,
            "recommendations": [p.to_public() for p in reply.recommendations],
            "quickReplies": reply.quick_replies,
            "suggestedActions": reply.suggested_actions,
            "confidence": confidence,
            "sentiment": classification.sentiment,
            "requiresHumanEscalation": escalate,
            "sessionId": session_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "analytics": {
                "intentDetected": classification.intent,
                "sentiment": classification.sentiment,
                "confidence": confidence,
                "productsShown": len(product_ids),
                "responseTime": response_time_ms,
                "isSupportIntent": classification.is_support_intent,
                "isProductIntent": classification.is_product_intent,
            },
            "metadata": {
                "source": reply.source,
                "attempts": reply.attempts,
                "language": classification.language,
                "plan": plan,
                "overridden": reply.overridden,
                "catalogError": catalog_error.kind if catalog_error else None,
                "isNewSession": history.is_new_session,
                "replayed": False,
            },
            "success": True,
        }

    def _load_history(self, shop: str, session_id: str) -> RecentHistory:
        try:
            return self.store.fetch_history(shop, session_id)
        except Exception as e:
            logger.error(f"History lookup failed for {shop}/{session_id}: {e}")
            return RecentHistory(conversation_session_id=None, is_new_session=True)

    def _load_personalization(self, shop: str, session_id: str) -> PersonalizationContext:
        try:
            return self.store.personalization_context(shop, session_id)
        except Exception as e:
            logger.error(f"Personalization lookup failed for {shop}/{session_id}: {e}")
            return PersonalizationContext()

    def _find_delivered(self, shop: str, session_id: str, client_message_id: str) -> Optional[HistoryEntry]:
        try:
            return self.store.find_delivered_reply(shop, session_id, client_message_id)
        except Exception as e:
            logger.error(f"Duplicate check failed for {shop}/{session_id}: {e}")
            return None

    def _replay_envelope(self, delivered: HistoryEntry, session_id: str, classification: Classification,
                         plan: str) -> Dict[str, Any]:
        return {
            "response": delivered.content,
            "message": delivered.content,
            "messageType": "product_recommendation" if delivered.products_shown else "general",
            "recommendations": [],
            "quickReplies": [],
            "suggestedActions": [],
            "confidence": classification.confidence,
            "sentiment": classification.sentiment,
            "requiresHumanEscalation": False,
            "sessionId": session_id,
            "timestamp": delivered.timestamp.isoformat(),
            "analytics": {
                "intentDetected": delivered.intent or classification.intent,
                "sentiment": classification.sentiment,
                "confidence": classification.confidence,
                "productsShown": len(delivered.products_shown),
                "responseTime": 0.0,
                "isSupportIntent": classification.is_support_intent,
                "isProductIntent": classification.is_product_intent,
            },
            "metadata": {
                "source": "replay",
                "attempts": 0,
                "language": classification.language,
                "plan": plan,
                "overridden": False,
                "catalogError": None,
                "isNewSession": False,
                "replayed": True,
            },
            "success": True,
        }

    def _catalog_error_reply(self, classification: Classification, session_error: bool) -> NormalizedReply:
        lang = classification.language
        if session_error:
            return NormalizedReply(
                message=templates.text_for(lang, "catalog_session"),
                message_type="error",
                quick_replies=templates.quick_replies_for(lang, "support"),
                confidence=classification.confidence,
                source=CATALOG_ERROR,
            )
        return NormalizedReply(
            message=templates.text_for(lang, "catalog_transient"),
            message_type="general",
            quick_replies=templates.quick_replies_for(lang, "retry"),
            confidence=classification.confidence,
            source=CATALOG_ERROR,
        )

    def _persist_exchange(self, incoming: IncomingMessage, session_id: str, classification: Classification,
                          reply: NormalizedReply, confidence: float, product_ids: List[str]):
        try:
            self.store.append_and_fetch_history(
                incoming.shop,
                session_id,
                NewMessage(
                    role="user",
                    content=incoming.text,
                    intent=classification.intent,
                    sentiment=classification.sentiment,
                    confidence=classification.confidence,
                    client_message_id=incoming.client_message_id,
                ),
                customer_id=incoming.customer_id,
            )
            self.store.append_and_fetch_history(
                incoming.shop,
                session_id,
                NewMessage(
                    role="assistant",
                    content=reply.message,
                    intent=classification.intent,
                    confidence=confidence,
                    products_shown=product_ids,
                ),
                customer_id=incoming.customer_id,
            )
        except Exception as e:
            logger.error(f"Failed to persist conversation for {incoming.shop}/{session_id}: {e}")

    def _learn(self, incoming: IncomingMessage, session_id: str, classification: Classification,
               product_ids: List[str]):
        try:
            self.store.learn_from_exchange(
                incoming.shop,
                session_id,
                incoming.text,
                classification.search_query,
                product_ids,
                customer_id=incoming.customer_id,
            )
        except Exception as e:
            logger.error(f"Failed to update preferences for {incoming.shop}/{session_id}: {e}")

    def _record_analytics(self, shop: str, classification: Classification, confidence: float,
                          response_time_ms: float):
        try:
            self.store.record_analytics(
                shop,
                classification.intent,
                classification.sentiment,
                confidence,
                response_time_ms,
            )
        except Exception as e:
            logger.error(f"Analytics update failed for {shop}: {e}")
