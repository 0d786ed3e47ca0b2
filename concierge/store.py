import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, create_engine, func, select

from concierge import plans
from concierge.config import Config
from concierge.models import (
    ChatAnalytics,
    ConversationSession,
    Message,
    ShopSettings,
    UserProfile,
    as_utc,
    utcnow,
)
from concierge.personalization import (
    PersonalizationContext,
    UserPreferences,
    learn_preferences,
    push_recent,
    track_interaction,
)

logger = logging.getLogger(__name__)


@dataclass
class NewMessage:
    role: str
    content: str
    intent: Optional[str] = None
    sentiment: Optional[str] = None
    confidence: Optional[float] = None
    products_shown: List[str] = field(default_factory=list)
    client_message_id: Optional[str] = None


@dataclass
class HistoryEntry:
    role: str
    content: str
    intent: Optional[str]
    sentiment: Optional[str]
    products_shown: List[str]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "intent": self.intent,
            "sentiment": self.sentiment,
            "productsShown": self.products_shown,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class RecentHistory:
    conversation_session_id: Optional[int]
    is_new_session: bool
    messages: List[HistoryEntry] = field(default_factory=list)


@dataclass
class QuotaStatus:
    allowed: bool
    used: int
    limit: Optional[int]  # None means unlimited
    plan: str = plans.DEFAULT_PLAN


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def next_month_start(now: datetime) -> datetime:
    start = month_start(now)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)


def make_engine(database_url: str = Config.DATABASE_URL, **kwargs) -> Engine:
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    engine = create_engine(database_url, **kwargs)
    # create all tables
    SQLModel.metadata.create_all(engine)
    return engine


def _load_json(raw: Optional[str], default: Any) -> Any:
    try:
        value = json.loads(raw) if raw else default
    except ValueError:
        return default
    return value if isinstance(value, type(default)) else default


def _to_entry(message: Message) -> HistoryEntry:
    products = _load_json(message.products_shown, [])
    return HistoryEntry(
        role=message.role,
        content=message.content,
        intent=message.intent,
        sentiment=message.sentiment,
        products_shown=products,
        timestamp=as_utc(message.timestamp),
    )


class ConversationStore:
    def __init__(self, engine: Engine, session_window: timedelta = timedelta(hours=Config.SESSION_WINDOW_HOURS),
                 history_limit: int = Config.HISTORY_LIMIT, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self.session_window = session_window
        self.history_limit = history_limit
        self.clock = clock

    def _profile(self, session: Session, shop: str, session_id: str) -> Optional[UserProfile]:
        return session.exec(
            select(UserProfile).where(UserProfile.shop == shop, UserProfile.session_id == session_id)
        ).first()

    def _get_or_create_profile(self, session: Session, shop: str, session_id: str,
                               customer_id: Optional[str]) -> UserProfile:
        profile = self._profile(session, shop, session_id)
        if profile is None:
            profile = UserProfile(shop=shop, session_id=session_id, customer_id=customer_id)
            session.add(profile)
            try:
                session.commit()
            except IntegrityError:
                # another request created it first
                session.rollback()
                profile = self._profile(session, shop, session_id)
            else:
                session.refresh(profile)
        elif customer_id and profile.customer_id != customer_id:
            profile.customer_id = customer_id
            session.add(profile)
            session.commit()
            session.refresh(profile)
        return profile

    def _active_session(self, session: Session, profile_id: int) -> Optional[ConversationSession]:
        cutoff = self.clock() - self.session_window
        return session.exec(
            select(ConversationSession)
            .where(ConversationSession.user_profile_id == profile_id)
            .where(ConversationSession.last_message_at >= cutoff)
            .order_by(ConversationSession.last_message_at.desc())
        ).first()

    def _recent(self, session: Session, conversation_session_id: int) -> List[HistoryEntry]:
        messages = session.exec(
            select(Message)
            .where(Message.conversation_session_id == conversation_session_id)
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .limit(self.history_limit)
        ).all()
        return [_to_entry(m) for m in reversed(messages)]

    def fetch_history(self, shop: str, session_id: str) -> RecentHistory:
        """Recent turns of the active session, oldest first; empty if the session went idle"""
        with Session(self.engine) as session:
            profile = self._profile(session, shop, session_id)
            if profile is None:
                return RecentHistory(conversation_session_id=None, is_new_session=True)
            active = self._active_session(session, profile.id)
            if active is None:
                return RecentHistory(conversation_session_id=None, is_new_session=True)
            return RecentHistory(
                conversation_session_id=active.id,
                is_new_session=False,
                messages=self._recent(session, active.id),
            )

    def append_and_fetch_history(self, shop: str, session_id: str, message: NewMessage,
                                 customer_id: Optional[str] = None) -> RecentHistory:
        """Write a message to the active session (opening one if needed) and return the recent turns"""
        with Session(self.engine) as session:
            profile = self._get_or_create_profile(session, shop, session_id, customer_id)
            now = self.clock()

            active = self._active_session(session, profile.id)
            is_new = active is None
            if is_new:
                active = ConversationSession(shop=shop, user_profile_id=profile.id, started_at=now, last_message_at=now)
                session.add(active)
                session.commit()
                session.refresh(active)
                logger.info(f"Opened conversation session {active.id} for {shop}/{session_id}")

            session.add(Message(
                conversation_session_id=active.id,
                role=message.role,
                content=message.content,
                intent=message.intent,
                sentiment=message.sentiment,
                confidence=message.confidence,
                products_shown=json.dumps(message.products_shown),
                client_message_id=message.client_message_id,
                timestamp=now,
            ))
            active.last_message_at = now
            session.add(active)
            session.commit()

            return RecentHistory(
                conversation_session_id=active.id,
                is_new_session=is_new,
                messages=self._recent(session, active.id),
            )

    def find_delivered_reply(self, shop: str, session_id: str, client_message_id: str) -> Optional[HistoryEntry]:
        """The assistant turn already written for a client message id, if that message was handled before"""
        with Session(self.engine) as session:
            sent = session.exec(
                select(Message)
                .join(ConversationSession, Message.conversation_session_id == ConversationSession.id)
                .join(UserProfile, ConversationSession.user_profile_id == UserProfile.id)
                .where(UserProfile.shop == shop, UserProfile.session_id == session_id)
                .where(Message.client_message_id == client_message_id, Message.role == "user")
            ).first()
            if sent is None:
                return None
            reply = session.exec(
                select(Message)
                .where(Message.conversation_session_id == sent.conversation_session_id)
                .where(Message.id > sent.id, Message.role == "assistant")
                .order_by(Message.id)
            ).first()
            return _to_entry(reply) if reply else None

    # personalization

    def personalization_context(self, shop: str, session_id: str) -> PersonalizationContext:
        with Session(self.engine) as session:
            profile = self._profile(session, shop, session_id)
            if profile is None:
                return PersonalizationContext()
            return PersonalizationContext(
                preferences=UserPreferences.from_dict(_load_json(profile.preferences, {})),
                recent_products=[p for p in _load_json(profile.browsing_history, []) if isinstance(p, str)],
            )

    def learn_from_exchange(self, shop: str, session_id: str, text: str, search_query: Optional[str],
                            products_shown: List[str], customer_id: Optional[str] = None) -> PersonalizationContext:
        """Fold a handled message into the shopper's profile: learned preferences and products seen"""
        with Session(self.engine) as session:
            profile = self._get_or_create_profile(session, shop, session_id, customer_id)
            preferences = learn_preferences(
                UserPreferences.from_dict(_load_json(profile.preferences, {})), text, search_query
            )
            history = push_recent([p for p in _load_json(profile.browsing_history, []) if isinstance(p, str)],
                                  products_shown)

            profile.preferences = json.dumps(preferences.to_dict())
            profile.browsing_history = json.dumps(history)
            profile.interactions = json.dumps(track_interaction(_load_json(profile.interactions, []), "message"))
            profile.updated_at = self.clock()
            session.add(profile)
            session.commit()
            return PersonalizationContext(preferences=preferences, recent_products=history)

    def track_product_click(self, shop: str, product_id: str, session_id: Optional[str] = None,
                            product_title: Optional[str] = None) -> bool:
        """Count the click for the shop; when the shopper is known, also move the product to the front of their history"""
        day = self.clock().date()
        with Session(self.engine) as session:
            row = session.exec(
                select(ChatAnalytics).where(ChatAnalytics.shop == shop, ChatAnalytics.day == day)
            ).first()
            if row is None:
                row = ChatAnalytics(shop=shop, day=day)
            clicks = _load_json(row.top_products, {})
            clicks[product_id] = clicks.get(product_id, 0) + 1
            row.top_products = json.dumps(clicks)
            session.add(row)

            profile = self._profile(session, shop, session_id) if session_id else None
            if profile is not None:
                history = [p for p in _load_json(profile.browsing_history, []) if isinstance(p, str)]
                profile.browsing_history = json.dumps(push_recent(history, [product_id]))
                profile.interactions = json.dumps(
                    track_interaction(_load_json(profile.interactions, []), "click", product_id)
                )
                profile.updated_at = self.clock()
                session.add(profile)
            session.commit()

        logger.info(f"Product click on {shop}: {product_id} ({product_title or 'untitled'})")
        return profile is not None

    def count_sessions_this_month(self, shop: str) -> int:
        start = month_start(self.clock())
        with Session(self.engine) as session:
            return session.exec(
                select(func.count(ConversationSession.id))
                .where(ConversationSession.shop == shop)
                .where(ConversationSession.started_at >= start)
            ).one()

    def check_quota(self, shop: str, plan: Optional[str]) -> QuotaStatus:
        config = plans.get_plan(plan)
        if config.is_unlimited:
            return QuotaStatus(allowed=True, used=0, limit=None, plan=config.code)

        used = self.count_sessions_this_month(shop)
        return QuotaStatus(
            allowed=used < config.max_conversations,
            used=used,
            limit=config.max_conversations,
            plan=config.code,
        )

    def usage_summary(self, shop: str, plan: Optional[str]) -> Dict[str, Any]:
        quota = self.check_quota(shop, plan)
        now = self.clock()
        reset = next_month_start(now)
        if quota.limit:
            percent = min(100.0, round(quota.used * 100.0 / quota.limit, 1))
        else:
            percent = 0.0
        return {
            "shop": shop,
            "plan": quota.plan,
            "conversationsUsed": quota.used,
            "conversationLimit": quota.limit,
            "isUnlimited": quota.limit is None,
            "exceeded": not quota.allowed,
            "percentUsed": percent,
            "resetDate": reset.isoformat(),
            "daysUntilReset": (reset.date() - now.date()).days,
        }

    def record_analytics(self, shop: str, intent: str, sentiment: str, confidence: float,
                         response_time_ms: float) -> ChatAnalytics:
        """Fold one exchange into the shop's daily aggregate"""
        day = self.clock().date()
        with Session(self.engine) as session:
            row = session.exec(
                select(ChatAnalytics).where(ChatAnalytics.shop == shop, ChatAnalytics.day == day)
            ).first()
            if row is None:
                row = ChatAnalytics(shop=shop, day=day)

            intents = json.loads(row.intent_counts or "{}")
            sentiments = json.loads(row.sentiment_counts or "{}")
            intents[intent] = intents.get(intent, 0) + 1
            sentiments[sentiment] = sentiments.get(sentiment, 0) + 1

            n = row.total_messages + 1
            row.avg_confidence = row.avg_confidence + (confidence - row.avg_confidence) / n
            row.avg_response_time_ms = row.avg_response_time_ms + (response_time_ms - row.avg_response_time_ms) / n
            row.total_messages = n
            row.intent_counts = json.dumps(intents)
            row.sentiment_counts = json.dumps(sentiments)

            session.add(row)
            session.commit()
            session.refresh(row)
            return row


class SettingsStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def get(self, shop: str) -> ShopSettings:
        with Session(self.engine) as session:
            settings = session.get(ShopSettings, shop)
            if settings is None:
                return ShopSettings(shop=shop)
            return settings

    def save(self, settings: ShopSettings) -> ShopSettings:
        settings.plan = plans.normalize_plan_code(settings.plan)
        settings.updated_at = utcnow()
        with Session(self.engine) as session:
            merged = session.merge(settings)
            session.commit()
            session.refresh(merged)
            return merged
