from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from concierge import plans


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # sqlite hands timestamps back without an offset; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_field(**kwargs):
    return Field(default_factory=utcnow, sa_type=DateTime(timezone=True), **kwargs)


class UserProfile(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("shop", "session_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    shop: str = Field(index=True)
    session_id: str = Field(index=True)
    customer_id: Optional[str] = Field(default=None)
    created_at: datetime = utc_field()
    updated_at: datetime = utc_field()
    preferences: str = Field(default="{}")  # json UserPreferences
    browsing_history: str = Field(default="[]")  # json product ids, newest first
    interactions: str = Field(default="[]")  # json event list

    sessions: List["ConversationSession"] = Relationship(back_populates="profile")


class ConversationSession(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    shop: str = Field(index=True)
    user_profile_id: int = Field(foreign_key="userprofile.id", index=True)
    started_at: datetime = utc_field(index=True)
    last_message_at: datetime = utc_field(index=True)

    profile: Optional[UserProfile] = Relationship(back_populates="sessions")
    messages: List["Message"] = Relationship(back_populates="conversation_session")


class Message(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_session_id: int = Field(foreign_key="conversationsession.id", index=True)
    role: str  # user | assistant
    content: str
    intent: Optional[str] = Field(default=None)
    sentiment: Optional[str] = Field(default=None)
    confidence: Optional[float] = Field(default=None)
    products_shown: str = Field(default="[]")  # json list of product ids
    client_message_id: Optional[str] = Field(default=None, index=True)
    timestamp: datetime = utc_field()

    conversation_session: Optional[ConversationSession] = Relationship(back_populates="messages")


class ChatAnalytics(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("shop", "day"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    shop: str = Field(index=True)
    day: date
    total_messages: int = Field(default=0)
    intent_counts: str = Field(default="{}")
    sentiment_counts: str = Field(default="{}")
    avg_confidence: float = Field(default=0.0)
    avg_response_time_ms: float = Field(default=0.0)
    top_products: str = Field(default="{}")  # json product id -> clicks


class ShopSettings(SQLModel, table=True):
    shop: str = Field(primary_key=True)
    plan: str = Field(default=plans.DEFAULT_PLAN)
    webhook_url: Optional[str] = Field(default=None)
    workflow_type: str = Field(default="DEFAULT")  # DEFAULT | CUSTOM
    access_token: Optional[str] = Field(default=None)
    openai_api_key: Optional[str] = Field(default=None)
    locale: str = Field(default="en")
    primary_color: str = Field(default="#ee5cee")
    position: str = Field(default="bottom-right")
    chat_title: str = Field(default="Support Chat")
    welcome_message: str = Field(default="Hello! How can I help you today?")
    input_placeholder: str = Field(default="Type your message...")
    shipping_policy: Optional[str] = Field(default=None)
    return_policy: Optional[str] = Field(default=None)
    updated_at: datetime = utc_field()

    def public_view(self) -> dict:
        """Widget appearance only; tokens and keys never leave the server"""
        return {
            "shop": self.shop,
            "position": self.position,
            "primaryColor": self.primary_color,
            "chatTitle": self.chat_title,
            "welcomeMessage": self.welcome_message,
            "inputPlaceholder": self.input_placeholder,
            "locale": self.locale,
            "plan": plans.normalize_plan_code(self.plan),
        }
