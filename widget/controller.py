"""
Chat widget controller.

Owns the widget's state for one mounted widget: phase, transcript, theme
and the offline queue. `start()` restores the cached conversation and the
queue and begins polling for settings; `close()` stops polling and
releases the HTTP client.

Phases:
    Idle -> Composing -> Sending -> AwaitingReply -> Idle    (online)
    Idle -> Composing -> OfflineQueued                       (offline)
    OfflineQueued -> Sending -> AwaitingReply -> Idle        (back online, queue flushed)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from widget import config
from widget.cart import StorefrontCart
from widget.history import ConversationCache
from widget.offline_queue import OfflineQueue, new_message_id
from widget.storage import DurableStorage
from widget.theme import sentiment_theme
from widget.transport import ChatTransport, DeliveryError

logger = logging.getLogger(__name__)

IDLE = "Idle"
COMPOSING = "Composing"
SENDING = "Sending"
AWAITING_REPLY = "AwaitingReply"
OFFLINE_QUEUED = "OfflineQueued"

SESSION_KEY = "ai_session_id"
PENDING_MARKER = " 📭 (Queued)"
DELIVERY_FAILED = "Sorry, I couldn't reach the store assistant. Please try again."


@dataclass
class TranscriptEntry:
    role: str
    content: str
    pending: bool = False
    recommendations: List[Dict[str, Any]] = field(default_factory=list)
    message_type: Optional[str] = None
    timestamp: float = field(default_factory=lambda: time.time() * 1000)

    @property
    def display_text(self) -> str:
        return self.content + PENDING_MARKER if self.pending else self.content

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "pending": self.pending,
            "recommendations": self.recommendations,
            "messageType": self.message_type,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptEntry":
        return cls(
            role=data.get("role", "assistant"),
            content=data.get("content", ""),
            pending=bool(data.get("pending", False)),
            recommendations=data.get("recommendations") or [],
            message_type=data.get("messageType"),
            timestamp=data.get("timestamp") or time.time() * 1000,
        )


@dataclass
class WidgetState:
    phase: str = IDLE
    chat_open: bool = False
    online: bool = True
    draft: str = ""
    error: Optional[str] = None
    notification: Optional[str] = None
    sentiment: str = "neutral"
    theme: Dict[str, str] = field(default_factory=lambda: sentiment_theme("neutral"))
    transcript: List[TranscriptEntry] = field(default_factory=list)
    quick_replies: List[str] = field(default_factory=list)
    suggested_actions: List[Dict[str, Any]] = field(default_factory=list)
    requires_human_escalation: bool = False
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def can_send(self) -> bool:
        return self.phase not in (SENDING, AWAITING_REPLY)


class SettingsPoller:
    """Periodically re-fetches widget settings until stopped"""

    def __init__(self, fetch: Callable[[], Awaitable[Dict[str, Any]]],
                 on_update: Callable[[Dict[str, Any]], None], interval: float = config.SETTINGS_POLL_INTERVAL):
        self.fetch = fetch
        self.on_update = on_update
        self.interval = interval
        self.task: Optional[asyncio.Task] = None
        self._last: Optional[Dict[str, Any]] = None

    def start(self):
        if self.task is None or self.task.done():
            self.task = asyncio.create_task(self._run())

    async def stop(self):
        if self.task is None:
            return
        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        self.task = None

    async def _run(self):
        while True:
            try:
                settings = await self.fetch()
            except DeliveryError as e:
                logger.warning(f"Settings refresh failed: {e}")
            else:
                if settings and settings != self._last:
                    self._last = settings
                    self.on_update(settings)
            await asyncio.sleep(self.interval)


class WidgetController:
    def __init__(self, transport: ChatTransport, storage: DurableStorage,
                 cart: Optional[StorefrontCart] = None, customer_id: Optional[str] = None,
                 locale: Optional[str] = None, poll_interval: Optional[float] = config.SETTINGS_POLL_INTERVAL):
        self.transport = transport
        self.storage = storage
        self.cart = cart
        self.customer_id = customer_id
        self.locale = locale
        self.state = WidgetState()
        self.queue = OfflineQueue(storage)
        self.cache = ConversationCache(storage)
        self.poller = SettingsPoller(transport.fetch_settings, self.apply_settings, poll_interval) if poll_interval else None
        self._lock = asyncio.Lock()
        self._listeners: List[Callable[[WidgetState], None]] = []

        # None until the server assigns one in its first reply
        self.session_id: Optional[str] = storage.get(SESSION_KEY)

    # lifecycle

    async def start(self):
        self.state.transcript = [TranscriptEntry.from_dict(m) for m in self.cache.load() if isinstance(m, dict)]
        if len(self.queue):
            self.state.phase = OFFLINE_QUEUED
        if self.poller:
            self.poller.start()
        self._notify()

    async def close(self):
        if self.poller:
            await self.poller.stop()
        await self.transport.close()
        if self.cart:
            await self.cart.close()

    def subscribe(self, listener: Callable[[WidgetState], None]):
        self._listeners.append(listener)

    def _notify(self):
        for listener in self._listeners:
            try:
                listener(self.state)
            except Exception as e:
                logger.error(f"Widget listener failed: {e}")

    # ui events

    def open_chat(self):
        self.state.chat_open = True
        self._notify()

    def close_chat(self):
        # an in-flight send keeps going and still lands in the transcript
        self.state.chat_open = False
        self._notify()

    def toggle_chat(self):
        if self.state.chat_open:
            self.close_chat()
        else:
            self.open_chat()

    def compose(self, text: str):
        self.state.draft = text
        if self.state.phase in (IDLE, COMPOSING):
            self.state.phase = COMPOSING if text.strip() else IDLE
        self._notify()

    def apply_settings(self, settings: Dict[str, Any]):
        self.state.settings = settings
        self.state.theme = sentiment_theme(self.state.sentiment, settings.get("primaryColor"))
        self._notify()

    async def submit(self, text: Optional[str] = None) -> bool:
        """Send (or queue, when offline) one message. Returns False if nothing was accepted."""
        text = (self.state.draft if text is None else text).strip()
        if not text or not self.state.can_send or self._lock.locked():
            return False
        if len(text) > config.MAX_MESSAGE_LENGTH:
            self.state.error = f"Messages are limited to {config.MAX_MESSAGE_LENGTH} characters."
            self._notify()
            return False

        if not self.state.online:
            self._queue_offline(text)
            return True

        async with self._lock:
            self.state.draft = ""
            self.state.error = None
            self.state.phase = SENDING
            entry = TranscriptEntry(role="user", content=text)
            self.state.transcript.append(entry)
            self._save_history()
            self._notify()

            delivered = await self._exchange(entry, new_message_id())
            if not delivered:
                self.state.transcript.remove(entry)
                self.state.draft = text
                self._save_history()

            self.state.phase = OFFLINE_QUEUED if len(self.queue) else IDLE
            self._notify()
            return delivered

    async def set_online(self, online: bool):
        self.state.online = online
        if online:
            self.state.notification = None
            await self.flush_queue()
        else:
            self._notify()

    async def flush_queue(self) -> int:
        """Deliver queued messages oldest first, one at a time. Stops at the first failure."""
        if self._lock.locked():
            return 0

        delivered = 0
        async with self._lock:
            while self.state.online:
                item = self.queue.peek()
                if item is None:
                    break

                entry = self._pending_entry(item.text)
                self.state.phase = SENDING
                self._notify()

                if not await self._exchange(entry, item.id):
                    break

                # delivery is at least once: if we die before this line the message goes again on the next
                # flush, and the server answers a repeated id from history instead of handling it twice
                self.queue.remove_first()
                entry.pending = False
                delivered += 1
                self._save_history()

            self.state.phase = OFFLINE_QUEUED if len(self.queue) else IDLE
            self._notify()

        if delivered:
            logger.info(f"Flushed {delivered} queued message(s)")
        return delivered

    async def perform_action(self, action: Dict[str, Any]) -> Dict[str, Any]:
        kind = action.get("action")
        data = action.get("data") or {}
        if kind == "add_to_cart" and self.cart and data.get("variantId"):
            return await self.cart.add(data["variantId"], data.get("quantity", 1))
        if kind == "view_product" and self.cart:
            if data.get("productId"):
                await self.transport.track_click(data["productId"], self.session_id, data.get("handle"),
                                                 data.get("title"))
            return {"status": "success", "url": self.cart.product_url(data.get("handle"))}
        if kind == "quick_reply" and data.get("text"):
            return {"status": "success" if await self.submit(data["text"]) else "error"}
        return {"status": "error", "message": f"Unsupported action: {kind}"}

    # internals

    def _queue_offline(self, text: str):
        self.queue.enqueue(text)
        self.state.transcript.append(TranscriptEntry(role="user", content=text, pending=True))
        self.state.draft = ""
        self.state.phase = OFFLINE_QUEUED
        self.state.notification = "You're offline. Messages will be sent when you reconnect."
        self._save_history()
        self._notify()

    def _pending_entry(self, text: str) -> TranscriptEntry:
        # moved to the end so its reply renders directly beneath it
        for entry in self.state.transcript:
            if entry.pending and entry.role == "user" and entry.content == text:
                self.state.transcript.remove(entry)
                self.state.transcript.append(entry)
                return entry
        # cached transcript expired while the message sat in the queue
        entry = TranscriptEntry(role="user", content=text, pending=True)
        self.state.transcript.append(entry)
        return entry

    def _previous_messages(self) -> List[str]:
        return [e.content for e in self.state.transcript if e.role == "user" and not e.pending][-5:]

    async def _exchange(self, entry: TranscriptEntry, client_message_id: Optional[str] = None) -> bool:
        """Deliver one user message and render the reply. True once the server has answered."""
        self.state.phase = AWAITING_REPLY
        self._notify()
        try:
            reply = await self.transport.send(
                entry.content,
                session_id=self.session_id,
                customer_id=self.customer_id,
                previous_messages=self._previous_messages(),
                locale=self.locale,
                client_message_id=client_message_id,
            )
        except DeliveryError as e:
            if e.rejected:
                # the server saw it and said no; show why instead of retrying forever
                message = e.payload.get("message") or e.payload.get("error") or DELIVERY_FAILED
                self._render_reply({"message": message, "messageType": e.payload.get("messageType", "error")})
                return True
            logger.error(f"Message delivery failed: {e}")
            self.state.error = DELIVERY_FAILED
            return False

        self._render_reply(reply)
        return True

    def _render_reply(self, reply: Dict[str, Any]):
        self.session_id = reply.get("sessionId") or self.session_id
        if self.session_id and self.storage.get(SESSION_KEY) != self.session_id:
            self.storage.set(SESSION_KEY, self.session_id)

        self.state.transcript.append(TranscriptEntry(
            role="assistant",
            content=reply.get("message") or reply.get("response") or "",
            recommendations=reply.get("recommendations") or [],
            message_type=reply.get("messageType"),
        ))
        self.state.quick_replies = reply.get("quickReplies") or []
        self.state.suggested_actions = reply.get("suggestedActions") or []
        self.state.requires_human_escalation = bool(reply.get("requiresHumanEscalation"))
        sentiment = reply.get("sentiment")
        if sentiment in ("positive", "negative", "neutral"):
            self.state.sentiment = sentiment
            self.state.theme = sentiment_theme(sentiment, self.state.settings.get("primaryColor"))
        self._save_history()

    def _save_history(self):
        self.state.transcript = self.state.transcript[-self.cache.limit:]
        self.cache.save([e.to_dict() for e in self.state.transcript])
