import time
from typing import Any, Callable, Dict, List

from widget import config
from widget.storage import DurableStorage


class ConversationCache:
    """Last few turns shown in the widget, kept across reloads for a day"""

    def __init__(self, storage: DurableStorage, key: str = config.HISTORY_KEY,
                 limit: int = config.HISTORY_LIMIT, ttl_seconds: float = config.HISTORY_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.storage = storage
        self.key = key
        self.limit = limit
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def load(self) -> List[Dict[str, Any]]:
        saved = self.storage.get(self.key)
        if not isinstance(saved, dict):
            return []
        saved_at = saved.get("timestamp") or 0
        if self.clock() * 1000 - saved_at > self.ttl_seconds * 1000:
            self.storage.remove(self.key)
            return []
        messages = saved.get("messages")
        return messages[-self.limit:] if isinstance(messages, list) else []

    def save(self, messages: List[Dict[str, Any]]):
        self.storage.set(self.key, {
            "messages": messages[-self.limit:],
            "timestamp": self.clock() * 1000,
        })

    def clear(self):
        self.storage.remove(self.key)
