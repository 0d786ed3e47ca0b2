import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import List, Optional

from widget import config
from widget.storage import DurableStorage


def new_message_id() -> str:
    return uuid.uuid4().hex


@dataclass
class QueuedMessage:
    text: str
    enqueuedAt: float
    # sent as the client message id so a re-sent message is answered once
    id: str = field(default_factory=new_message_id)


class OfflineQueue:
    """FIFO of messages typed while offline, persisted after every change"""

    def __init__(self, storage: DurableStorage, key: str = config.QUEUE_KEY):
        self.storage = storage
        self.key = key
        self._items: List[QueuedMessage] = []
        missing_ids = False
        for raw in storage.get(key) or []:
            if isinstance(raw, dict) and isinstance(raw.get("text"), str):
                item = QueuedMessage(text=raw["text"], enqueuedAt=float(raw.get("enqueuedAt") or 0))
                if isinstance(raw.get("id"), str) and raw["id"]:
                    item.id = raw["id"]
                else:
                    missing_ids = True
                self._items.append(item)
        if missing_ids:
            # ids must stay stable across reloads
            self._persist()

    def __len__(self) -> int:
        return len(self._items)

    def _persist(self):
        self.storage.set(self.key, [asdict(item) for item in self._items])

    def enqueue(self, text: str) -> QueuedMessage:
        item = QueuedMessage(text=text, enqueuedAt=time.time() * 1000)
        self._items.append(item)
        self._persist()
        return item

    def peek(self) -> Optional[QueuedMessage]:
        return self._items[0] if self._items else None

    def remove_first(self) -> QueuedMessage:
        item = self._items.pop(0)
        self._persist()
        return item

    def items(self) -> List[QueuedMessage]:
        return list(self._items)
