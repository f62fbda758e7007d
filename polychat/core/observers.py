"""
Observer implementations for chat lifecycle hooks.
"""
import itertools
from typing import Any, Dict, List, Optional

from .models import Message, StreamDelta


class BaseChatObserver:
    """No-op observer; subclass and override the hooks you need."""

    def on_message_start(self) -> Any:
        return None

    def on_message_delta(self, handle: Any, delta: StreamDelta) -> None:
        pass

    def on_message_end(self, handle: Any, message: Message) -> None:
        pass

    def on_message_abort(self, handle: Any) -> None:
        pass


class InMemoryMessageStore(BaseChatObserver):
    """
    Reference persistence collaborator.

    Each assistant message becomes a record that is created as `pending`
    when the message starts, filled in and marked `complete` when it ends, and
    deleted when it is aborted (complete records included).
    """

    def __init__(self):
        self.records: Dict[int, Dict[str, Any]] = {}
        self._ids = itertools.count(1)

    def on_message_start(self) -> int:
        record_id = next(self._ids)
        self.records[record_id] = {"status": "pending", "content": "", "message": None}
        return record_id

    def on_message_delta(self, handle: int, delta: StreamDelta) -> None:
        record = self.records.get(handle)
        if record is not None and delta.content:
            record["content"] += delta.content

    def on_message_end(self, handle: int, message: Message) -> None:
        record = self.records[handle]
        record.update(status="complete", content=message.content, message=message)

    def on_message_abort(self, handle: int) -> None:
        self.records.pop(handle, None)

    def get(self, handle: int) -> Optional[Dict[str, Any]]:
        return self.records.get(handle)

    def completed(self) -> List[Message]:
        return [r["message"] for r in self.records.values() if r["status"] == "complete"]

    def pending(self) -> List[int]:
        return [k for k, r in self.records.items() if r["status"] == "pending"]
