"""
Очередь ожидания соперника (in-memory, строго FIFO).
"""
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from .errors import AlreadyMatched, AlreadyQueued, QueueEmpty


@dataclass
class QueueEntry:
    user_id: str
    display_name: str
    connection_id: str | None
    enqueued_at: float  # monotonic, секунды


class WaitQueue:
    def __init__(self, is_matched: Callable[[str], bool] | None = None):
        # Порядок вставки OrderedDict и есть порядок очереди
        self._entries: "OrderedDict[str, QueueEntry]" = OrderedDict()
        self._is_matched = is_matched or (lambda user_id: False)

    def enqueue(self, entry: QueueEntry) -> None:
        if entry.user_id in self._entries:
            raise AlreadyQueued(f"user {entry.user_id} is already queued")
        if self._is_matched(entry.user_id):
            raise AlreadyMatched(f"user {entry.user_id} has an active match")
        self._entries[entry.user_id] = entry

    def dequeue_front(self) -> QueueEntry:
        if not self._entries:
            raise QueueEmpty()
        _, entry = self._entries.popitem(last=False)
        return entry

    def remove(self, user_id: str) -> QueueEntry | None:
        return self._entries.pop(user_id, None)

    def get(self, user_id: str) -> QueueEntry | None:
        return self._entries.get(user_id)

    def update_connection(self, user_id: str, connection_id: str | None) -> bool:
        entry = self._entries.get(user_id)
        if entry is None:
            return False
        entry.connection_id = connection_id
        return True

    def position(self, user_id: str) -> int | None:
        """Позиция в очереди, начиная с 1."""
        for i, queued_id in enumerate(self._entries, start=1):
            if queued_id == user_id:
                return i
        return None

    def evict_stale(self, max_age: float, now: float) -> int:
        """Удалить записи старше max_age. Возвращает количество удалённых."""
        stale = [uid for uid, e in self._entries.items() if now - e.enqueued_at >= max_age]
        for uid in stale:
            del self._entries[uid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._entries
