"""
Менеджер сессий: очередь, пейринг, grace-период при обрыве, heartbeat, завершение матчей.
Все операции над реестром, очередью и таблицей матчей идут под одним замком.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from .config import SessionConfig
from .constants import (
    CHECK_HEARTBEAT,
    REASON_DISCONNECT,
    REASON_HEARTBEAT_TIMEOUT,
    REASON_MATCH_TIMEOUT,
    REASON_NOT_FOUND,
    REASON_OPPONENT_DISCONNECT,
    REASON_PLAYER_QUIT,
    REASON_QUIT,
    STATUS_ACTIVE,
    STATUS_ENDED,
    STATUS_LOADING,
    STATUS_MATCHED,
    STATUS_REFRESHED,
    STATUS_WAITING,
)
from .errors import AlreadyInMatch, InvalidRequest, QueueEmpty
from .events import (
    match_ended_payload,
    match_found_payload,
    opponent_left_payload,
    waiting_payload,
)
from .matches import Match, MatchTable, PlayerRef
from .notifier import Notifier, Transport
from .registry import ConnectionRegistry
from .wait_queue import QueueEntry, WaitQueue

logger = logging.getLogger(__name__)


@dataclass
class PairResult:
    status: str  # waiting | matched | refreshed
    match: Match | None = None
    position: int | None = None


class SessionManager:
    def __init__(
        self,
        config: SessionConfig | None = None,
        transport: Transport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or SessionConfig()
        self.clock = clock
        self.registry = ConnectionRegistry()
        self.matches = MatchTable()
        self.queue = WaitQueue(is_matched=self.matches.has_match)
        self.notifier = Notifier(self.registry, transport)
        self._lock = threading.RLock()

    def register_connection(self, connection_id: str, user_id: str) -> str | None:
        """
        Привязать новое соединение сразу после авторизации.
        Возвращает вытесненный connection_id, старое соединение закрывает транспорт.
        """
        with self._lock:
            superseded = self.registry.bind(connection_id, user_id)
            self.queue.update_connection(user_id, connection_id)
            return superseded

    # --- пейринг ---

    def pair(self, user_id: str, display_name: str, connection_id: str | None = None) -> PairResult:
        """
        Поставить в очередь или сразу создать матч с тем, кто ждёт первым.
        AlreadyInMatch, если у пользователя уже есть матч.
        """
        if not user_id:
            raise InvalidRequest("user_id is required")
        display_name = display_name or f"user_{user_id[:8]}"
        with self._lock:
            now = self.clock()
            if connection_id is not None:
                self.registry.bind(connection_id, user_id)

            if self.matches.has_match(user_id):
                m = self.matches.match_for(user_id)
                logger.info("Pairing: %s already in match %s", user_id, m.id)
                info = match_found_payload(m, user_id)
                del info["type"]
                raise AlreadyInMatch(f"user {user_id} is already in a match", match_info=info)

            if user_id in self.queue:
                # Повторный запрос: только обновить соединение
                if connection_id is not None:
                    self.queue.update_connection(user_id, connection_id)
                return PairResult(STATUS_REFRESHED, position=self.queue.position(user_id))

            try:
                opponent = self.queue.dequeue_front()
            except QueueEmpty:
                return self._wait(QueueEntry(user_id, display_name, connection_id, now))

            if opponent.user_id == user_id:
                logger.warning("Pairing: %s dequeued itself, pushing back", user_id)
                opponent.connection_id = connection_id or opponent.connection_id
                return self._wait(opponent)

            m = self.matches.create(
                PlayerRef(opponent.user_id, opponent.display_name),
                PlayerRef(user_id, display_name),
                now,
            )
            logger.info("Pairing: match %s created, %s vs %s", m.id, opponent.user_id, user_id)
            self.notifier.notify(opponent.user_id, match_found_payload(m, opponent.user_id))
            self.notifier.notify(user_id, match_found_payload(m, user_id))
            return PairResult(STATUS_MATCHED, match=m)

    def _wait(self, entry: QueueEntry) -> PairResult:
        self.queue.enqueue(entry)
        position = self.queue.position(entry.user_id)
        logger.info("Pairing: %s queued at %s", entry.user_id, position)
        self.notifier.notify(entry.user_id, waiting_payload(position))
        return PairResult(STATUS_WAITING, position=position)

    # --- выход ---

    def cancel_wait(self, user_id: str | None = None, connection_id: str | None = None) -> bool:
        """Убрать из очереди. Повторный вызов ничего не меняет. True если был в очереди."""
        with self._lock:
            if user_id is None and connection_id is not None:
                user_id = self.registry.user_for(connection_id)
            if user_id is None:
                return False
            removed = self.queue.remove(user_id) is not None
            if removed:
                logger.info("Pairing: %s left the queue", user_id)
            return removed

    def leave_match(self, match_id: str, user_id: str, reason: str | None = None) -> bool:
        """Явный выход: матч уничтожается сразу, без grace-периода."""
        if not match_id or not user_id:
            raise InvalidRequest("match_id and user_id are required")
        with self._lock:
            m = self.matches.find(match_id)
            if m is None or not m.has_player(user_id):
                return False
            self.matches.destroy(m.id)
            opponent = m.opponent_of(user_id)
            logger.info("Match %s: %s quit (%s)", m.id, user_id, reason or REASON_QUIT)
            self.notifier.notify(opponent.user_id, opponent_left_payload(m.id, REASON_PLAYER_QUIT))
            self.notifier.notify(user_id, match_ended_payload(m.id, reason or REASON_QUIT))
            return True

    def remove_player(self, user_id: str) -> bool:
        """Убрать игрока отовсюду: из очереди и из матча (матч завершается сразу)."""
        if not user_id:
            raise InvalidRequest("user_id is required")
        with self._lock:
            removed = self.cancel_wait(user_id)
            if self.matches.has_match(user_id):
                m = self.matches.match_for(user_id)
                removed = self.leave_match(m.id, user_id) or removed
            return removed

    def connection_closed(self, connection_id: str) -> None:
        """
        Обрыв соединения. В первые disconnect_grace_window секунд матча
        обрыв считается сменой сцены на клиенте: матч сохраняется.
        """
        with self._lock:
            user_id = self.registry.unbind(connection_id)
            if user_id is None:
                # Неизвестное или уже вытесненное соединение
                return
            logger.info("Connection %s of %s closed", connection_id, user_id)
            self.queue.remove(user_id)
            if not self.matches.has_match(user_id):
                return
            m = self.matches.match_for(user_id)
            age = self.clock() - m.created_at
            if age < self.config.disconnect_grace_window:
                logger.info("Match %s: %s dropped %.1fs after start, keeping match", m.id, user_id, age)
                return
            self.matches.destroy(m.id)
            opponent = m.opponent_of(user_id)
            logger.info("Match %s: ended, %s disconnected", m.id, user_id)
            self.notifier.notify(opponent.user_id, opponent_left_payload(m.id, REASON_DISCONNECT))

    # --- опрос для клиентов без постоянного соединения ---

    def heartbeat(self, match_id: str, user_id: str) -> dict[str, Any]:
        return self.check_match_status(match_id, user_id, reason=CHECK_HEARTBEAT)

    def check_match_status(self, match_id: str, user_id: str, reason: str | None = None) -> dict[str, Any]:
        """
        Проверка живости матча по heartbeat'ам обоих игроков.
        both_players_left=True означает, что матч больше не существует.
        """
        if not match_id or not user_id:
            raise InvalidRequest("match_id and user_id are required")
        with self._lock:
            now = self.clock()
            m = self.matches.find(match_id)
            if m is None or not m.has_player(user_id):
                return _match_status(match_id, False, REASON_NOT_FOUND)
            if reason == CHECK_HEARTBEAT:
                m.last_heartbeat[user_id] = now
            timeout = self.config.heartbeat_timeout
            live = [p for p in m.players if now - m.last_heartbeat[p.user_id] < timeout]
            if len(live) == 2:
                return _match_status(m.id, True)
            self.matches.destroy(m.id)
            logger.info("Match %s: heartbeat timeout, %d player(s) live", m.id, len(live))
            for p in live:
                self.notifier.notify(p.user_id, opponent_left_payload(m.id, REASON_HEARTBEAT_TIMEOUT))
            return _match_status(m.id, False, REASON_HEARTBEAT_TIMEOUT)

    def check_opponent_connection(self, match_id: str, user_id: str) -> dict[str, Any]:
        """Вариант проверки: зарегистрировано ли соединение соперника."""
        if not match_id or not user_id:
            raise InvalidRequest("match_id and user_id are required")
        with self._lock:
            m = self.matches.find(match_id)
            if m is None or not m.has_player(user_id):
                return {"match_id": match_id, "match_active": False, "status": STATUS_ENDED, "reason": REASON_NOT_FOUND}
            opponent = m.opponent_of(user_id)
            if self.registry.is_reachable(opponent.user_id):
                return {"match_id": m.id, "match_active": True, "status": STATUS_ACTIVE, "reason": None}
            if self.clock() - m.created_at < self.config.disconnect_grace_window:
                return {"match_id": m.id, "match_active": True, "status": STATUS_LOADING, "reason": None}
            self.matches.destroy(m.id)
            logger.info("Match %s: opponent %s unreachable, ending", m.id, opponent.user_id)
            self.notifier.notify(user_id, match_ended_payload(m.id, REASON_OPPONENT_DISCONNECT))
            return {"match_id": m.id, "match_active": False, "status": STATUS_ENDED, "reason": REASON_OPPONENT_DISCONNECT}

    def check_queue_status(self, user_id: str) -> dict[str, Any]:
        with self._lock:
            position = self.queue.position(user_id)
            return {"in_queue": position is not None, "position": position}

    # --- периодические задачи ---

    def sweep_stale_queue(self) -> int:
        with self._lock:
            count = self.queue.evict_stale(self.config.queue_stale_timeout, self.clock())
        if count:
            logger.info("Sweep: evicted %d stale queue entries", count)
        return count

    def sweep_stale_matches(self) -> list[Match]:
        with self._lock:
            stale = self.matches.evict_stale(self.config.match_stale_timeout, self.clock())
            for m in stale:
                for p in m.players:
                    self.notifier.notify(p.user_id, match_ended_payload(m.id, REASON_MATCH_TIMEOUT))
        if stale:
            logger.info("Sweep: evicted %d stale matches", len(stale))
        return stale

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "queued": len(self.queue),
                "matches": len(self.matches),
                "connections": len(self.registry),
            }


def _match_status(match_id: str, active: bool, reason: str | None = None) -> dict[str, Any]:
    return {
        "match_id": match_id,
        "match_active": active,
        "both_players_left": not active,
        "reason": reason,
    }
