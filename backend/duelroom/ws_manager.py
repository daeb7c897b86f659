"""
Менеджер WebSocket: живые сокеты по connection_id, очередь отправки на каждый сокет,
пинг для проверки живости. Реализует Transport для Notifier.
"""
import asyncio
import logging
import uuid
from typing import Any, Callable

from fastapi import WebSocket

from .constants import WS_CLOSE_NOT_ALIVE
from .errors import DeliveryFailed
from .events import ping_payload

logger = logging.getLogger(__name__)


class Connection:
    def __init__(
        self,
        ws: WebSocket,
        connection_id: str,
        user_id: str,
        display_name: str,
        loop: asyncio.AbstractEventLoop,
    ):
        self.ws = ws
        self.id = connection_id
        self.user_id = user_id
        self.display_name = display_name
        self.loop = loop
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self.is_alive = True
        self.closed = False


class WSManager:
    def __init__(self, on_close: Callable[[str], None] | None = None):
        self._by_id: dict[str, Connection] = {}
        # Вызывается с connection_id, когда сокет закрыт по таймауту пинга
        self.on_close = on_close

    def connect(self, ws: WebSocket, user_id: str, display_name: str) -> Connection:
        conn = Connection(ws, uuid.uuid4().hex, user_id, display_name, asyncio.get_running_loop())
        self._by_id[conn.id] = conn
        return conn

    def disconnect(self, connection_id: str) -> None:
        conn = self._by_id.pop(connection_id, None)
        if conn:
            conn.closed = True

    def get(self, connection_id: str) -> Connection | None:
        return self._by_id.get(connection_id)

    def deliver(self, connection_id: str, payload: dict[str, Any]) -> None:
        """Не блокируется: payload кладётся в outbox, отправляет writer()."""
        conn = self._by_id.get(connection_id)
        if not conn or conn.closed:
            raise DeliveryFailed(f"connection {connection_id} is not open")
        try:
            conn.loop.call_soon_threadsafe(conn.outbox.put_nowait, payload)
        except RuntimeError as e:
            raise DeliveryFailed(str(e)) from e

    async def writer(self, conn: Connection) -> None:
        while not conn.closed:
            payload = await conn.outbox.get()
            try:
                await conn.ws.send_json(payload)
            except Exception as e:
                logger.warning("WS: send to %s failed: %s", conn.user_id, e)
                # Дальше deliver() отвечает DeliveryFailed, outbox не копится
                conn.closed = True
                return

    def mark_alive(self, connection_id: str) -> None:
        conn = self._by_id.get(connection_id)
        if conn:
            conn.is_alive = True

    async def close(self, connection_id: str, code: int) -> None:
        conn = self._by_id.get(connection_id)
        if not conn:
            return
        try:
            await conn.ws.close(code=code)
        except Exception as e:
            logger.debug("WS: close %s failed: %s", connection_id, e)

    async def ping_connections(self) -> int:
        """
        Сокет, от которого ничего не пришло с прошлого пинга, закрывается.
        Остальным отправляется ping. Возвращает число закрытых.
        """
        dead = 0
        for conn in list(self._by_id.values()):
            if not conn.is_alive:
                logger.info("WS: %s did not answer ping, closing", conn.user_id)
                await self.close(conn.id, WS_CLOSE_NOT_ALIVE)
                self.disconnect(conn.id)
                if self.on_close:
                    self.on_close(conn.id)
                dead += 1
                continue
            conn.is_alive = False
            try:
                self.deliver(conn.id, ping_payload())
            except DeliveryFailed as e:
                logger.warning("WS: ping %s: %s", conn.user_id, e)
        return dead

    def __len__(self) -> int:
        return len(self._by_id)
