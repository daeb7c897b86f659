"""
Доставка событий пользователю, если он сейчас достижим.
Best-effort: ошибка доставки логируется и не откатывает состояние.
"""
import logging
from typing import Any, Protocol

from .errors import DeliveryFailed
from .registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def deliver(self, connection_id: str, payload: dict[str, Any]) -> None:
        """Поставить payload в отправку, не блокируясь. DeliveryFailed при ошибке."""


class Notifier:
    def __init__(self, registry: ConnectionRegistry, transport: Transport | None = None):
        self._registry = registry
        self.transport = transport

    def notify(self, user_id: str, payload: dict[str, Any]) -> bool:
        conn_id = self._registry.connection_for(user_id)
        if conn_id is None or self.transport is None:
            logger.debug("Notify: %s unreachable, dropped %s", user_id, payload.get("type"))
            return False
        try:
            self.transport.deliver(conn_id, payload)
        except DeliveryFailed as e:
            logger.warning("Notify: delivery to %s failed: %s", user_id, e)
            return False
        return True
