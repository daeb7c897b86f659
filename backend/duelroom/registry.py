"""
Реестр соединений: connection_id <-> user_id.
Одно активное соединение на пользователя; новое вытесняет старое.
"""
import logging

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(self):
        self._user_by_conn: dict[str, str] = {}
        self._conn_by_user: dict[str, str] = {}

    def bind(self, connection_id: str, user_id: str) -> str | None:
        """
        Привязать соединение к пользователю.
        Возвращает вытесненный connection_id этого пользователя, если был.
        """
        previous_user = self._user_by_conn.get(connection_id)
        if previous_user is not None and previous_user != user_id:
            # Соединение переиспользовано другим пользователем
            self._conn_by_user.pop(previous_user, None)
        superseded = self._conn_by_user.get(user_id)
        if superseded is not None and superseded != connection_id:
            self._user_by_conn.pop(superseded, None)
            logger.info("Registry: connection %s of %s superseded by %s", superseded, user_id, connection_id)
        else:
            superseded = None
        self._conn_by_user[user_id] = connection_id
        self._user_by_conn[connection_id] = user_id
        return superseded

    def unbind(self, connection_id: str) -> str | None:
        """Снять привязку. Возвращает user_id или None, если соединение неизвестно."""
        user_id = self._user_by_conn.pop(connection_id, None)
        if user_id is not None and self._conn_by_user.get(user_id) == connection_id:
            del self._conn_by_user[user_id]
        return user_id

    def user_for(self, connection_id: str) -> str | None:
        return self._user_by_conn.get(connection_id)

    def connection_for(self, user_id: str) -> str | None:
        return self._conn_by_user.get(user_id)

    def is_reachable(self, user_id: str) -> bool:
        return user_id in self._conn_by_user

    def __len__(self) -> int:
        return len(self._conn_by_user)
