"""
Ошибки ядра матчмейкинга.
Ядро не знает про HTTP: коды статусов назначаются в main.py.
"""


class MatchmakingError(Exception):
    code = "matchmaking_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class AlreadyQueued(MatchmakingError):
    code = "already_queued"


class AlreadyMatched(MatchmakingError):
    """Попытка поставить в очередь пользователя, у которого есть матч."""
    code = "already_matched"


class AlreadyInMatch(MatchmakingError):
    """
    Запрос пейринга от игрока, который уже в матче. Отдаётся клиенту
    вместе с данными матча, чтобы он мог восстановить своё состояние.
    """
    code = "already_in_match"

    def __init__(self, message: str = "", match_info: dict | None = None):
        super().__init__(message)
        # match_id, opponent_id, opponent_name, role
        self.match_info = match_info or {}

    @property
    def match_id(self) -> str | None:
        return self.match_info.get("match_id")


class QueueEmpty(MatchmakingError):
    code = "queue_empty"


class DuplicatePlayer(MatchmakingError):
    code = "duplicate_player"


class NotFound(MatchmakingError):
    code = "not_found"


class InvalidRequest(MatchmakingError):
    code = "invalid_request"


class DeliveryFailed(MatchmakingError):
    """Не удалось доставить событие. Не фатально, только логируется."""
    code = "delivery_failed"
