"""Константы протокола матчмейкинга."""
from typing import Literal

Role = Literal["host", "client"]

ROLE_HOST: Role = "host"
ROLE_CLIENT: Role = "client"

# Исходящие события
EVENT_WAITING = "waiting_for_match"
EVENT_MATCH_FOUND = "match_found"
EVENT_OPPONENT_LEFT = "opponent_left"
EVENT_MATCH_ENDED = "match_ended"
EVENT_ERROR = "error"
EVENT_QUEUE_STATUS = "queue_status"
EVENT_MATCH_STATUS = "match_status"
EVENT_AUTH_OK = "auth_ok"
EVENT_PING = "ping"

# Причины завершения
REASON_DISCONNECT = "disconnect"
REASON_OPPONENT_DISCONNECT = "opponent_disconnect"
REASON_HEARTBEAT_TIMEOUT = "heartbeat_timeout"
REASON_PLAYER_QUIT = "player_quit"
REASON_QUIT = "quit"
REASON_MATCH_TIMEOUT = "match_timeout"
REASON_NOT_FOUND = "not_found"

CHECK_HEARTBEAT = "heartbeat"

# Статусы постановки в очередь
STATUS_WAITING = "waiting"
STATUS_MATCHED = "matched"
STATUS_REFRESHED = "refreshed"

# Статусы проверки соединения соперника
STATUS_ACTIVE = "active"
STATUS_LOADING = "loading"
STATUS_ENDED = "ended"

# Таймауты по умолчанию, секунды
DEFAULT_QUEUE_STALE_TIMEOUT = 300.0
DEFAULT_MATCH_STALE_TIMEOUT = 600.0
DEFAULT_DISCONNECT_GRACE_WINDOW = 20.0
DEFAULT_HEARTBEAT_TIMEOUT = 15.0
DEFAULT_LIVENESS_PROBE_INTERVAL = 30.0
DEFAULT_QUEUE_SWEEP_INTERVAL = 60.0
DEFAULT_MATCH_SWEEP_INTERVAL = 60.0

# Коды закрытия WebSocket
WS_CLOSE_SUPERSEDED = 4000
WS_CLOSE_EXPECTED_AUTH = 4001
WS_CLOSE_NOT_ALIVE = 4002
WS_CLOSE_AUTH_FAILED = 4003
