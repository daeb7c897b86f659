"""Payload'ы исходящих событий для клиента."""
from .constants import (
    EVENT_AUTH_OK,
    EVENT_ERROR,
    EVENT_MATCH_ENDED,
    EVENT_MATCH_FOUND,
    EVENT_MATCH_STATUS,
    EVENT_OPPONENT_LEFT,
    EVENT_PING,
    EVENT_QUEUE_STATUS,
    EVENT_WAITING,
)
from .matches import Match


def waiting_payload(position: int | None = None) -> dict:
    return {"type": EVENT_WAITING, "position": position}


def match_found_payload(m: Match, user_id: str) -> dict:
    """match_found для конкретного игрока: роль и соперник у каждого свои."""
    opponent = m.opponent_of(user_id)
    return {
        "type": EVENT_MATCH_FOUND,
        "match_id": m.id,
        "opponent_id": opponent.user_id,
        "opponent_name": opponent.display_name,
        "role": m.role_of(user_id),
    }


def opponent_left_payload(match_id: str, reason: str) -> dict:
    return {"type": EVENT_OPPONENT_LEFT, "match_id": match_id, "reason": reason}


def match_ended_payload(match_id: str, reason: str) -> dict:
    return {"type": EVENT_MATCH_ENDED, "match_id": match_id, "reason": reason}


def error_payload(message: str, code: str | None = None) -> dict:
    return {"type": EVENT_ERROR, "message": message, "code": code}


def queue_status_payload(status: dict) -> dict:
    return {"type": EVENT_QUEUE_STATUS, **status}


def match_status_payload(status: dict) -> dict:
    return {"type": EVENT_MATCH_STATUS, **status}


def auth_ok_payload(user_id: str, connection_id: str) -> dict:
    return {"type": EVENT_AUTH_OK, "user_id": user_id, "connection_id": connection_id}


def ping_payload() -> dict:
    return {"type": EVENT_PING}
