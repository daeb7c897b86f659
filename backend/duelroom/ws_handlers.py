"""
Обработка сообщений WebSocket: auth, find_match, cancel_match, leave_match, heartbeat, статусы.
Обрыв сокета передаётся в SessionManager.connection_closed.
"""
import asyncio
import json
import logging
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from .auth import validate_identity_token
from .config import AppConfig
from .constants import (
    WS_CLOSE_AUTH_FAILED,
    WS_CLOSE_EXPECTED_AUTH,
    WS_CLOSE_SUPERSEDED,
)
from .errors import AlreadyInMatch, InvalidRequest, MatchmakingError
from .events import (
    auth_ok_payload,
    error_payload,
    match_status_payload,
    queue_status_payload,
)
from .session import SessionManager
from .ws_manager import Connection, WSManager

logger = logging.getLogger(__name__)


def _reply(ws_manager: WSManager, conn: Connection, payload: dict[str, Any]) -> None:
    try:
        ws_manager.deliver(conn.id, payload)
    except MatchmakingError as e:
        logger.warning("WS: reply to %s dropped: %s", conn.user_id, e)


def _require(data: dict, key: str) -> str:
    value = data.get(key)
    if not value:
        raise InvalidRequest(f"{key} is required")
    return str(value)


def handle_ws_message(
    sessions: SessionManager,
    ws_manager: WSManager,
    conn: Connection,
    raw: str,
) -> None:
    """
    Обрабатывает одно сообщение от уже авторизованного клиента.
    Некорректные сообщения логируются и отбрасываются.
    """
    ws_manager.mark_alive(conn.id)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("WS: invalid JSON from %s: %s", conn.user_id, e)
        return
    if not isinstance(data, dict):
        logger.warning("WS: non-object message from %s discarded", conn.user_id)
        return
    t = data.get("type")
    user_id = conn.user_id
    logger.debug("WS: msg from %s type=%s", user_id, t)
    try:
        if t == "find_match":
            sessions.pair(user_id, conn.display_name, conn.id)
        elif t == "cancel_match":
            sessions.cancel_wait(user_id)
            _reply(ws_manager, conn, queue_status_payload(sessions.check_queue_status(user_id)))
        elif t == "leave_match":
            sessions.leave_match(_require(data, "match_id"), user_id, data.get("reason"))
        elif t == "heartbeat":
            status = sessions.heartbeat(_require(data, "match_id"), user_id)
            _reply(ws_manager, conn, match_status_payload(status))
        elif t == "match_status":
            match_id = _require(data, "match_id")
            if data.get("check") == "opponent":
                status = sessions.check_opponent_connection(match_id, user_id)
            else:
                status = sessions.check_match_status(match_id, user_id, data.get("reason"))
            _reply(ws_manager, conn, match_status_payload(status))
        elif t == "queue_status":
            _reply(ws_manager, conn, queue_status_payload(sessions.check_queue_status(user_id)))
        elif t == "pong":
            pass
        else:
            logger.warning("WS: unknown message type %r from %s", t, user_id)
    except AlreadyInMatch as e:
        _reply(ws_manager, conn, {**error_payload(e.message, e.code), **e.match_info})
    except MatchmakingError as e:
        logger.info("WS: %s from %s rejected: %s", t, user_id, e)
        _reply(ws_manager, conn, error_payload(e.message, e.code))


def _authenticate(data: dict, config: AppConfig) -> dict | None:
    token = data.get("token", "")
    if config.debug and not token:
        uid = data.get("debug_uid")
        if uid in (None, ""):
            return None
        logger.info("WS: debug auth, uid=%s", uid)
        return {"user_id": str(uid), "display_name": data.get("display_name") or f"dev{uid}"}
    return validate_identity_token(token, config)


async def ws_auth_and_loop(
    ws: WebSocket,
    sessions: SessionManager,
    ws_manager: WSManager,
    config: AppConfig,
) -> None:
    """
    Первое сообщение — auth с token. Дальше цикл приёма сообщений.
    """
    conn = None
    writer = None
    try:
        await ws.accept()
        logger.info("WS: accepted, waiting for auth")
        raw = await ws.receive_text()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            data = {}
        msg_type = data.get("type") if isinstance(data, dict) else None
        if msg_type != "auth":
            logger.warning("WS: expected auth, got %s, closing %s", msg_type, WS_CLOSE_EXPECTED_AUTH)
            await ws.close(code=WS_CLOSE_EXPECTED_AUTH)
            return
        user = _authenticate(data, config)
        if not user:
            logger.warning("WS: auth failed (invalid token or not debug)")
            await ws.close(code=WS_CLOSE_AUTH_FAILED)
            return
        user_id = user["user_id"]
        conn = ws_manager.connect(ws, user_id, user["display_name"])
        writer = asyncio.create_task(ws_manager.writer(conn))
        superseded = sessions.register_connection(conn.id, user_id)
        if superseded:
            await ws_manager.close(superseded, WS_CLOSE_SUPERSEDED)
        logger.info("WS: auth ok user_id=%s connection_id=%s", user_id, conn.id)
        _reply(ws_manager, conn, auth_ok_payload(user_id, conn.id))
        while True:
            msg = await ws.receive_text()
            handle_ws_message(sessions, ws_manager, conn, msg)
    except WebSocketDisconnect as e:
        logger.info(
            "WS: client disconnected code=%s reason=%s user_id=%s",
            e.code, e.reason or "", conn.user_id if conn else None,
        )
    except Exception as e:
        logger.exception("WS: error user_id=%s: %s", conn.user_id if conn else None, e)
    finally:
        if writer:
            writer.cancel()
        if conn:
            ws_manager.disconnect(conn.id)
            sessions.connection_closed(conn.id)
            logger.info("WS: disconnected user_id=%s", conn.user_id)
