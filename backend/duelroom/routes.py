"""
HTTP API для клиентов без постоянного соединения (поллинг).
Пользователь определяется по заголовку X-Identity-Token.
"""
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from .auth import validate_identity_token
from .session import SessionManager

router = APIRouter(prefix="/matchmaking", tags=["matchmaking"])


class Identity(BaseModel):
    user_id: str
    display_name: str = ""


class LeaveRequest(BaseModel):
    match_id: str | None = None
    reason: str | None = None


class HeartbeatRequest(BaseModel):
    match_id: str


def get_sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def current_user(
    request: Request,
    x_identity_token: str = Header(default=""),
) -> Identity:
    user = validate_identity_token(x_identity_token, request.app.state.config)
    if not user:
        raise HTTPException(status_code=401, detail="invalid identity token")
    return Identity(**user)


@router.post("/find-match")
def find_match(
    user: Identity = Depends(current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    result = sessions.pair(user.user_id, user.display_name)
    body = {
        "success": True,
        "match_found": result.match is not None,
        "status": result.status,
        "position": result.position,
    }
    if result.match:
        opponent = result.match.opponent_of(user.user_id)
        body.update({
            "match_id": result.match.id,
            "role": result.match.role_of(user.user_id),
            "opponent_id": opponent.user_id,
            "opponent_name": opponent.display_name,
        })
    return body


@router.post("/cancel")
def cancel(
    user: Identity = Depends(current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    return {"success": True, "removed": sessions.cancel_wait(user.user_id)}


@router.post("/leave-match")
def leave_match(
    body: LeaveRequest,
    user: Identity = Depends(current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    if body.match_id:
        sessions.leave_match(body.match_id, user.user_id, body.reason)
    else:
        sessions.remove_player(user.user_id)
    return {"success": True}


@router.post("/heartbeat")
def heartbeat(
    body: HeartbeatRequest,
    user: Identity = Depends(current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    return sessions.heartbeat(body.match_id, user.user_id)


@router.get("/queue-status")
def queue_status(
    user: Identity = Depends(current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    return sessions.check_queue_status(user.user_id)


@router.get("/match-status")
def match_status(
    match_id: str,
    reason: str | None = None,
    user: Identity = Depends(current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    return sessions.check_match_status(match_id, user.user_id, reason)


@router.get("/opponent-status")
def opponent_status(
    match_id: str,
    user: Identity = Depends(current_user),
    sessions: SessionManager = Depends(get_sessions),
):
    return sessions.check_opponent_connection(match_id, user.user_id)
