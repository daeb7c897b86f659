"""
Duelroom API и WebSocket.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import AppConfig, get_config
from .errors import AlreadyInMatch, InvalidRequest, MatchmakingError, NotFound
from .routes import router
from .scheduler import Scheduler
from .session import SessionManager
from .ws_handlers import ws_auth_and_loop
from .ws_manager import WSManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = {
    NotFound: 404,
    InvalidRequest: 400,
    AlreadyInMatch: 409,
}


def build_scheduler(sessions: SessionManager, ws_manager: WSManager) -> Scheduler:
    cfg = sessions.config
    scheduler = Scheduler(clock=sessions.clock)
    scheduler.add("stale_queue", cfg.queue_sweep_interval, sessions.sweep_stale_queue)
    scheduler.add("stale_matches", cfg.match_sweep_interval, sessions.sweep_stale_matches)
    scheduler.add("liveness_ping", cfg.liveness_probe_interval, ws_manager.ping_connections)
    return scheduler


def create_app(
    config: AppConfig | None = None,
    sessions: SessionManager | None = None,
    run_scheduler: bool = True,
) -> FastAPI:
    config = config or get_config()
    ws_manager = WSManager()
    if sessions is None:
        sessions = SessionManager(config.session, transport=ws_manager)
    else:
        sessions.notifier.transport = ws_manager
    ws_manager.on_close = sessions.connection_closed
    scheduler = build_scheduler(sessions, ws_manager)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        task = asyncio.create_task(scheduler.run_forever()) if run_scheduler else None
        try:
            yield
        finally:
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    app = FastAPI(title="Duelroom API", lifespan=lifespan)
    app.state.config = config
    app.state.sessions = sessions
    app.state.ws_manager = ws_manager
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MatchmakingError)
    async def matchmaking_error_handler(request: Request, exc: MatchmakingError):
        status = next((s for cls, s in _STATUS_BY_ERROR.items() if isinstance(exc, cls)), 400)
        logger.info("HTTP: %s %s -> %s %s", request.method, request.url.path, status, exc.code)
        body = {"success": False, "error": exc.code, "message": exc.message}
        if isinstance(exc, AlreadyInMatch):
            body.update(exc.match_info)
        return JSONResponse(status_code=status, content=body)

    @app.get("/health")
    def health():
        return {"status": "ok", **sessions.stats()}

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        logger.info("WS: connection attempt from %s", ws.client)
        await ws_auth_and_loop(ws, sessions, ws_manager, config)

    app.include_router(router)
    return app


app = create_app()
