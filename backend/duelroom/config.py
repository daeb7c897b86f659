"""Конфигурация приложения."""
import os
from dataclasses import dataclass
from functools import lru_cache

from .constants import (
    DEFAULT_DISCONNECT_GRACE_WINDOW,
    DEFAULT_HEARTBEAT_TIMEOUT,
    DEFAULT_LIVENESS_PROBE_INTERVAL,
    DEFAULT_MATCH_STALE_TIMEOUT,
    DEFAULT_MATCH_SWEEP_INTERVAL,
    DEFAULT_QUEUE_STALE_TIMEOUT,
    DEFAULT_QUEUE_SWEEP_INTERVAL,
)


@dataclass(frozen=True)
class SessionConfig:
    """Таймауты ядра (секунды)."""
    queue_stale_timeout: float = DEFAULT_QUEUE_STALE_TIMEOUT
    match_stale_timeout: float = DEFAULT_MATCH_STALE_TIMEOUT
    disconnect_grace_window: float = DEFAULT_DISCONNECT_GRACE_WINDOW
    heartbeat_timeout: float = DEFAULT_HEARTBEAT_TIMEOUT
    liveness_probe_interval: float = DEFAULT_LIVENESS_PROBE_INTERVAL
    queue_sweep_interval: float = DEFAULT_QUEUE_SWEEP_INTERVAL
    match_sweep_interval: float = DEFAULT_MATCH_SWEEP_INTERVAL

    def __post_init__(self):
        for name, value in vars(self).items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class AppConfig:
    identity_secret: str = ""
    debug: bool = False
    allowed_origins: tuple[str, ...] = ("*",)
    session: SessionConfig = SessionConfig()


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@lru_cache
def get_config() -> AppConfig:
    session = SessionConfig(
        queue_stale_timeout=_env_float("QUEUE_STALE_TIMEOUT", DEFAULT_QUEUE_STALE_TIMEOUT),
        match_stale_timeout=_env_float("MATCH_STALE_TIMEOUT", DEFAULT_MATCH_STALE_TIMEOUT),
        disconnect_grace_window=_env_float("DISCONNECT_GRACE_WINDOW", DEFAULT_DISCONNECT_GRACE_WINDOW),
        heartbeat_timeout=_env_float("HEARTBEAT_TIMEOUT", DEFAULT_HEARTBEAT_TIMEOUT),
        liveness_probe_interval=_env_float("LIVENESS_PROBE_INTERVAL", DEFAULT_LIVENESS_PROBE_INTERVAL),
        queue_sweep_interval=_env_float("QUEUE_SWEEP_INTERVAL", DEFAULT_QUEUE_SWEEP_INTERVAL),
        match_sweep_interval=_env_float("MATCH_SWEEP_INTERVAL", DEFAULT_MATCH_SWEEP_INTERVAL),
    )
    return AppConfig(
        identity_secret=os.environ.get("IDENTITY_SECRET", ""),
        debug=os.environ.get("DEBUG", "0").lower() in ("1", "true", "yes"),
        allowed_origins=tuple(os.environ.get("ALLOWED_ORIGINS", "*").split(",")),
        session=session,
    )
