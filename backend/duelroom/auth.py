"""
Проверка identity-токена, выданного внешним сервисом авторизации.
Токен: query string с полями user_id, display_name и подписью hash:
HMAC-SHA256 от отсортированных "k=v" строк, ключ выводится из IDENTITY_SECRET.
"""
import hashlib
import hmac
from urllib.parse import parse_qsl, urlencode

from .config import AppConfig, get_config


def _secret_key(secret: str) -> bytes:
    return hmac.new(b"IdentityToken", secret.encode(), hashlib.sha256).digest()


def _data_check_string(fields: dict) -> str:
    return "\n".join(f"{k}={v}" for k, v in sorted(fields.items()))


def sign_identity(user_id: str, display_name: str, secret: str) -> str:
    """Выпустить токен. Используется сервисом авторизации и в тестах."""
    fields = {"user_id": str(user_id), "display_name": display_name}
    signature = hmac.new(
        _secret_key(secret),
        _data_check_string(fields).encode(),
        hashlib.sha256,
    ).hexdigest()
    return urlencode({**fields, "hash": signature})


def validate_identity_token(token: str, config: AppConfig | None = None) -> dict | None:
    """
    Проверяет подпись токена и возвращает {"user_id", "display_name"} или None.
    """
    if not token:
        return None
    config = config or get_config()
    secret = config.identity_secret
    if not secret:
        if config.debug:
            # В режиме отладки без секрета принимаем неподписанные токены
            return _parse_token_unsafe(token)
        return None

    parsed = dict(parse_qsl(token))
    hash_from_token = parsed.pop("hash", None)
    if not hash_from_token:
        return None

    calculated = hmac.new(
        _secret_key(secret),
        _data_check_string(parsed).encode(),
        hashlib.sha256,
    ).hexdigest()
    if not hmac.compare_digest(calculated, hash_from_token):
        return None

    return _user_from_parsed(parsed)


def _parse_token_unsafe(token: str) -> dict | None:
    """Парсит токен без проверки подписи (только для debug)."""
    parsed = dict(parse_qsl(token))
    parsed.pop("hash", None)
    return _user_from_parsed(parsed)


def _user_from_parsed(parsed: dict) -> dict | None:
    user_id = parsed.get("user_id")
    if not user_id:
        return None
    return {
        "user_id": user_id,
        "display_name": parsed.get("display_name", ""),
    }
