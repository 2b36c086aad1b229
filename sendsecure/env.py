from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, ValidationError

from .constants import DEFAULT_AUTH_SERVER, DEFAULT_REDIRECT_URI, DEFAULT_SCOPES, LOGGER


@dataclass(frozen=True)
class AuthConfig:
    auth_server: str
    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    session_path: Path = Path(".sendsecure-session.json")
    http_timeout: float = 30.0
    max_retries: int = 2

    @property
    def origin(self) -> str:
        parsed = urlparse(self.redirect_uri)
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    @property
    def authorize_url(self) -> str:
        return f"{self.auth_server}/oauth/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.auth_server}/oauth/token"

    @property
    def userinfo_url(self) -> str:
        return f"{self.auth_server}/oauth/userinfo"

    @property
    def revoke_url(self) -> str:
        return f"{self.auth_server}/oauth/revoke"


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int) -> int:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be an integer value.")


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def _get_env_url(key: str, default: str) -> str:
    raw = os.getenv(key, "").strip() or default
    try:
        AnyHttpUrl(raw)
    except ValidationError as error:
        raise RuntimeError(f"{key} must be a valid http(s) URL, got {raw!r}.") from error
    return raw.rstrip("/")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def load_config() -> AuthConfig:
    client_id = os.getenv("SENDSECURE_CLIENT_ID", "").strip()
    if not client_id:
        raise RuntimeError("Missing required environment variable: SENDSECURE_CLIENT_ID")

    scopes = tuple(os.getenv("SENDSECURE_SCOPES", " ".join(DEFAULT_SCOPES)).split())
    if "openid" not in scopes:
        LOGGER.warning("SENDSECURE_SCOPES is missing openid; userinfo may be rejected.")

    return AuthConfig(
        auth_server=_get_env_url("SENDSECURE_AUTH_SERVER", DEFAULT_AUTH_SERVER),
        client_id=client_id,
        redirect_uri=_get_env_url("SENDSECURE_REDIRECT_URI", DEFAULT_REDIRECT_URI),
        scopes=scopes,
        session_path=Path(os.getenv("SENDSECURE_SESSION_PATH", ".sendsecure-session.json")),
        http_timeout=_get_env_float("SENDSECURE_HTTP_TIMEOUT", 30.0),
        max_retries=_get_env_int("SENDSECURE_MAX_RETRIES", 2),
    )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SENDSECURE_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
