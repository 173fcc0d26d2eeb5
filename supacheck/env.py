from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from urllib.parse import urlparse

from dotenv import load_dotenv

from .constants import (
    DEFAULT_API_BASE_URL,
    DEFAULT_AUTHORIZATION_ENDPOINT,
    DEFAULT_TOKEN_ENDPOINT,
    LOGGER,
)
from .errors import ConfigurationError

REQUIRED_ENV = (
    "SUPABASE_CLIENT_ID",
    "SUPABASE_CLIENT_SECRET",
    "SUPACHECK_BASE_URL",
)


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and passed down."""

    client_id: str
    client_secret: str
    base_url: str
    authorization_endpoint: str = DEFAULT_AUTHORIZATION_ENDPOINT
    token_endpoint: str = DEFAULT_TOKEN_ENDPOINT
    api_base_url: str = DEFAULT_API_BASE_URL
    api_timeout: float = 30.0
    session_secret: str = ""
    audit_log_path: str = ".audit_logs.json"
    post_login_path: str = "/projects"
    secure_cookies: bool = True
    assistant_api_key: str = ""

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url.rstrip('/')}/callback"

    @property
    def cookie_secret(self) -> str:
        return self.session_secret or self.require("client_secret")

    def require(self, name: str) -> str:
        if name not in {field.name for field in fields(self)}:
            raise ConfigurationError(f"Unknown setting {name!r}.")
        value = getattr(self, name)
        if not isinstance(value, str) or not value.strip():
            raise ConfigurationError(f"Missing required configuration value: {name}.")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            client_id=os.getenv("SUPABASE_CLIENT_ID", "").strip(),
            client_secret=os.getenv("SUPABASE_CLIENT_SECRET", "").strip(),
            base_url=os.getenv("SUPACHECK_BASE_URL", "").strip().rstrip("/"),
            authorization_endpoint=os.getenv(
                "SUPABASE_AUTHORIZATION_ENDPOINT", DEFAULT_AUTHORIZATION_ENDPOINT
            ),
            token_endpoint=os.getenv("SUPABASE_TOKEN_ENDPOINT", DEFAULT_TOKEN_ENDPOINT),
            api_base_url=os.getenv("SUPABASE_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
            api_timeout=_get_env_float("SUPABASE_API_TIMEOUT", 30.0),
            session_secret=os.getenv("SUPACHECK_SESSION_SECRET", "").strip(),
            audit_log_path=os.getenv("SUPACHECK_AUDIT_LOG_PATH", ".audit_logs.json"),
            post_login_path=os.getenv("SUPACHECK_POST_LOGIN_PATH", "/projects"),
            secure_cookies=is_truthy(os.getenv("SUPACHECK_SECURE_COOKIES", "1")),
            assistant_api_key=os.getenv("PERPLEXITY_API_KEY", "").strip(),
        )


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a numeric value.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=True)


def validate_env() -> None:
    missing = [key for key in REQUIRED_ENV if not os.getenv(key, "").strip()]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    base_url = os.getenv("SUPACHECK_BASE_URL", "").strip()
    parsed = urlparse(base_url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigurationError(
            "SUPACHECK_BASE_URL must be an absolute URL (for example: "
            "https://supacheck.example.com)."
        )
    if parsed.scheme == "http" and parsed.hostname not in {"localhost", "127.0.0.1"}:
        LOGGER.warning(
            "SUPACHECK_BASE_URL is not HTTPS; secure session cookies will not be sent back."
        )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("SUPACHECK_DEBUG", "1"))
    if debug_enabled:
        logging.basicConfig(level=logging.INFO)
        LOGGER.setLevel(logging.INFO)
    return debug_enabled
