"""
Authentication configuration.

Read once from the environment and cached; tests call
``clear_auth_config_cache()`` after changing env vars.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from shopsupport.core_config import get_secret
from logs.logging_config import get_core_logger

logger = get_core_logger("shopsupport.auth.config")

_DEV_JWT_SECRET = "shopsupport-dev-secret"
STAFF_ROLES = ("agent", "manager", "admin")


@dataclass(frozen=True)
class AuthConfig:
    enabled: bool
    jwt_secret: str
    algorithm: str = "HS256"
    token_ttl_seconds: int = 86400
    allow_legacy_user_id: bool = False


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _resolve_jwt_secret() -> str:
    try:
        return get_secret("JwtSecret")
    except ValueError:
        if os.getenv("ENVIRONMENT", "development").lower() == "production":
            raise
        logger.warning("JWT_SECRET not configured - using development signing secret")
        return _DEV_JWT_SECRET


@lru_cache(maxsize=1)
def get_auth_config() -> AuthConfig:
    return AuthConfig(
        enabled=_flag("AUTH_ENABLED", "true"),
        jwt_secret=_resolve_jwt_secret(),
        algorithm=os.getenv("AUTH_ALGORITHM", "HS256"),
        token_ttl_seconds=int(os.getenv("AUTH_TOKEN_TTL", "86400")),
        allow_legacy_user_id=_flag("AUTH_ALLOW_LEGACY_USER_ID", "false"),
    )


def clear_auth_config_cache() -> None:
    get_auth_config.cache_clear()
