# ==============================================================================
# FILE: shopsupport/auth/tokens.py
# DESCRIPTION: Signed, time-limited staff credentials carrying {id, username, role}
# ==============================================================================
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import jwt

from shopsupport.auth.config import AuthConfig, STAFF_ROLES, get_auth_config
from shopsupport.errors import AuthenticationFailure
from logs.logging_config import get_core_logger

logger = get_core_logger("tokens")


@dataclass
class TokenClaims:
    """Verified staff identity extracted from a credential."""

    user_id: int
    username: str
    role: str
    raw_claims: Dict[str, Any] = field(default_factory=dict)


def issue_token(
    user_id: int,
    username: str,
    role: str,
    *,
    ttl_seconds: Optional[int] = None,
    config: Optional[AuthConfig] = None,
) -> str:
    """Sign a staff credential."""
    cfg = config or get_auth_config()
    now = int(time.time())
    payload = {
        "id": int(user_id),
        "username": username,
        "role": role,
        "iat": now,
        "exp": now + (ttl_seconds if ttl_seconds is not None else cfg.token_ttl_seconds),
    }
    return jwt.encode(payload, cfg.jwt_secret, algorithm=cfg.algorithm)


class TokenValidator:
    """Verifies credentials presented by `authenticate` frames and HTTP bearers.

    Every failure surfaces as AuthenticationFailure; the reason only goes to
    the log, never to the client.
    """

    def __init__(self, config: Optional[AuthConfig] = None):
        self._config = config

    @property
    def config(self) -> AuthConfig:
        return self._config or get_auth_config()

    async def validate_token(self, token: Any) -> TokenClaims:
        if not isinstance(token, str) or not token:
            raise AuthenticationFailure()
        cfg = self.config
        try:
            claims = jwt.decode(
                token,
                cfg.jwt_secret,
                algorithms=[cfg.algorithm],
                options={"require": ["exp", "id", "role"]},
            )
        except jwt.ExpiredSignatureError:
            logger.info("Token rejected: expired")
            raise AuthenticationFailure()
        except jwt.InvalidTokenError as e:
            logger.info(f"Token rejected: {type(e).__name__}")
            raise AuthenticationFailure()

        role = claims.get("role")
        if role not in STAFF_ROLES:
            logger.info(f"Token rejected: unsupported role {role!r}")
            raise AuthenticationFailure()
        try:
            user_id = int(claims["id"])
        except (TypeError, ValueError):
            logger.info("Token rejected: non-integer id claim")
            raise AuthenticationFailure()

        return TokenClaims(
            user_id=user_id,
            username=str(claims.get("username") or ""),
            role=role,
            raw_claims=claims,
        )


_validator: Optional[TokenValidator] = None


def get_token_validator() -> TokenValidator:
    global _validator
    if _validator is None:
        _validator = TokenValidator()
    return _validator
