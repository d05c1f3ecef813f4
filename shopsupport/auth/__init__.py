"""Staff credentials: token issuing/verification and HTTP dependencies."""

from .config import AuthConfig, get_auth_config, clear_auth_config_cache, STAFF_ROLES
from .tokens import TokenClaims, TokenValidator, issue_token, get_token_validator

__all__ = [
    "AuthConfig",
    "get_auth_config",
    "clear_auth_config_cache",
    "STAFF_ROLES",
    "TokenClaims",
    "TokenValidator",
    "issue_token",
    "get_token_validator",
]
