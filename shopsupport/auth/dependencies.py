"""
FastAPI authentication dependencies for protected HTTP routes.

Usage:
    from shopsupport.auth.dependencies import require_user, require_any_role

    @app.get("/api/agents/online")
    async def online(user: UserPrincipal = Depends(require_staff)):
        ...

    @app.put("/api/conversations/{conversation_id}/assign")
    async def assign(user: UserPrincipal = Depends(require_any_role(["manager", "admin"]))):
        ...
"""

from typing import Optional, List, Callable
from dataclasses import dataclass, field

from fastapi import Request, HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from shopsupport.auth.config import get_auth_config, STAFF_ROLES
from shopsupport.auth.tokens import get_token_validator, TokenClaims
from shopsupport.errors import AuthenticationFailure
from logs.logging_config import get_core_logger

logger = get_core_logger("dependencies")

# FastAPI security scheme for OpenAPI docs
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class UserPrincipal:
    """
    Authenticated staff principal.

    Attached to request.state.user for downstream access.
    """

    user_id: Optional[int]
    username: str
    role: Optional[str]
    raw_claims: dict = field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        return self.role == role

    def has_any_role(self, roles: List[str]) -> bool:
        return self.role in roles


def _extract_token(
    authorization: Optional[HTTPAuthorizationCredentials],
    request: Request,
) -> Optional[str]:
    """
    Extract bearer token from Authorization header or query param.

    Priority:
    1. Authorization: Bearer <token> header
    2. ?access_token=<token> query param
    """
    if authorization and authorization.credentials:
        return authorization.credentials

    token = request.query_params.get("access_token")
    return token if token else None


async def _validate_and_attach(request: Request, token: str) -> UserPrincipal:
    """Validate token and attach user principal to request.state."""
    try:
        claims: TokenClaims = await get_token_validator().validate_token(token)
    except AuthenticationFailure as e:
        logger.warning(f"HTTP auth failed: {e.message}")
        raise HTTPException(status_code=401, detail=e.message)

    principal = UserPrincipal(
        user_id=claims.user_id,
        username=claims.username,
        role=claims.role,
        raw_claims=claims.raw_claims,
    )
    request.state.user = principal
    request.state.user_id = principal.user_id
    return principal


async def require_user(
    request: Request,
    authorization: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> UserPrincipal:
    """
    Dependency that requires a valid staff token.

    Returns UserPrincipal on success, raises HTTPException on failure.
    """
    config = get_auth_config()

    # Auth bypass for local development
    if not config.enabled:
        logger.warning("Auth disabled - using anonymous principal")
        principal = UserPrincipal(user_id=None, username="anonymous", role=None)
        request.state.user = principal
        request.state.user_id = None
        return principal

    token = _extract_token(authorization, request)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization token")

    return await _validate_and_attach(request, token)


def require_any_role(roles: List[str]) -> Callable:
    """
    Dependency factory that requires any of the specified roles.

    Usage:
        @app.get("/reports")
        async def reports(user: UserPrincipal = Depends(require_any_role(["manager", "admin"]))):
            ...
    """

    async def role_checker(
        request: Request,
        authorization: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    ) -> UserPrincipal:
        principal = await require_user(request, authorization)
        if principal.role is None and not get_auth_config().enabled:
            return principal
        if not principal.has_any_role(roles):
            raise HTTPException(
                status_code=403,
                detail=f"Required roles (any): {roles}",
            )
        return principal

    return role_checker


# Alias for endpoints open to every staff role
require_staff = require_any_role(list(STAFF_ROLES))
