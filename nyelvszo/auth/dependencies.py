"""
Authentication dependencies for the management routes.

Routes declare the minimum role tier they need; the bearer token is verified
with the same verifier the live connections use.
"""

from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..exceptions import AuthenticationError
from .roles import Role
from .tokens import Identity, TokenVerifier

bearer_scheme = HTTPBearer(auto_error=False)


def get_token_verifier(request: Request) -> TokenVerifier:
    """Verifier owned by the application container."""
    container = getattr(request.app.state, "container", None)
    verifier = getattr(container, "token_verifier", None) if container else None
    if verifier is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Authentication unavailable")
    return verifier


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Identity:
    """Identity of the bearer token, or 401."""
    try:
        return verifier.verify(credentials.credentials if credentials else None)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.user_friendly,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def require_role(minimum: Role) -> Callable[..., Awaitable[Identity]]:
    """Dependency factory: the caller must hold at least this role tier."""

    async def dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role < minimum:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires {minimum.label} role",
            )
        return identity

    return dependency


__all__ = ["bearer_scheme", "get_token_verifier", "get_current_identity", "require_role"]
