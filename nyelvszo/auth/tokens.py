"""
Bearer token verification with a shared secret.

Tokens are HS256 JWTs issued by the dictionary's user service. The claims
used here are ``userId`` (or ``sub``), ``email`` and ``role``.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from ..error_types import ErrorCode
from ..exceptions import AuthenticationError, ConfigurationError
from ..structured_logging.enhanced_logging_config import get_logger
from .roles import Role

logger = get_logger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60


@dataclass(frozen=True)
class Identity:
    """A verified user identity."""

    user_id: str
    email: str | None
    role: Role

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "email": self.email, "role": int(self.role)}


class TokenVerifier:
    """Verifies signature, expiry and claims of bearer tokens."""

    def __init__(self, secret_key: str | None, algorithm: str = ALGORITHM):
        if not secret_key or not secret_key.strip():
            logger.error("JWT secret not configured")
            raise ConfigurationError(
                "NYELVSZO_JWT_SECRET must be set to verify bearer tokens",
                config_key="NYELVSZO_JWT_SECRET",
                user_friendly="Server configuration error",
            )
        self._secret_key = secret_key
        self.algorithm = algorithm

    def verify(self, token: str | None) -> Identity:
        """
        Decode and validate a bearer token.

        Args:
            token: Encoded JWT

        Returns:
            Identity: The verified identity

        Raises:
            AuthenticationError: If the token is missing, expired, badly signed or lacks claims
        """
        if not token or not isinstance(token, str):
            raise AuthenticationError(code=ErrorCode.AUTH_TOKEN_REQUIRED)

        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise AuthenticationError(code=ErrorCode.TOKEN_EXPIRED, details={"reason": str(e)}) from e
        except JWTError as e:
            logger.warning("JWT decode error", error=str(e), error_type=type(e).__name__)
            raise AuthenticationError("Invalid authentication token", code=ErrorCode.AUTH_FAILED) from e

        user_id = claims.get("userId") or claims.get("sub")
        if not user_id:
            raise AuthenticationError("Token has no user identifier", code=ErrorCode.AUTH_FAILED)

        try:
            role = Role.parse(claims.get("role", Role.USER))
        except ValueError as e:
            raise AuthenticationError("Token carries an invalid role", code=ErrorCode.AUTH_FAILED) from e
        if role == Role.ANONYMOUS:
            raise AuthenticationError("Token carries an invalid role", code=ErrorCode.AUTH_FAILED)

        return Identity(user_id=str(user_id), email=claims.get("email"), role=role)

    def create_access_token(self, data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
        """Create a JWT access token signed with the configured secret."""
        return create_access_token(data, self._secret_key, expires_delta=expires_delta, algorithm=self.algorithm)


def create_access_token(
    data: dict[str, Any],
    secret_key: str,
    expires_delta: timedelta | None = None,
    algorithm: str = ALGORITHM,
) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(UTC) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    token = jwt.encode(to_encode, secret_key, algorithm=algorithm)
    logger.debug("Access token created", user_id=data.get("userId") or data.get("sub"))
    return token
