"""
Authentication gate for live connections.

A connection starts anonymous and may authenticate once by sending a bearer
token. The role bound at that moment is kept for the life of the connection;
expiry is not re-checked mid-session.
"""

from typing import Any

from ..error_types import ErrorCode
from ..exceptions import AuthenticationError, ErrorContext
from ..realtime.connection_registry import ConnectionRegistry
from ..structured_logging.enhanced_logging_config import get_logger
from .roles import features_for
from .tokens import Identity, TokenVerifier

logger = get_logger(__name__)


class AuthenticationGate:
    """Verifies credentials and binds identities onto connections."""

    def __init__(self, registry: ConnectionRegistry, verifier: TokenVerifier) -> None:
        self.registry = registry
        self.verifier = verifier

    async def authenticate(self, connection_id: str, credential: str | None) -> Identity:
        """
        Verify a credential and bind the identity onto a connection.

        Args:
            connection_id: Connection to authenticate
            credential: Bearer token

        Returns:
            Identity: The bound identity

        Raises:
            AuthenticationError: If the token is missing or invalid, or the
                connection is already authenticated
        """
        connection = self.registry.get(connection_id)
        context = ErrorContext(connection_id=connection_id, command="auth")
        if connection is None:
            raise AuthenticationError("Unknown connection", context, code=ErrorCode.AUTH_FAILED)
        if connection.is_authenticated:
            raise AuthenticationError(context=context, code=ErrorCode.ALREADY_AUTHENTICATED)

        try:
            identity = self.verifier.verify(credential)
        except AuthenticationError as e:
            e.context = context
            raise

        self.registry.bind_identity(connection_id, identity)
        logger.info(
            "Connection authenticated",
            connection_id=connection_id,
            user_id=identity.user_id,
            role=identity.role.label,
        )
        return identity

    @staticmethod
    def success_payload(identity: Identity) -> dict[str, Any]:
        """Payload of the auth_success frame."""
        return {
            "userId": identity.user_id,
            "email": identity.email,
            "role": int(identity.role),
            "features": features_for(identity.role),
        }
