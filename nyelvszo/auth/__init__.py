"""
Authentication package.

Contains role tiers and channel grants, bearer token verification, the
authentication gate that binds identities to live connections, and the
FastAPI dependencies guarding the management routes.
"""

from .roles import Role
from .tokens import Identity, TokenVerifier, create_access_token

__all__ = ["Role", "Identity", "TokenVerifier", "create_access_token"]
