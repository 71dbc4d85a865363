"""
Application assembly: the FastAPI factory and the lifespan handler.
"""

from .factory import create_app

__all__ = ["create_app"]
