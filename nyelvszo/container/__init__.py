"""
Dependency injection container for nyelvszo.

Re-exports ApplicationContainer from the main container module.
"""

from nyelvszo.container.main import ApplicationContainer

__all__ = ["ApplicationContainer"]
