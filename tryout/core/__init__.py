"""
Core module for application configuration and utilities.

Note: auth and engine modules are not imported at package level to avoid
circular imports with tryout.models. Import them directly:
from tryout.core.auth import ... or from tryout.core.engine import ...
"""
from .config import settings

__all__ = ["settings"]
