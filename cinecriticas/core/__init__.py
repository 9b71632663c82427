"""Core app configuration, database and security primitives."""

from cinecriticas.core.config import Settings, get_settings, settings
from cinecriticas.core.database import get_db

__all__ = ["Settings", "get_settings", "settings", "get_db"]
