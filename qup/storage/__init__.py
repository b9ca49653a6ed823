"""
Storage Layer.

This package handles all data persistence: the settings section and the
favorites groups of qup.ini.
"""

from .config_manager import ConfigManager
from .favorites import FavoritesStore

__all__ = ["ConfigManager", "FavoritesStore"]
