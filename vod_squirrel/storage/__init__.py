"""
Storage Layer.

Persists the application's INI configuration.
"""

from .config_manager import ConfigManager, get_config_dir

__all__ = ["ConfigManager", "get_config_dir"]
