"""
Configuration management for firesearch

Handles loading and validation of configuration and the reference catalog.
"""

from .loader import (
    ConfigurationLoader, ConfigurationError, ReferenceCatalogError, load_config, load_references
)
from .defaults import DEFAULT_SETTINGS

__all__ = [
    "ConfigurationLoader",
    "ConfigurationError",
    "ReferenceCatalogError",
    "load_config",
    "load_references",
    "DEFAULT_SETTINGS",
]
