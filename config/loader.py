"""
Configuration loading for firesearch.

Builds a ReplicationConfig from defaults, an optional JSON config file and
environment overrides, and imports the reference catalog.
"""

import importlib
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

from pydantic import ValidationError

from core.models.config import ReplicationConfig, GlobalSettings
from core.models.reference import ReferenceDescriptor
from .defaults import ENV_VAR_MAPPING, STRING_SETTINGS, get_default_config

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration file or values are invalid"""


class ReferenceCatalogError(Exception):
    """Reference catalog cannot be imported or is inconsistent"""


class ConfigurationLoader:
    """Load and validate replication configuration"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()

    def load(self, config_file: Optional[Union[str, Path]] = None) -> ReplicationConfig:
        """
        Load configuration.

        Precedence, lowest first: defaults, config file, environment.

        Args:
            config_file: JSON file; falls back to FIRESEARCH_CONFIG_FILE

        Returns:
            Validated ReplicationConfig

        Raises:
            ConfigurationError: If the file cannot be read or values are invalid
        """
        config_data = get_default_config()

        config_file = config_file or self.global_settings.config_file
        if config_file:
            self._merge(config_data, self._read_file(Path(config_file)))

        config_data = self._apply_env_overrides(config_data)

        try:
            return ReplicationConfig(**config_data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def _read_file(self, config_file: Path) -> Dict[str, Any]:
        """Read a JSON config file"""
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to load config from {config_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {config_file} must contain a JSON object")

        logger.info(f"Loaded configuration from {config_file}")
        return data

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        """Recursively merge ``override`` into ``base``"""
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                self._merge(base[key], value)
            else:
                base[key] = value

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]

        # Convert value to appropriate type
        if path in STRING_SETTINGS:
            current[keys[-1]] = value
        else:
            current[keys[-1]] = self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        # Boolean conversion
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        # Numeric conversion
        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        # Return as string
        return value


def load_config(config_file: Optional[Union[str, Path]] = None) -> ReplicationConfig:
    """Load configuration with the default loader"""
    return ConfigurationLoader().load(config_file)


def load_references(import_path: str) -> List[ReferenceDescriptor]:
    """
    Import the reference catalog named by ``module:attribute``.

    Args:
        import_path: Module and attribute holding an iterable of descriptors

    Returns:
        The descriptors in catalog order

    Raises:
        ReferenceCatalogError: If the catalog cannot be imported, holds
            something other than descriptors, or repeats a descriptor
    """
    module_name, _, attribute = import_path.partition(':')
    if not module_name or not attribute:
        raise ReferenceCatalogError(f'Reference catalog must be given as "module:attribute", got {import_path!r}')

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ReferenceCatalogError(f"Cannot import reference catalog module {module_name}: {e}") from e

    try:
        catalog = getattr(module, attribute)
    except AttributeError:
        raise ReferenceCatalogError(f"Module {module_name} has no attribute {attribute}") from None

    references: List[ReferenceDescriptor] = []
    seen = set()
    for descriptor in catalog:
        if not isinstance(descriptor, ReferenceDescriptor):
            raise ReferenceCatalogError(f"Catalog entry is not a ReferenceDescriptor: {descriptor!r}")
        if descriptor.key in seen:
            raise ReferenceCatalogError(f"Duplicate reference in catalog: {descriptor.key}")
        seen.add(descriptor.key)
        references.append(descriptor)

    logger.info(f"Loaded {len(references)} references from {import_path}")
    return references
