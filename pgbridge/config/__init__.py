"""
Configuration module for the data-access layer.

This module provides Pydantic models for pool connection settings and
bulk import/export options, plus environment-based loading helpers.
"""

from pgbridge.config.models import (
    DatabaseConfig,
    ExportOptions,
    ImportOptions,
)
from pgbridge.config.loader import (
    ConfigError,
    load_database_config,
    load_config_from_dict,
)

__all__ = [
    # Models
    "DatabaseConfig",
    "ExportOptions",
    "ImportOptions",
    # Loader
    "ConfigError",
    "load_database_config",
    "load_config_from_dict",
]
