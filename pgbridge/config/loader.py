"""
Configuration loading for the connection pool.

The data-access layer only consumes a resolved DatabaseConfig. These helpers
resolve one from environment variables (optionally seeded from a .env file)
or validate one supplied programmatically.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from pgbridge.config.models import DatabaseConfig

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


def _format_validation_error(e: ValidationError) -> str:
    error_messages = []
    for error in e.errors():
        location = " -> ".join(str(loc) for loc in error["loc"])
        error_messages.append(f"  {location}: {error['msg']}")
    return "\n".join(error_messages)


def load_database_config(
    env_var: str = "DATABASE_URL",
    dotenv_path: Optional[str] = None,
) -> DatabaseConfig:
    """
    Build a DatabaseConfig from environment variables.

    Reads the connection string from `env_var` and the pool bounds from
    DB_POOL_MIN_CONN, DB_POOL_MAX_CONN and DB_POOL_DRAIN_TIMEOUT.
    Variables already present in the environment take precedence over
    the .env file.

    Args:
        env_var: Name of the variable holding the connection string
        dotenv_path: Optional explicit .env file location

    Returns:
        Validated DatabaseConfig

    Raises:
        ConfigError: If the connection string is missing or a value is invalid
    """
    load_dotenv(dotenv_path)

    database_url = os.getenv(env_var)
    if not database_url:
        raise ConfigError(
            f"{env_var} environment variable is not set. "
            "Please set it in your .env file."
        )

    raw_config = {
        "url": database_url,
        "min_connections": os.getenv("DB_POOL_MIN_CONN", "1"),
        "max_connections": os.getenv("DB_POOL_MAX_CONN", "10"),
        "drain_timeout": os.getenv("DB_POOL_DRAIN_TIMEOUT", "30"),
    }

    try:
        config = DatabaseConfig(**raw_config)
    except ValidationError as e:
        raise ConfigError(
            "Invalid pool configuration in environment:\n"
            + _format_validation_error(e)
        ) from e

    logger.debug(
        f"Loaded database configuration for {config.describe()}",
        extra={
            "min_connections": config.min_connections,
            "max_connections": config.max_connections,
        },
    )
    return config


def load_config_from_dict(config_dict: dict) -> DatabaseConfig:
    """
    Create a DatabaseConfig from a dictionary.

    Useful for testing or when configuration is resolved by the caller
    (e.g. when switching environments before recreating the pool).

    Args:
        config_dict: Dictionary with configuration values

    Returns:
        Validated DatabaseConfig object

    Raises:
        ConfigError: If validation fails
    """
    try:
        return DatabaseConfig(**config_dict)
    except ValidationError as e:
        raise ConfigError(
            "Invalid configuration:\n" + _format_validation_error(e)
        ) from e
