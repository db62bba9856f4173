"""
Pydantic models for connection and bulk-transfer configuration.

DatabaseConfig describes one connection pool. ImportOptions and
ExportOptions carry the per-call settings of the CSV pipelines.
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# TCP keepalive settings to prevent connection timeouts
KEEPALIVE_KWARGS = {
    "keepalives": 1,
    "keepalives_idle": 30,
    "keepalives_interval": 10,
    "keepalives_count": 5,
}


class DatabaseConfig(BaseModel):
    """
    Connection pool configuration.

    Either `url` (a libpq connection string or URI) or the discrete
    host/port/dbname/user/password fields are used. When `url` is set it
    wins and the discrete fields are ignored.

    Attributes:
        url: PostgreSQL connection string (e.g. "postgresql://u:p@host/db")
        host: Server hostname (default: "localhost")
        port: Server port (default: 5432)
        dbname: Database name (default: "postgres")
        user: Role name (default: "postgres")
        password: Role password
        min_connections: Connections opened eagerly (default: 1)
        max_connections: Upper bound of the pool (default: 10)
        drain_timeout: Seconds to wait for lent connections when the pool
            is recreated (default: 30)
        keepalives: Enable TCP keepalives on every connection (default: True)
        options: Extra keyword arguments passed to psycopg2.connect
    """
    model_config = ConfigDict(populate_by_name=True)

    url: Optional[str] = Field(default=None, alias="database_url")
    host: str = "localhost"
    port: int = 5432
    dbname: str = Field(default="postgres", alias="database")
    user: str = "postgres"
    password: Optional[str] = None
    min_connections: int = 1
    max_connections: int = 10
    drain_timeout: float = 30.0
    keepalives: bool = True
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("min_connections")
    @classmethod
    def validate_min_connections(cls, v):
        if v < 0:
            raise ValueError("min_connections must be >= 0")
        return v

    @field_validator("drain_timeout")
    @classmethod
    def validate_drain_timeout(cls, v):
        if v < 0:
            raise ValueError("drain_timeout must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_pool_bounds(self):
        if self.max_connections < 1:
            raise ValueError("max_connections must be >= 1")
        if self.min_connections > self.max_connections:
            raise ValueError("min_connections cannot exceed max_connections")
        return self

    def connect_kwargs(self) -> Dict[str, Any]:
        """
        Build the keyword arguments for psycopg2.connect.

        Returns:
            Dictionary suitable for ThreadedConnectionPool(min, max, **kwargs)
        """
        kwargs: Dict[str, Any] = {}
        if self.url:
            kwargs["dsn"] = self.url
        else:
            kwargs.update(
                host=self.host,
                port=self.port,
                dbname=self.dbname,
                user=self.user,
            )
            if self.password is not None:
                kwargs["password"] = self.password

        if self.keepalives:
            kwargs.update(KEEPALIVE_KWARGS)
        kwargs.update(self.options)
        return kwargs

    def describe(self) -> str:
        """Connection target without credentials, for log messages."""
        if self.url:
            # Strip credentials so passwords never reach the logs
            target = self.url.rsplit("@", 1)[-1]
            return re.sub(r"password=\S+", "password=***", target)
        return f"{self.host}:{self.port}/{self.dbname}"


class ImportOptions(BaseModel):
    """
    Options for importing a delimited file into a table.

    Attributes:
        limit: Maximum data rows per INSERT batch (default: 5000)
        ignore_conflicts: Append ON CONFLICT DO NOTHING to every batch
        debug: Log every resolved statement
        delimiter: Column separator (default: ",")
        quotechar: Quote character (default: '"')
        encoding: File encoding (default: "utf-8")
        empty_as_null: Also insert quoted empty fields ("") as NULL; unquoted
            empty fields are always NULL
    """
    limit: int = 5000
    ignore_conflicts: bool = False
    debug: bool = False
    delimiter: str = ","
    quotechar: str = '"'
    encoding: str = "utf-8"
    empty_as_null: bool = False

    @field_validator("limit")
    @classmethod
    def validate_limit(cls, v):
        if v < 1:
            raise ValueError("limit must be a positive number of rows")
        return v

    @field_validator("delimiter", "quotechar")
    @classmethod
    def validate_single_char(cls, v):
        if len(v) != 1:
            raise ValueError("must be a single character")
        return v


class ExportOptions(BaseModel):
    """
    Options for streaming a query result into a delimited file.

    Attributes:
        fetch_size: Rows fetched from the server-side cursor per round trip.
            This is the only row buffer of the pipeline (default: 500)
        delimiter: Column separator (default: ",")
        encoding: File encoding (default: "utf-8")
        debug: Log the resolved statement
    """
    fetch_size: int = 500
    delimiter: str = ","
    encoding: str = "utf-8"
    debug: bool = False

    @field_validator("fetch_size")
    @classmethod
    def validate_fetch_size(cls, v):
        if v < 1:
            raise ValueError("fetch_size must be >= 1")
        return v

    @field_validator("delimiter")
    @classmethod
    def validate_delimiter(cls, v):
        if len(v) != 1:
            raise ValueError("delimiter must be a single character")
        return v
