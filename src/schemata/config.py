"""
Configuration system for schemata using Pydantic.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class DatabaseConnection(BaseModel):
    """Database connection configuration."""

    host: str = Field(..., description="Database host")
    port: int = Field(5432, description="Database port")
    database: str = Field(..., description="Database name")
    user: str = Field(..., description="Database user")
    password: str = Field(..., description="Database password")
    ssl_mode: str = Field("prefer", description="SSL mode")
    connect_timeout: int = Field(30, description="Connection timeout in seconds")
    command_timeout: int = Field(60, description="Command timeout in seconds")

    def to_dsn(self) -> str:
        """Convert to PostgreSQL DSN string."""
        return (
            f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/"
            f"{self.database}?sslmode={self.ssl_mode}"
        )


class StorageConfig(BaseModel):
    """Persistence backend configuration."""

    backend: Literal["memory", "postgres"] = Field(
        "memory", description="Store implementation"
    )
    connection: Optional[DatabaseConnection] = Field(
        None, description="PostgreSQL connection (postgres backend only)"
    )
    min_pool_size: int = Field(2, description="Minimum connections in pool")
    max_pool_size: int = Field(10, description="Maximum connections in pool")
    schema_table: str = Field("global_schemas", description="Schema snapshot table")
    transaction_table: str = Field(
        "schema_transactions", description="Transaction log table"
    )

    @field_validator("schema_table", "transaction_table")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        if not v or not v.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {v!r}")
        return v


class TransactionConfig(BaseModel):
    """Defaults for schema transactions."""

    max_operations: int = Field(
        100, ge=1, description="Maximum operations in one transaction log"
    )
    create_new_version: bool = Field(
        True, description="Commit materializes a new immutable version"
    )
    activate_on_commit: bool = Field(
        False, description="Make the committed version the project's active schema"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "INFO", description="Log level"
    )
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file: Optional[str] = Field(None, description="Log file path")
    max_size: int = Field(10485760, description="Max log file size in bytes")  # 10MB
    backup_count: int = Field(5, description="Number of backup log files")


class SchemataConfig(BaseSettings):
    """Main schemata configuration."""

    service_name: str = Field("schemata", description="Service name")
    debug: bool = Field(False, description="Enable debug mode")

    storage: StorageConfig = Field(
        default_factory=StorageConfig, description="Storage configuration"
    )
    transactions: TransactionConfig = Field(
        default_factory=TransactionConfig, description="Transaction defaults"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SCHEMATA_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SchemataConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            data = cls._expand_env_vars(data)

            return cls(**data)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

    @classmethod
    def _expand_env_vars(cls, data: Any) -> Any:
        """Recursively expand environment variables in configuration data."""
        if isinstance(data, dict):
            return {k: cls._expand_env_vars(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [cls._expand_env_vars(item) for item in data]
        elif isinstance(data, str):
            return os.path.expandvars(data)
        else:
            return data

    def validate_config(self) -> None:
        """Validate the entire configuration for consistency."""
        if self.storage.backend == "postgres" and self.storage.connection is None:
            raise ConfigurationError(
                "Storage backend 'postgres' requires a connection section"
            )
        if self.storage.min_pool_size > self.storage.max_pool_size:
            raise ConfigurationError(
                f"min_pool_size ({self.storage.min_pool_size}) exceeds "
                f"max_pool_size ({self.storage.max_pool_size})"
            )
        if self.storage.schema_table == self.storage.transaction_table:
            raise ConfigurationError(
                "Schema and transaction tables must have different names"
            )

    def to_yaml(self, path: Union[str, Path]) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(
                self.model_dump(exclude_none=True),
                f,
                default_flow_style=False,
                indent=2,
                sort_keys=False,
            )


def configure_logging(config: LoggingConfig, debug: bool = False) -> None:
    """Apply logging configuration to the root logger."""
    handlers = [logging.StreamHandler()]
    if config.file:
        handlers.append(
            logging.handlers.RotatingFileHandler(
                config.file,
                maxBytes=config.max_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=logging.DEBUG if debug else getattr(logging, config.level),
        format=config.format,
        handlers=handlers,
        force=True,
    )
