# src/rebatch/plugins/config_base.py
"""Base classes for typed plugin configurations.

Plugins inherit from these to get:
- Strict validation (reject unknown fields)
- A factory method with a clear error message

Example usage:
    class DelimitedFileSourceConfig(PathConfig):
        delimiter: str = ";"

    cfg = DelimitedFileSourceConfig.from_dict(config)
    path = cfg.resolved_path()
"""

from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, ValidationError, field_validator

from rebatch.contracts.errors import ConfigurationError


class PluginConfigError(ConfigurationError):
    """Raised when plugin configuration is invalid."""


class PluginConfig(BaseModel):
    """Base class for typed plugin configurations."""

    model_config = {"extra": "forbid"}  # Reject unknown fields

    @classmethod
    def from_dict(cls, config: dict[str, Any]) -> Self:
        """Create config from dict with clear error on validation failure.

        Raises:
            PluginConfigError: If configuration is invalid.
        """
        if not isinstance(config, dict):
            raise PluginConfigError(f"Invalid configuration for {cls.__name__}: config must be a dict, got {type(config).__name__}.")
        try:
            return cls.model_validate(config)
        except ValidationError as e:
            raise PluginConfigError(f"Invalid configuration for {cls.__name__}: {e}") from e


class PathConfig(PluginConfig):
    """Plugin configuration with a required file path."""

    path: str

    @field_validator("path")
    @classmethod
    def validate_path_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("path cannot be empty")
        return v

    def resolved_path(self) -> Path:
        return Path(self.path)


class DelimitedConfig(PathConfig):
    """Shared options of delimited text files (input and error files)."""

    delimiter: str = ";"
    encoding: str = "utf-8"
    columns: list[str] = ["first_name", "last_name", "age"]

    @field_validator("delimiter")
    @classmethod
    def validate_delimiter(cls, v: str) -> str:
        if len(v) != 1:
            raise ValueError("delimiter must be a single character")
        return v

    @field_validator("columns")
    @classmethod
    def validate_columns(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("columns cannot be empty")
        if len(set(v)) != len(v):
            raise ValueError("columns must be unique")
        return v
