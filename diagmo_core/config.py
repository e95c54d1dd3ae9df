"""
Centralized configuration for diagmo-core.

Settings are read from environment variables prefixed with ``DIAGMO_``
(e.g. ``DIAGMO_LOG_LEVEL=DEBUG``) and validated by pydantic.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Tunables shared by the parsers, analysis, validation and diff engines."""

    model_config = SettingsConfigDict(env_prefix="DIAGMO_", extra="ignore")

    # === Logging ===
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    # === Geometry ===
    default_node_width: float = Field(default=100, description="Width used when a node has no size")
    default_node_height: float = Field(default=50, description="Height used when a node has no size")

    # === Analysis ===
    hub_node_count: int = Field(default=5, description="Number of hub nodes reported")
    top_shape_count: int = Field(default=10, description="Number of shapes in the top-shapes table")

    # === Validation ===
    overlap_node_limit: Optional[int] = Field(
        default=None,
        description="Skip the overlap rule above this node count (None = always run)",
    )

    # === Diff ===
    diff_position_tolerance: float = Field(default=0.5, description="Ignored position drift for graph diffs")
    version_position_tolerance: float = Field(default=1.0, description="Ignored position drift for version diffs")

    # === Mermaid rendering ===
    mermaid_cli_path: str = Field(default="mmdc", description="mermaid-cli executable")
    mermaid_render_timeout: float = Field(default=30.0, description="Render timeout in seconds")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("default_node_width", "default_node_height")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Default node size must be positive")
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Get the cached settings instance.

    Raises:
        ConfigurationError: If a DIAGMO_* variable holds an invalid value
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid diagmo settings: {e.error_count()} validation error(s)\n{e}") from e
