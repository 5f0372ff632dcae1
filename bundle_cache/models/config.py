"""
Pydantic model for fetcher configuration.
Provides robust validation for all settings.
"""

from pathlib import Path

from pydantic import BaseModel, field_validator

DEFAULT_ORIGIN_URL = (
    "https://github.com/filecoin-project/builtin-actors/releases/download"
)
DEFAULT_FAMILY = "builtin-actors"

MIN_CHUNK_SIZE = 4096  # 4 KB
MAX_CHUNK_SIZE = 8388608  # 8 MB


class FetcherConfig(BaseModel):
    """A validated configuration model for the bundle fetcher."""

    # Storage
    cache_dir: Path

    # Origin
    origin_url: str = DEFAULT_ORIGIN_URL
    family: str = DEFAULT_FAMILY

    # Transfer Settings
    connect_timeout: float = 15.0
    read_timeout: float = 90.0
    chunk_size: int = 262144  # 256 KB

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("origin_url")
    @classmethod
    def validate_origin(cls, v: str) -> str:
        """Ensures the origin is an absolute http(s) URL and drops a trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Origin URL must start with http:// or https://.")
        v = v.rstrip("/")
        if v in ("http:/", "https:/", "http:", "https:"):
            raise ValueError("Origin URL must include a host.")
        return v

    @field_validator("family")
    @classmethod
    def validate_family(cls, v: str) -> str:
        """Ensures the family name is usable as a single directory name."""
        if not v or v in (".", "..") or "/" in v or "\\" in v:
            raise ValueError("Family must be a non-empty name without separators.")
        return v

    @field_validator("connect_timeout", "read_timeout")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be positive.")
        return v

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        """Keeps the streaming chunk size within sane bounds."""
        if v < MIN_CHUNK_SIZE or v > MAX_CHUNK_SIZE:
            raise ValueError(
                f"Chunk size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE}."
            )
        return v

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        return set(cls.model_fields)
