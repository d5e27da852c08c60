"""Runtime settings read from CHECK_SEARCH_* environment variables."""

import os
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigError

ENV_PREFIX = "CHECK_SEARCH_"


class Settings(BaseModel):
    """Settings for the scanner, policy store and fix generator."""

    corpus_path: Optional[str] = Field(
        default=None, description="Directory whose subdirectories are the repositories to scan"
    )
    search_url: Optional[str] = Field(
        default=None, description="Base URL of a remote search service (overrides corpus_path)"
    )
    policy_file: Optional[str] = Field(
        default=None, description="JSON file holding the policy namespace"
    )
    max_results: int = Field(default=1000, ge=1, description="Hard cutoff on matches per scan")
    repo_include: str = Field(default=".*", description="Repository include pattern for every check")
    cache_size: int = Field(default=128, ge=1, description="Max memoized scan queries")
    go_version: str = Field(default="1.13.x", description="Go version required in Travis CI configs")
    request_timeout: float = Field(default=60.0, gt=0, description="Remote search timeout in seconds")
    log_level: str = Field(default="INFO")


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Validated Settings

    Raises:
        ConfigError: If a variable holds an invalid value
    """
    env = os.environ if environ is None else environ
    values = {}
    for name in Settings.model_fields:
        key = ENV_PREFIX + name.upper()
        if key in env:
            values[name] = env[key]

    try:
        return Settings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings: {e}") from e
