"""Configuration models for the REMORES submission downloader."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

# Default endpoints and operational settings
DEFAULT_CANVAS_API_URL: str = "https://canvas.kth.se/api/v1"
DEFAULT_REMORES_URL: str = "https://www.csc.kth.se/cgi-bin/bokning/remores1.4/server/decoder"
DEFAULT_TIMEOUT_SECONDS: int = 30
DEFAULT_PER_PAGE: int = 100
DEFAULT_MAX_ATTEMPTS: int = 3
DEFAULT_BACKOFF_SECONDS: float = 1.0  # 1s, 2s, 4s, ...
DEFAULT_MAX_BACKOFF_SECONDS: float = 30.0
DEFAULT_IDENTIFIER_DOMAIN: str = "kth.se"
DEFAULT_OUTPUT_DIR: str = "downloads"
DEFAULT_MAX_WORKERS: int = 4
DEFAULT_FILENAME_TEMPLATE: str = "{time:%Y%m%d%H%M}-{identifier}-{filename}"


class CanvasConfig(BaseModel):
    """Canvas REST API access.

    Attributes:
        api_url: Base URL of the Canvas API, including ``/api/v1``.
        api_token: Bearer token. Filled in by the CLI from ``CANVAS_API_TOKEN``.
        per_page: Page size requested from paginated endpoints.
        timeout_seconds: Per-request timeout.
    """

    api_url: str = DEFAULT_CANVAS_API_URL
    api_token: str = ""
    per_page: int = Field(default=DEFAULT_PER_PAGE, gt=0)
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class RemoresConfig(BaseModel):
    """REMORES scheduling site access.

    Attributes:
        url: The REMORES ``decoder`` endpoint.
        timeout_seconds: Per-request timeout.
    """

    url: str = DEFAULT_REMORES_URL
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS


class RetryConfig(BaseModel):
    """Bounded exponential backoff for transient Canvas failures.

    Attributes:
        max_attempts: Total attempts per request, including the first one.
        backoff_seconds: Delay before the first retry; doubled for every further retry.
        max_backoff_seconds: Upper bound for a single delay.
    """

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    backoff_seconds: float = Field(default=DEFAULT_BACKOFF_SECONDS, ge=0)
    max_backoff_seconds: float = Field(default=DEFAULT_MAX_BACKOFF_SECONDS, ge=0)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.max_backoff_seconds, self.backoff_seconds * (2 ** (attempt - 1)))


class MatchingConfig(BaseModel):
    """Identity matching settings.

    Attributes:
        identifier_domain: E-mail domain whose local part is the student's login id.
        fuzzy_threshold: Minimum similarity ratio for the optional fuzzy name pass.
            None disables fuzzy matching.
    """

    identifier_domain: str | None = DEFAULT_IDENTIFIER_DOMAIN
    fuzzy_threshold: float | None = Field(default=None, gt=0, le=1)


class DownloadConfig(BaseModel):
    """Download orchestration settings.

    Attributes:
        output_dir: Directory the submissions are written to.
        max_workers: Number of students downloaded concurrently.
        filename_template: ``str.format`` template with ``time``, ``identifier``,
            ``name`` and ``filename`` fields.
        max_failures: Number of failed outcomes tolerated before the run exits nonzero.
        report_path: Optional YAML/CSV report destination.
    """

    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    max_workers: int = Field(default=DEFAULT_MAX_WORKERS, ge=1)
    filename_template: str = DEFAULT_FILENAME_TEMPLATE
    max_failures: int = Field(default=0, ge=0)
    report_path: Path | None = None

    @field_validator("output_dir", mode="before")
    @classmethod
    def convert_output_dir_to_path(cls, v: Any) -> Path:
        """Convert output_dir to Path object."""
        return Path(v) if not isinstance(v, Path) else v

    @field_validator("report_path", mode="before")
    @classmethod
    def convert_report_path_to_path(cls, v: Any) -> Path | None:
        """Convert report_path to Path object."""
        if v is None:
            return None
        return Path(v) if not isinstance(v, Path) else v


class Config(BaseModel):
    """Top-level configuration for the downloader."""

    canvas: CanvasConfig = Field(default_factory=CanvasConfig)
    remores: RemoresConfig = Field(default_factory=RemoresConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)


def load_config(path: Path | None = None) -> Config:
    """Load YAML configuration and parse into Config model.

    Args:
        path: Path to YAML config, or None to use the defaults.

    Returns:
        Parsed Config object with full validation.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        yaml.YAMLError: If YAML is malformed.
        pydantic.ValidationError: If config structure is invalid.
    """
    if path is None:
        return Config()

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path) as f:
        yaml_data = yaml.safe_load(f)

    return Config.model_validate(yaml_data or {})
