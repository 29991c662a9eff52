"""Configuration system.

YAML configuration files validated by Pydantic models with defaults matching a
standard ApostropheCMS + Astro project layout. Entry point: load_config().
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from apos_static.exceptions import ConfigError
from apos_static.http_client import RetryPolicy

UploadPolicy = Literal["none", "copy-only", "download"]

DEFAULT_HEURISTIC_PIECE_TYPES = ["article", "news", "product", "blog", "event"]


def default_concurrency() -> int:
    """Available parallelism clamped to the 2-8 range."""
    return min(8, max(2, os.cpu_count() or 2))


class LocaleSettings(BaseModel):
    """Per-locale settings for multi-language sites."""

    base_url: str = Field(
        default="",
        description="Public base URL of the locale (informational)",
    )
    prefix: str = Field(
        default="",
        description="Path prefix for the locale, e.g. '/es'. Empty for the default locale.",
    )

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        """Normalize the prefix to '/xx' form (or empty)."""
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v


class PreviewConfig(BaseModel):
    """Frontend build and preview server configuration."""

    host: str = Field(default="127.0.0.1", description="Preview server host")
    port: int = Field(default=4321, ge=1, le=65535, description="Preview server port")
    build_command: list[str] = Field(
        default_factory=lambda: ["npm", "run", "build"],
        description="Command producing the frontend build. Empty list skips the build.",
    )
    serve_command: list[str] | None = Field(
        default=None,
        description=(
            "Command starting the preview server. None uses "
            "'npm run preview -- --host HOST --port PORT'; an empty list means the "
            "server is managed externally."
        ),
    )
    working_dir: str | None = Field(
        default=None,
        description="Directory to run build/preview commands in (default: current directory)",
    )
    ready_timeout_seconds: float = Field(
        default=90.0,
        gt=0,
        description="Maximum time to wait for the preview server to answer",
    )
    ready_interval_seconds: float = Field(
        default=0.8,
        gt=0,
        description="Delay between readiness probes",
    )
    shutdown_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Time allowed for the preview server to exit before it is killed",
    )

    @property
    def url(self) -> str:
        """Base URL of the preview server."""
        return f"http://{self.host}:{self.port}"

    def resolved_serve_command(self) -> list[str]:
        """Return the preview command with defaults applied."""
        if self.serve_command is not None:
            return list(self.serve_command)
        return ["npm", "run", "preview", "--", "--host", self.host, "--port", str(self.port)]


class CrawlingConfig(BaseModel):
    """Crawl behavior: concurrency, retries, timeouts and piece types."""

    concurrency: int = Field(
        default_factory=default_concurrency,
        ge=1,
        description="Number of pages rendered in parallel (default: CPU count, max 8)",
    )
    retries: int = Field(
        default=3,
        ge=0,
        description="Retries after the first attempt for failed requests",
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial backoff delay in seconds (doubles per attempt)",
    )
    retry_max_delay: float = Field(
        default=5.0,
        ge=0.0,
        description="Upper bound on a single backoff delay in seconds",
    )
    page_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for a single page fetch from the preview server",
    )
    api_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for backend API listing requests",
    )
    probe_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for piece-type probe requests",
    )
    oembed_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Timeout for oEmbed requests made for video widgets",
    )
    piece_types: list[str] | None = Field(
        default=None,
        description="Piece types to export. None auto-discovers them from the API.",
    )
    heuristic_piece_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_HEURISTIC_PIECE_TYPES),
        description="Piece types always probed during auto-discovery",
    )

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy used for every request."""
        return RetryPolicy(
            retries=self.retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )


class OutputConfig(BaseModel):
    """Output directory configuration."""

    dir: str = Field(default="static-dist", description="Directory receiving the static site")
    build_dir: str | None = Field(
        default="dist",
        description=(
            "Frontend build output copied into the static site "
            "('<build_dir>/client' when present). None disables the copy."
        ),
    )


class UploadsConfig(BaseModel):
    """Upload (media library) handling."""

    policy: UploadPolicy = Field(
        default="none",
        description=(
            "none: keep URLs pointing at the CDN/backend; copy-only: copy a local "
            "uploads directory; download: copy locally or download every referenced upload"
        ),
    )
    local_dirs: list[str] = Field(
        default_factory=lambda: [
            "../backend/public/uploads",
            "backend/public/uploads",
            "../../backend/public/uploads",
            "public/uploads",
        ],
        description="Candidate local uploads directories, relative to the working directory",
    )


class ExportConfig(BaseModel):
    """Main configuration model for a static export.

    Immutable for the duration of one export.
    """

    backend_url: str = Field(..., min_length=1, description="ApostropheCMS backend URL")
    api_key: str = Field(
        ...,
        min_length=1,
        description="APOS_EXTERNAL_FRONT_KEY sent with every API request",
    )
    preview: PreviewConfig = Field(default_factory=PreviewConfig)
    crawling: CrawlingConfig = Field(default_factory=CrawlingConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    uploads: UploadsConfig = Field(default_factory=UploadsConfig)
    locales: dict[str, LocaleSettings] | None = Field(
        default=None,
        description="Locale code -> settings. When set, discovery runs once per locale.",
    )

    model_config = {"frozen": True}

    @field_validator("backend_url")
    @classmethod
    def validate_backend_url(cls, v: str) -> str:
        """Require an http(s) URL and drop the trailing slash."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"backend_url must start with http:// or https://, got {v!r}. "
                "Example: backend_url: http://localhost:3000"
            )
        return v.rstrip("/")

    @property
    def api_headers(self) -> dict[str, str]:
        """Headers carried by every backend API request."""
        return {"APOS-EXTERNAL-FRONT-KEY": self.api_key}


def _read_yaml_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    if not path.is_file():
        raise ValueError(f"Configuration path is not a file: {path}")

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        raise ValueError(f"Configuration file is empty: {path}")

    if not isinstance(data, dict):
        raise ValueError(
            f"Configuration file must contain a YAML object/dict, got {type(data).__name__}"
        )
    return data


def load_config_dict(path: Path) -> dict[str, Any]:
    """Load a YAML config file as a raw mapping (before validation).

    Raises:
        ConfigError: If the file is missing, unreadable or not a mapping
    """
    try:
        return _read_yaml_mapping(path)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except (OSError, ValueError) as e:
        raise ConfigError(str(e)) from e


def build_config(data: dict[str, Any], source: str = "configuration") -> ExportConfig:
    """Validate a raw mapping into an ExportConfig.

    Raises:
        ConfigError: If validation fails
    """
    try:
        return ExportConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed for {source}:\n{e}") from e


def load_config(path: Path) -> ExportConfig:
    """Load and validate YAML configuration file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ExportConfig instance

    Raises:
        ConfigError: If config file is not found, invalid YAML, or validation fails
    """
    return build_config(load_config_dict(path), source=str(path))


def load_locale_config(path: Path) -> dict[str, LocaleSettings]:
    """Load a standalone locale file (locale code -> {base_url, prefix}).

    Raises:
        ConfigError: If the file is missing, invalid YAML, or an entry is malformed
    """
    data = load_config_dict(path)
    try:
        return {code: LocaleSettings(**(settings or {})) for code, settings in data.items()}
    except (ValidationError, TypeError) as e:
        raise ConfigError(f"Locale configuration validation failed for {path}:\n{e}") from e
