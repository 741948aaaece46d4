"""Configuration management for SCEP Adapter.

Loads configuration from YAML file and validates with Pydantic models.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Annotated

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


class TLSConfig(BaseModel):
    """TLS configuration for the responder."""

    model_config = ConfigDict(frozen=True)

    cert_file: Path
    key_file: Path


class ServerConfig(BaseModel):
    """HTTP/S responder configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"  # noqa: S104 - binding to all interfaces is intentional for server
    port: Annotated[int, Field(ge=1, le=65535)] = 8080
    path: str = "/scep"
    tls: TLSConfig | None = None

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Require an absolute route path without trailing slash."""
        path = v.rstrip("/")
        if not path.startswith("/"):
            msg = f"Route path must start with '/' and not be the root: {v}"
            raise ValueError(msg)
        return path


class ClientConfig(BaseModel):
    """SCEP client configuration."""

    model_config = ConfigDict(frozen=True)

    server_url: str = "http://localhost:8080/scep"
    timeout: Annotated[float, Field(gt=0)] | None = 30.0
    verify_tls: bool | Path = True


class CAConfig(BaseModel):
    """CA certificates served by the responder.

    ``cert_file`` holds the issuing CA certificate; ``chain_files`` hold any
    RA or intermediate certificates returned alongside it.
    """

    model_config = ConfigDict(frozen=True)

    cert_file: Path | None = None
    chain_files: list[Path] = []


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class AuditConfig(BaseModel):
    """Audit logging configuration."""

    model_config = ConfigDict(frozen=True)

    log_file: Path = Path("./logs/audit.log")
    log_level: LogLevel = LogLevel.INFO


DEFAULT_CAPABILITIES = ["POSTPKIOperation", "SHA-256", "AES", "SCEPStandard"]


class Settings(BaseModel):
    """Root configuration model for SCEP Adapter."""

    model_config = ConfigDict(frozen=True)

    server: ServerConfig = ServerConfig()
    client: ClientConfig = ClientConfig()
    ca: CAConfig = CAConfig()
    capabilities: list[str] = DEFAULT_CAPABILITIES
    audit: AuditConfig = AuditConfig()

    @field_validator("capabilities")
    @classmethod
    def validate_capabilities(cls, v: list[str]) -> list[str]:
        """Reject capability tokens that would break the newline-delimited list."""
        for token in v:
            if not token or any(c.isspace() for c in token):
                msg = f"Invalid capability token: {token!r}"
                raise ValueError(msg)
        return v


def load_config(config_path: Path | str) -> Settings:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration YAML file.

    Returns:
        Validated Settings instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.
        pydantic.ValidationError: If configuration validation fails.
    """
    path = Path(config_path)
    with path.open("r") as f:
        data = yaml.safe_load(f)

    return Settings.model_validate(data or {})


def load_config_from_env(
    env_var: str = "SCEP_ADAPTER_CONFIG",
    default_paths: list[Path] | None = None,
) -> Settings:
    """Load configuration from environment variable or default paths.

    Args:
        env_var: Environment variable name containing config path.
        default_paths: List of default paths to try if env var not set.

    Returns:
        Validated Settings instance, or defaults if no file is found.
    """
    config_path = os.environ.get(env_var)
    if config_path:
        return load_config(config_path)

    if default_paths is None:
        default_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path("/etc/scep-adapter/config.yaml"),
        ]

    for path in default_paths:
        if path.exists():
            return load_config(path)

    return Settings()
