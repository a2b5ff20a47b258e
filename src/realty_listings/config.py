"""Configuration management for the realty listings site.

Provides configuration loading from environment variables, .env files,
and optional configuration files with proper precedence handling.
"""

from __future__ import annotations

import contextlib
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from realty_listings.security import redact

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration validation fails."""


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Environment(str, Enum):
    """Deployment environments."""

    LOCAL = "local"
    DEV = "dev"
    STAGE = "stage"
    PROD = "prod"


class ListingsBackend(str, Enum):
    """Listing persistence backends."""

    MEMORY = "memory"
    DYNAMODB = "dynamodb"


class Config(BaseModel):
    """Main configuration model for the realty listings site.

    Configuration can be loaded from:
    - Environment variables with REALTY_ prefix
    - Optional .env file in project root
    - Optional configuration file passed via CLI
    """

    # Core settings
    app_name: str = Field(default="Realty Listings", description="Application name")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    environment: Environment = Field(
        default=Environment.LOCAL, description="Deployment environment"
    )

    # Server settings
    host: str = Field(default="127.0.0.1", description="Server bind host")
    port: int = Field(default=8000, ge=1, le=65535, description="Server bind port")
    cors_origin: str = Field(
        default="http://localhost:3000", description="Single origin allowed by CORS"
    )

    # Identity provider (Cognito user pool)
    region: str = Field(default="us-east-2", description="AWS region")
    user_pool_id: str | None = Field(default=None, description="Cognito user pool ID")
    app_client_id: str | None = Field(
        default=None, description="Public app client ID (expected token audience)"
    )
    issuer: str | None = Field(
        default=None, description="Explicit token issuer, overrides the user pool issuer"
    )
    privileged_groups: list[str] = Field(
        default_factory=lambda: ["owners", "editors"],
        description="Groups allowed to modify listings",
    )
    jwks_cache_ttl: int = Field(
        default=300, ge=30, le=86400, description="Signing key cache TTL in seconds"
    )

    # Hosted login (Authorization Code + PKCE)
    hosted_ui_domain: str | None = Field(
        default=None, description="Hosted login domain, e.g. https://x.auth.region.amazoncognito.com"
    )
    redirect_uri: str = Field(
        default="http://localhost:3000/", description="Registered callback URL"
    )
    logout_uri: str = Field(
        default="http://localhost:3000/", description="Registered sign-out URL"
    )
    oauth_scopes: str = Field(default="openid email", description="Space-separated scopes")
    api_base_url: str = Field(
        default="http://127.0.0.1:8000", description="Listings API base URL used by the client"
    )
    http_timeout: float = Field(
        default=10.0, gt=0, description="Timeout for token exchange and key set fetches"
    )

    # Client session persistence
    session_store_path: str | None = Field(
        default=None, description="Path for the encrypted client session file"
    )
    session_encryption_key: SecretStr | None = Field(
        default=None, description="Fernet key for the client session file"
    )

    # Listings storage
    listings_backend: ListingsBackend = Field(
        default=ListingsBackend.MEMORY, description="Listing persistence backend"
    )
    listings_table: str = Field(default="Properties", description="DynamoDB table name")

    # Photo uploads
    uploads_bucket: str | None = Field(default=None, description="S3 bucket for listing photos")
    upload_url_expires: int = Field(
        default=300, ge=60, le=3600, description="Presigned upload URL lifetime in seconds"
    )

    # Contact form relay
    contact_sender: str | None = Field(default=None, description="Verified SES sender address")
    contact_recipient: str | None = Field(default=None, description="Contact form inbox")
    contact_rate_limit_per_minute: int = Field(
        default=5, ge=1, description="Contact submissions per minute per client"
    )
    contact_rate_limit_burst: int = Field(
        default=3, ge=1, description="Contact submission burst size"
    )

    model_config = {
        "extra": "allow",
        "validate_assignment": True,
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("environment", "listings_backend", mode="before")
    @classmethod
    def normalize_lowercase(cls, v: Any) -> Any:
        """Normalize enum strings to lowercase."""
        if isinstance(v, str):
            return v.lower()
        return v

    @field_validator("privileged_groups", mode="before")
    @classmethod
    def split_groups(cls, v: Any) -> Any:
        """Accept a comma-separated string for privileged groups."""
        if isinstance(v, str):
            return [g.strip() for g in v.split(",") if g.strip()]
        return v

    @field_validator("hosted_ui_domain", "issuer", "api_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        """Drop trailing slashes from base URLs."""
        return v.rstrip("/") if v else v

    @model_validator(mode="after")
    def validate_session_store(self) -> Config:
        """Validate client session store configuration."""
        if self.session_store_path and not self.session_encryption_key:
            msg = "session_encryption_key is required when session_store_path is set"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def validate_contact_relay(self) -> Config:
        """Validate contact relay configuration."""
        if self.contact_recipient and not self.contact_sender:
            msg = "contact_sender is required when contact_recipient is set"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def validate_listings_backend(self) -> Config:
        """Validate listing store configuration."""
        if self.listings_backend == ListingsBackend.DYNAMODB and not self.listings_table:
            msg = "listings_table is required for the dynamodb backend"
            raise ValueError(msg)
        return self

    @property
    def resolved_issuer(self) -> str | None:
        """Expected token issuer, derived from the user pool when not set."""
        if self.issuer:
            return self.issuer
        if self.user_pool_id:
            return f"https://cognito-idp.{self.region}.amazonaws.com/{self.user_pool_id}"
        return None

    @property
    def jwks_url(self) -> str | None:
        """Well-known key set URL for the issuer."""
        issuer = self.resolved_issuer
        return f"{issuer}/.well-known/jwks.json" if issuer else None

    @property
    def authorize_url(self) -> str | None:
        """Hosted login authorization endpoint."""
        return f"{self.hosted_ui_domain}/oauth2/authorize" if self.hosted_ui_domain else None

    @property
    def token_url(self) -> str | None:
        """Hosted login token endpoint."""
        return f"{self.hosted_ui_domain}/oauth2/token" if self.hosted_ui_domain else None

    @property
    def logout_url(self) -> str | None:
        """Hosted login sign-out endpoint."""
        return f"{self.hosted_ui_domain}/logout" if self.hosted_ui_domain else None

    def require_login_settings(self) -> None:
        """Ensure the hosted login flow can be built.

        Raises:
            ConfigError: If the hosted domain or client ID is missing
        """
        missing = [
            name
            for name, value in (
                ("hosted_ui_domain", self.hosted_ui_domain),
                ("app_client_id", self.app_client_id),
            )
            if not value
        ]
        if missing:
            msg = f"Login requires: {', '.join(missing)}"
            raise ConfigError(msg)

    def require_verifier_settings(self) -> None:
        """Ensure server-side token verification can be built.

        Raises:
            ConfigError: If the issuer or audience cannot be resolved
        """
        missing = []
        if not self.resolved_issuer:
            missing.append("user_pool_id or issuer")
        if not self.app_client_id:
            missing.append("app_client_id")
        if missing:
            msg = f"Token verification requires: {', '.join(missing)}"
            raise ConfigError(msg)


def _get_env_value(key: str, prefix: str = "REALTY_") -> str | None:
    """Get environment variable value with prefix."""
    return os.environ.get(f"{prefix}{key.upper()}")


_SECRET_FIELDS = ("session_encryption_key",)

_INT_FIELDS = (
    "port",
    "jwks_cache_ttl",
    "upload_url_expires",
    "contact_rate_limit_per_minute",
    "contact_rate_limit_burst",
)


def _load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables."""
    config: dict[str, Any] = {}
    for field_name in Config.model_fields:
        value = _get_env_value(field_name)
        if value is None:
            continue
        parsed: Any = value
        if value.lower() in ("true", "false", "yes", "no"):
            parsed = value.lower() in ("true", "yes")
        elif field_name in _INT_FIELDS:
            with contextlib.suppress(ValueError):
                parsed = int(value)
        elif field_name == "http_timeout":
            with contextlib.suppress(ValueError):
                parsed = float(value)
        config[field_name] = parsed

    return config


def _load_file_config(path: str | Path) -> dict[str, Any]:
    """Load configuration from a file (JSON or YAML)."""
    import json

    path = Path(path)
    if not path.exists():
        msg = f"Configuration file not found: {path}"
        raise ConfigError(msg)

    suffix = path.suffix.lower()
    content = path.read_text()

    if suffix == ".json":
        return dict(json.loads(content))

    if suffix in (".yaml", ".yml"):
        import yaml

        return dict(yaml.safe_load(content) or {})

    msg = f"Unsupported configuration file format: {suffix}"
    raise ConfigError(msg)


def _redact_for_log(key: str, value: Any) -> str:
    """Redact sensitive values for logging."""
    if key in _SECRET_FIELDS:
        return redact(str(value) if value else None)
    return str(value)


def load_config(
    path: str | Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> Config:
    """Load and validate configuration.

    Precedence (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Configuration file
    4. Model defaults

    Args:
        path: Optional path to configuration file
        cli_args: Optional CLI argument overrides

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If configuration is invalid
    """
    load_dotenv()

    config_dict: dict[str, Any] = {}
    if path:
        logger.debug("Loading configuration from file: %s", path)
        config_dict.update(_load_file_config(path))

    for key, value in _load_env_config().items():
        config_dict[key] = value
        logger.debug("Config %s from environment: %s", key, _redact_for_log(key, value))

    if cli_args:
        for key, value in cli_args.items():
            if value is not None:
                config_dict[key] = value
                logger.debug("Config %s from CLI: %s", key, _redact_for_log(key, value))

    try:
        return Config(**config_dict)
    except Exception as e:
        msg = f"Configuration validation failed: {e}"
        raise ConfigError(msg) from e
