"""Tests for configuration module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from realty_listings.config import (
    Config,
    ConfigError,
    Environment,
    ListingsBackend,
    LogLevel,
    load_config,
)


class TestConfig:
    """Tests for Config model."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        config = Config()

        assert config.app_name == "Realty Listings"
        assert config.log_level == LogLevel.INFO
        assert config.environment == Environment.LOCAL
        assert config.host == "127.0.0.1"
        assert config.port == 8000
        assert config.cors_origin == "http://localhost:3000"
        assert config.privileged_groups == ["owners", "editors"]
        assert config.listings_backend == ListingsBackend.MEMORY
        assert config.uploads_bucket is None
        assert config.contact_recipient is None

    def test_log_level_normalization(self) -> None:
        """Test that log level strings are normalized to uppercase."""
        config = Config(log_level="debug")  # type: ignore[arg-type]
        assert config.log_level == LogLevel.DEBUG

    def test_enum_normalization(self) -> None:
        """Test that environment and backend strings are normalized to lowercase."""
        config = Config(environment="PROD", listings_backend="DynamoDB")  # type: ignore[arg-type]
        assert config.environment == Environment.PROD
        assert config.listings_backend == ListingsBackend.DYNAMODB

    def test_privileged_groups_from_string(self) -> None:
        """Test a comma-separated group list."""
        config = Config(privileged_groups="owners, agents,")  # type: ignore[arg-type]
        assert config.privileged_groups == ["owners", "agents"]

    def test_trailing_slashes_stripped(self) -> None:
        """Test base URLs are normalized."""
        config = Config(
            hosted_ui_domain="https://login.example.com/",
            api_base_url="https://api.example.com/",
        )
        assert config.hosted_ui_domain == "https://login.example.com"
        assert config.api_base_url == "https://api.example.com"

    def test_port_validation(self) -> None:
        """Test port number validation."""
        assert Config(port=8080).port == 8080

        with pytest.raises(ValueError):
            Config(port=0)

        with pytest.raises(ValueError):
            Config(port=70000)


class TestDerivedSettings:
    """Tests for derived URLs and requirement checks."""

    def test_issuer_from_user_pool(self) -> None:
        """Test the issuer is derived from region and pool."""
        config = Config(region="eu-west-1", user_pool_id="eu-west-1_Pool")

        assert config.resolved_issuer == (
            "https://cognito-idp.eu-west-1.amazonaws.com/eu-west-1_Pool"
        )
        assert config.jwks_url == (
            "https://cognito-idp.eu-west-1.amazonaws.com/eu-west-1_Pool/.well-known/jwks.json"
        )

    def test_explicit_issuer_wins(self) -> None:
        """Test an explicit issuer overrides the user pool."""
        config = Config(user_pool_id="pool", issuer="https://issuer.example.com/")
        assert config.resolved_issuer == "https://issuer.example.com"

    def test_no_issuer(self) -> None:
        """Test nothing is derived without a pool or issuer."""
        config = Config()
        assert config.resolved_issuer is None
        assert config.jwks_url is None

    def test_hosted_login_urls(self) -> None:
        """Test the hosted login endpoints."""
        config = Config(hosted_ui_domain="https://login.example.com")

        assert config.authorize_url == "https://login.example.com/oauth2/authorize"
        assert config.token_url == "https://login.example.com/oauth2/token"
        assert config.logout_url == "https://login.example.com/logout"

    def test_require_login_settings(self) -> None:
        """Test missing login settings are all named."""
        with pytest.raises(ConfigError, match="hosted_ui_domain, app_client_id"):
            Config().require_login_settings()

        Config(
            hosted_ui_domain="https://login.example.com", app_client_id="client"
        ).require_login_settings()

    def test_require_verifier_settings(self) -> None:
        """Test token verification needs an issuer and an audience."""
        with pytest.raises(ConfigError, match="app_client_id"):
            Config(user_pool_id="pool").require_verifier_settings()

        with pytest.raises(ConfigError, match="user_pool_id or issuer"):
            Config(app_client_id="client").require_verifier_settings()

        Config(user_pool_id="pool", app_client_id="client").require_verifier_settings()


class TestCrossFieldValidation:
    """Tests for settings that depend on each other."""

    def test_session_store_requires_encryption_key(self) -> None:
        """Test that a session file requires an encryption key."""
        with pytest.raises(ValueError, match="session_encryption_key is required"):
            Config(session_store_path="/tmp/session.enc")

    def test_session_store_with_encryption_key(self) -> None:
        """Test valid session store configuration keeps the key secret."""
        config = Config(session_store_path="/tmp/session.enc", session_encryption_key="k")

        assert config.session_encryption_key is not None
        assert config.session_encryption_key.get_secret_value() == "k"
        assert "k" not in repr(config.session_encryption_key)

    def test_contact_recipient_requires_sender(self) -> None:
        """Test the relay needs a verified sender."""
        with pytest.raises(ValueError, match="contact_sender is required"):
            Config(contact_recipient="inbox@example.com")

    def test_dynamodb_requires_table(self) -> None:
        """Test the DynamoDB backend needs a table name."""
        with pytest.raises(ValueError, match="listings_table is required"):
            Config(listings_backend=ListingsBackend.DYNAMODB, listings_table="")


class TestConfigLoading:
    """Tests for configuration loading."""

    def test_load_config_defaults(self) -> None:
        """Test loading configuration with defaults."""
        assert load_config().app_name == "Realty Listings"

    def test_load_config_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading configuration from environment variables."""
        monkeypatch.setenv("REALTY_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("REALTY_PORT", "9000")
        monkeypatch.setenv("REALTY_HTTP_TIMEOUT", "2.5")
        monkeypatch.setenv("REALTY_USER_POOL_ID", "us-east-2_Env")
        monkeypatch.setenv("REALTY_PRIVILEGED_GROUPS", "owners,agents")

        config = load_config()

        assert config.log_level == LogLevel.DEBUG
        assert config.port == 9000
        assert config.http_timeout == 2.5
        assert config.user_pool_id == "us-east-2_Env"
        assert config.privileged_groups == ["owners", "agents"]

    def test_load_config_cli_args_override_env(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that CLI args override environment variables."""
        monkeypatch.setenv("REALTY_PORT", "9000")

        config = load_config(cli_args={"port": 9100, "host": None})

        assert config.port == 9100
        assert config.host == "127.0.0.1"

    def test_load_config_from_yaml(self, tmp_path: Path) -> None:
        """Test loading a YAML configuration file."""
        path = tmp_path / "realty.yaml"
        path.write_text("app_client_id: yaml-client\nuploads_bucket: photos\n")

        config = load_config(path)

        assert config.app_client_id == "yaml-client"
        assert config.uploads_bucket == "photos"

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test environment variables take precedence over the file."""
        path = tmp_path / "realty.json"
        path.write_text(json.dumps({"listings_table": "FromFile", "port": 7000}))
        monkeypatch.setenv("REALTY_LISTINGS_TABLE", "FromEnv")

        config = load_config(path)

        assert config.listings_table == "FromEnv"
        assert config.port == 7000

    def test_missing_file(self, tmp_path: Path) -> None:
        """Test a missing configuration file."""
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "absent.yaml")

    def test_unsupported_format(self, tmp_path: Path) -> None:
        """Test an unknown file extension."""
        path = tmp_path / "realty.ini"
        path.write_text("[realty]\n")

        with pytest.raises(ConfigError, match="Unsupported"):
            load_config(path)

    def test_load_config_invalid_raises_error(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that invalid configuration raises ConfigError."""
        monkeypatch.setenv("REALTY_PORT", "not-a-port")

        with pytest.raises(ConfigError, match="validation failed"):
            load_config()
