"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from realty_listings.api.verifier import StaticKeySource, TokenVerifier
from realty_listings.config import Config, Environment, LogLevel

REGION = "us-east-2"
USER_POOL_ID = "us-east-2_TestPool"
ISSUER = f"https://cognito-idp.{REGION}.amazonaws.com/{USER_POOL_ID}"
CLIENT_ID = "test-app-client"
HOSTED_UI = "https://listings.auth.us-east-2.amazoncognito.com"
KID = "test-key-1"

TokenFactory = Callable[..., str]


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    """RSA key the test identity provider signs with."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def foreign_key() -> rsa.RSAPrivateKey:
    """RSA key unknown to the verifier."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def make_token(signing_key: rsa.RSAPrivateKey) -> TokenFactory:
    """Mint RS256 id tokens.

    Keyword arguments override or (with value None) remove claims; ``key``
    and ``kid`` change the signature.
    """

    def _make(
        key: rsa.RSAPrivateKey | None = None,
        kid: str | None = KID,
        **claims: Any,
    ) -> str:
        now = int(time.time())
        payload: dict[str, Any] = {
            "sub": "user-123",
            "email": "owner@example.com",
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "token_use": "id",
            "iat": now,
            "exp": now + 3600,
            "cognito:groups": ["owners"],
        }
        for name, value in claims.items():
            claim = "cognito:groups" if name == "groups" else name
            if value is None:
                payload.pop(claim, None)
            else:
                payload[claim] = value

        headers = {"kid": kid} if kid is not None else {}
        return jwt.encode(payload, key or signing_key, algorithm="RS256", headers=headers)

    return _make


@pytest.fixture
def verifier(signing_key: rsa.RSAPrivateKey) -> TokenVerifier:
    """Verifier trusting only the test signing key."""
    return TokenVerifier(
        StaticKeySource({KID: signing_key.public_key()}),
        issuer=ISSUER,
        audience=CLIENT_ID,
    )


@pytest.fixture
def default_config() -> Config:
    """Create a default configuration for testing."""
    return Config()


@pytest.fixture
def dev_config() -> Config:
    """Create a development configuration for testing."""
    return Config(
        app_name="Test Listings",
        log_level=LogLevel.DEBUG,
        environment=Environment.DEV,
        host="127.0.0.1",
        port=8080,
    )


@pytest.fixture
def auth_config() -> Config:
    """Create a configuration with the identity provider set up."""
    return Config(
        app_name="Auth Test Listings",
        region=REGION,
        user_pool_id=USER_POOL_ID,
        app_client_id=CLIENT_ID,
        hosted_ui_domain=HOSTED_UI,
        redirect_uri="http://localhost:3000/",
        logout_uri="http://localhost:3000/",
        cors_origin="http://localhost:3000",
    )
