"""Tests for login session state."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import pytest

from realty_listings.oauth.session import (
    TOKENS_KEY,
    AuthSession,
    AuthSessionStore,
    TokenSet,
    decode_unverified_claims,
)
from realty_listings.oauth.storage import InMemorySessionStorage


def create_test_tokens(id_token: str = "header.payload.sig") -> TokenSet:
    """Create a TokenSet for testing."""
    return TokenSet(
        id_token=id_token,
        access_token="test-access-token",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


class TestTokenSet:
    """Tests for TokenSet dataclass."""

    def test_from_token_response(self) -> None:
        """Test creating TokenSet from a token endpoint body."""
        tokens = TokenSet.from_token_response({
            "id_token": "id123",
            "access_token": "access123",
            "refresh_token": "refresh123",
            "expires_in": 3600,
            "token_type": "Bearer",
        })

        assert tokens.id_token == "id123"
        assert tokens.access_token == "access123"
        assert tokens.refresh_token == "refresh123"
        assert tokens.is_expired is False

    def test_missing_id_token_rejected(self) -> None:
        """Test that a response without an id token is rejected."""
        with pytest.raises(ValueError, match="id_token"):
            TokenSet.from_token_response({"access_token": "a"})

    def test_is_expired(self) -> None:
        """Test expiration check."""
        expired = TokenSet(
            id_token="i",
            access_token="a",
            expires_at=datetime.now(UTC) - timedelta(seconds=1),
        )
        assert expired.is_expired is True

    def test_dict_round_trip(self) -> None:
        """Test serialization keeps every field."""
        tokens = create_test_tokens()
        restored = TokenSet.from_dict(json.loads(json.dumps(tokens.to_dict())))

        assert restored.id_token == tokens.id_token
        assert restored.access_token == tokens.access_token
        assert abs((restored.expires_at - tokens.expires_at).total_seconds()) < 1


class TestDecodeUnverifiedClaims:
    """Tests for decode_unverified_claims function."""

    def test_reads_payload(self, make_token) -> None:
        """Test that the payload is returned."""
        claims = decode_unverified_claims(make_token())
        assert claims["sub"] == "user-123"
        assert claims["cognito:groups"] == ["owners"]

    def test_ignores_expiry_and_signature(self, make_token, foreign_key) -> None:
        """Test that expired or foreign-signed tokens still decode for display."""
        token = make_token(key=foreign_key, exp=1)
        assert decode_unverified_claims(token)["email"] == "owner@example.com"

    def test_garbage_yields_empty(self) -> None:
        """Test that a non-JWT yields no claims."""
        assert decode_unverified_claims("not-a-jwt") == {}


class TestAuthSession:
    """Tests for AuthSession dataclass."""

    def test_identity_properties(self) -> None:
        """Test subject, email and groups."""
        session = AuthSession(
            tokens=create_test_tokens(),
            claims={"sub": "u1", "email": "a@example.com", "cognito:groups": "owners, staff"},
        )

        assert session.subject == "u1"
        assert session.email == "a@example.com"
        assert session.groups == ["owners", "staff"]
        assert session.display_label == "a@example.com - owners, staff"

    def test_privileged_hint(self) -> None:
        """Test the privilege hint follows group membership."""
        editor = AuthSession(create_test_tokens(), {"cognito:groups": ["editors"]})
        viewer = AuthSession(create_test_tokens(), {"cognito:groups": ["viewers"]})
        anonymous = AuthSession(create_test_tokens(), {})

        assert editor.is_privileged_hint is True
        assert viewer.is_privileged_hint is False
        assert anonymous.is_privileged_hint is False
        assert anonymous.display_label == "(signed in)"


class TestAuthSessionStore:
    """Tests for AuthSessionStore class."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, make_token) -> None:
        """Test a saved session can be loaded back."""
        storage = InMemorySessionStorage()
        store = AuthSessionStore(storage)
        tokens = create_test_tokens(make_token())

        saved = await store.save(tokens)
        loaded = await store.load()

        assert storage.keys() == [TOKENS_KEY]
        assert loaded is not None
        assert loaded.tokens.id_token == tokens.id_token
        assert loaded.subject == saved.subject == "user-123"

    @pytest.mark.asyncio
    async def test_load_when_logged_out(self) -> None:
        """Test loading without a session."""
        store = AuthSessionStore(InMemorySessionStorage())
        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_corrupt_record_is_logged_out(self) -> None:
        """Test that an unreadable record counts as no session."""
        storage = InMemorySessionStorage()
        await storage.set_item(TOKENS_KEY, "{not json")

        assert await AuthSessionStore(storage).load() is None

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        """Test clearing the session."""
        storage = InMemorySessionStorage()
        store = AuthSessionStore(storage)
        await store.save(create_test_tokens())

        await store.clear()

        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_custom_privileged_groups(self, make_token) -> None:
        """Test the store passes its privileged groups to sessions."""
        store = AuthSessionStore(InMemorySessionStorage(), privileged_groups=["admins"])
        session = await store.save(create_test_tokens(make_token(groups=["admins"])))

        assert session.is_privileged_hint is True
