"""Login session state for the PKCE client.

An ``AuthSession`` is the token set from a successful code exchange plus
the identity claims decoded from its id token. It is created on login,
destroyed on logout and owned by exactly one ``AuthSessionStore``.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt

from realty_listings.logging_config import get_logger
from realty_listings.security import (
    DEFAULT_PRIVILEGED_GROUPS,
    GROUPS_CLAIM,
    extract_privileged_groups,
)

if TYPE_CHECKING:
    from realty_listings.oauth.storage import SessionStorage

logger = get_logger(__name__)

TOKENS_KEY = "cog_tokens_v1"

DEFAULT_EXPIRES_IN = 3600

# Unverified id token payload. Display and UI hints only, never authorization.
IdentityClaims = dict[str, Any]


@dataclass
class TokenSet:
    """Tokens returned by the authorization code exchange."""

    id_token: str
    access_token: str
    expires_at: datetime
    refresh_token: str | None = None
    token_type: str = "Bearer"

    @property
    def is_expired(self) -> bool:
        """True once the tokens have expired; a fresh login is then required."""
        return datetime.now(UTC) >= self.expires_at

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> TokenSet:
        """Build a TokenSet from a token endpoint JSON body.

        Raises:
            ValueError: If the id or access token is missing
        """
        id_token = response.get("id_token")
        access_token = response.get("access_token")
        if not isinstance(id_token, str) or not isinstance(access_token, str):
            msg = "Token response is missing id_token or access_token"
            raise ValueError(msg)

        expires_in = response.get("expires_in", DEFAULT_EXPIRES_IN)
        if not isinstance(expires_in, (int, float)):
            expires_in = DEFAULT_EXPIRES_IN

        return cls(
            id_token=id_token,
            access_token=access_token,
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
            refresh_token=response.get("refresh_token"),
            token_type=response.get("token_type", "Bearer"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id_token": self.id_token,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at.timestamp(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        return cls(
            id_token=str(data["id_token"]),
            access_token=str(data["access_token"]),
            expires_at=datetime.fromtimestamp(float(data["expires_at"]), tz=UTC),
            refresh_token=data.get("refresh_token"),
            token_type=str(data.get("token_type", "Bearer")),
        )


def decode_unverified_claims(token: str) -> IdentityClaims:
    """Decode a JWT payload WITHOUT checking its signature.

    WARNING: the result is attacker-controllable. It is only fit for
    display and UI hints. Never base an authorization decision on it; the
    listings API re-verifies every token against the issuer's key set.

    Returns:
        The payload, or an empty dict if the token is not a decodable JWT
    """
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.DecodeError:
        logger.debug("Identity token payload could not be decoded")
        return {}
    return claims if isinstance(claims, dict) else {}


@dataclass
class AuthSession:
    """A logged-in session: tokens plus unverified identity claims.

    ``claims`` come from ``decode_unverified_claims`` and are NOT
    authoritative; see ``is_privileged_hint``.
    """

    tokens: TokenSet
    claims: IdentityClaims = field(default_factory=dict)
    privileged_groups: tuple[str, ...] = DEFAULT_PRIVILEGED_GROUPS

    @property
    def subject(self) -> str | None:
        sub = self.claims.get("sub")
        return str(sub) if sub is not None else None

    @property
    def email(self) -> str | None:
        email = self.claims.get("email")
        return str(email) if email is not None else None

    @property
    def groups(self) -> list[str]:
        """All groups from the claims, for display."""
        raw = self.claims.get(GROUPS_CLAIM)
        if isinstance(raw, str):
            return [g.strip() for g in raw.split(",") if g.strip()]
        if isinstance(raw, list):
            return [g for g in raw if isinstance(g, str)]
        return []

    @property
    def is_privileged_hint(self) -> bool:
        """Client-side hint controlling UI visibility only.

        Computed from unverified claims. The server repeats this check on
        verified claims and only that result grants write access.
        """
        return bool(extract_privileged_groups(self.claims, self.privileged_groups))

    @property
    def display_label(self) -> str:
        """Signed-in label like ``jane@example.com - owners, editors``."""
        label = self.email or "(signed in)"
        if self.groups:
            label = f"{label} - {', '.join(self.groups)}"
        return label


class AuthSessionStore:
    """Owns the AuthSession for one client session.

    Persists the token set as JSON in the supplied ``SessionStorage``.
    """

    def __init__(
        self,
        storage: SessionStorage,
        privileged_groups: Iterable[str] = DEFAULT_PRIVILEGED_GROUPS,
    ) -> None:
        self._storage = storage
        self._privileged_groups = tuple(privileged_groups)

    def _build(self, tokens: TokenSet) -> AuthSession:
        return AuthSession(
            tokens=tokens,
            claims=decode_unverified_claims(tokens.id_token),
            privileged_groups=self._privileged_groups,
        )

    async def save(self, tokens: TokenSet) -> AuthSession:
        """Persist a token set and return the new session."""
        await self._storage.set_item(TOKENS_KEY, json.dumps(tokens.to_dict()))
        session = self._build(tokens)
        logger.info("Login session created for %s", session.subject or "unknown subject")
        return session

    async def load(self) -> AuthSession | None:
        """Return the current session, or None when logged out.

        An unreadable token record counts as logged out.
        """
        raw = await self._storage.get_item(TOKENS_KEY)
        if raw is None:
            return None
        try:
            tokens = TokenSet.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable token record")
            return None
        return self._build(tokens)

    async def clear(self) -> None:
        """Destroy the session."""
        await self._storage.remove_item(TOKENS_KEY)
        logger.info("Login session cleared")
