"""Security primitives shared by the login client and the listings API.

Holds the authentication error taxonomy, redaction helpers, the
group-membership privilege check and the strategies used to attach
credentials to outbound API calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from realty_listings.oauth.session import AuthSessionStore

GROUPS_CLAIM = "cognito:groups"
DEFAULT_PRIVILEGED_GROUPS = ("owners", "editors")


class AuthError(Exception):
    """Base class for authentication and authorization failures.

    Every subclass is terminal for the current operation and carries a
    short machine-readable ``reason``.
    """

    reason = "unauthorized"


class MissingVerifier(AuthError):
    """No PKCE verifier is stored for the redirect being handled."""

    reason = "missing_verifier"

    def __init__(self, message: str = "No PKCE verifier in session storage") -> None:
        super().__init__(message)


class TokenExchangeFailed(AuthError):
    """The token endpoint rejected the authorization code.

    Attributes:
        status: HTTP status from the token endpoint (0 for transport errors)
        body: Response body or transport error description
    """

    reason = "token_exchange_failed"

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Token exchange failed: {status}")
        self.status = status
        self.body = body


class NoBearer(AuthError):
    """The Authorization header is missing or not a bearer credential."""

    reason = "no_bearer"

    def __init__(self, message: str = "Missing bearer token") -> None:
        super().__init__(message)


class InvalidToken(AuthError):
    """The bearer token failed verification.

    Attributes:
        cause: Short code naming the failed check (expired, invalid_audience, ...)
    """

    reason = "invalid_token"

    def __init__(self, cause: str) -> None:
        super().__init__(f"Invalid token: {cause}")
        self.cause = cause


class NotPrivileged(AuthError):
    """The verified caller is not in a privileged group."""

    reason = "not_privileged"

    def __init__(self, message: str = "Caller is not in a privileged group") -> None:
        super().__init__(message)


class NotAuthenticated(AuthError):
    """A mutating client call was attempted without a login session."""

    reason = "not_authenticated"

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


def redact(value: str | None) -> str:
    """Redact a potentially sensitive value for safe logging.

    Args:
        value: The value to redact

    Returns:
        "***" if value is non-empty, "<empty>" if empty/None
    """
    if value is None or value == "":
        return "<empty>"
    return "***"


def mask_sensitive_data(
    data: dict[str, Any], sensitive_keys: set[str] | None = None
) -> dict[str, Any]:
    """Mask sensitive data in a dictionary for logging.

    Args:
        data: Dictionary potentially containing sensitive data
        sensitive_keys: Substrings of keys to mask (uses defaults if not provided)

    Returns:
        Copy of dictionary with sensitive values masked
    """
    if sensitive_keys is None:
        sensitive_keys = {
            "token",
            "code",
            "verifier",
            "secret",
            "password",
            "authorization",
        }

    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = mask_sensitive_data(value, sensitive_keys)
        elif any(sensitive in key.lower() for sensitive in sensitive_keys):
            result[key] = "***"
        else:
            result[key] = value

    return result


def extract_privileged_groups(
    claims: Any,
    privileged: Iterable[str] = DEFAULT_PRIVILEGED_GROUPS,
) -> frozenset[str]:
    """Return the privileged groups the claims are a member of.

    ``cognito:groups`` may be a list of names or a single comma-delimited
    string. Any other shape yields an empty set.

    This function is shared by two trust domains. The listings API calls it
    on signature-verified claims and its result gates mutations. The login
    client calls it on unverified claims purely as a display hint.

    Args:
        claims: Token claims
        privileged: Group names that grant write access

    Returns:
        Intersection of the caller's groups with ``privileged``
    """
    if not isinstance(claims, Mapping):
        return frozenset()

    raw = claims.get(GROUPS_CLAIM)
    if isinstance(raw, str):
        groups = {g.strip() for g in raw.split(",")}
    elif isinstance(raw, (list, tuple)):
        groups = {g for g in raw if isinstance(g, str)}
    else:
        return frozenset()

    return frozenset(groups & set(privileged))


def is_privileged(
    claims: Any,
    privileged: Iterable[str] = DEFAULT_PRIVILEGED_GROUPS,
) -> bool:
    """Check whether claims grant listing write access (fails closed)."""
    return bool(extract_privileged_groups(claims, privileged))


class AuthStrategy(ABC):
    """Provides authorization headers for outbound API requests."""

    @abstractmethod
    async def get_auth_headers(self) -> dict[str, str]:
        """Get authorization headers for an API request.

        Returns:
            Dictionary of headers to include in the request
        """


class NoAuthStrategy(AuthStrategy):
    """Strategy for anonymous access to public endpoints."""

    async def get_auth_headers(self) -> dict[str, str]:
        """Return empty headers."""
        return {}


class SessionAuthStrategy(AuthStrategy):
    """Attaches the logged-in session's identity token as a bearer credential.

    The identity token is sent because the listings API checks ``aud``
    against the app client ID, a claim only the identity token carries.
    """

    def __init__(self, session_store: AuthSessionStore) -> None:
        self._session_store = session_store

    async def get_auth_headers(self) -> dict[str, str]:
        """Get the bearer header for the current session.

        Raises:
            NotAuthenticated: If there is no login session
        """
        session = await self._session_store.load()
        if session is None:
            raise NotAuthenticated
        return {"Authorization": f"Bearer {session.tokens.id_token}"}
