"""Bearer token verification for the listings API.

Validates RS256 identity tokens issued by the user pool: signature
against the issuer's published key set, then exact ``iss`` and ``aud``
matches and expiry.

Signing keys come from a ``KeySource``. The production source wraps
PyJWT's ``PyJWKClient``:

- the key set is fetched from ``<issuer>/.well-known/jwks.json``
- the whole set is cached for ``cache_ttl`` seconds
- a ``kid`` missing from the cache triggers one refetch (key rotation),
  at most once per ``min_refresh_interval``
- a lock keeps at most one fetch in flight per process
"""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

import jwt
from jwt import PyJWKClient, PyJWKClientConnectionError

from realty_listings.logging_config import get_logger
from realty_listings.security import InvalidToken, NoBearer

if TYPE_CHECKING:
    from realty_listings.config import Config

logger = get_logger(__name__)

REQUIRED_CLAIMS = ["exp", "iss", "aud", "sub"]

# Unknown kids force at most one key set refresh per interval
DEFAULT_MIN_REFRESH_INTERVAL = 30.0


class UnknownSigningKey(LookupError):
    """No key in the key set matches the token's ``kid``."""


class KeySetUnavailable(Exception):
    """The key set could not be fetched."""


class KeySource(ABC):
    """Resolves a key identifier to a signature verification key."""

    @abstractmethod
    def get_key(self, kid: str) -> Any:
        """Return the verification key for ``kid``.

        Raises:
            UnknownSigningKey: If no key matches
            KeySetUnavailable: If the key set cannot be retrieved
        """


class StaticKeySource(KeySource):
    """Fixed kid-to-key mapping, for tests and offline verification."""

    def __init__(self, keys: Mapping[str, Any]) -> None:
        self._keys = dict(keys)

    def get_key(self, kid: str) -> Any:
        try:
            return self._keys[kid]
        except KeyError:
            raise UnknownSigningKey(kid) from None


class JWKSKeySource(KeySource):
    """Remote JSON Web Key Set with TTL caching and rate-limited refresh on kid miss.

    ``PyJWKClient`` only fetches and parses; caching is kept here so the
    refresh policy does not depend on the installed PyJWT release.
    """

    def __init__(
        self,
        jwks_url: str,
        cache_ttl: int = 300,
        timeout: float = 10.0,
        min_refresh_interval: float = DEFAULT_MIN_REFRESH_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the key source.

        Args:
            jwks_url: Key set URL
            cache_ttl: Seconds a fetched key set stays cached
            timeout: Fetch timeout in seconds
            min_refresh_interval: Minimum seconds between refreshes forced by unknown kids
            clock: Monotonic time source

        Raises:
            ValueError: If jwks_url is empty
        """
        if not jwks_url:
            raise ValueError("A key set URL is required")

        self._jwks_url = jwks_url
        self._client = PyJWKClient(jwks_url, cache_jwk_set=False, timeout=timeout)
        self._cache_ttl = cache_ttl
        self._min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._keys: dict[str, Any] = {}
        self._fetched_at: float | None = None
        self._forced_at: float | None = None

        logger.info("Key set source initialized for %s (ttl %ds)", jwks_url, cache_ttl)

    @property
    def jwks_url(self) -> str:
        return self._jwks_url

    def _fetch(self, now: float) -> None:
        try:
            jwk_set = self._client.get_jwk_set(refresh=True)
        except PyJWKClientConnectionError as e:
            logger.error("Key set fetch from %s failed: %s", self._jwks_url, e)
            raise KeySetUnavailable(str(e)) from e
        except jwt.PyJWTError as e:
            logger.error("Key set from %s is unusable: %s", self._jwks_url, e)
            raise KeySetUnavailable(str(e)) from e

        self._keys = {
            k.key_id: k.key
            for k in jwk_set.keys
            if k.key_id and k.public_key_use in ("sig", None)
        }
        self._fetched_at = now
        logger.debug("Fetched %d signing keys from %s", len(self._keys), self._jwks_url)

    def _may_force_refresh(self, now: float) -> bool:
        return self._forced_at is None or now - self._forced_at >= self._min_refresh_interval

    def get_key(self, kid: str) -> Any:
        with self._lock:
            now = self._clock()
            if self._fetched_at is None or now - self._fetched_at >= self._cache_ttl:
                self._fetch(now)
            elif kid not in self._keys and self._may_force_refresh(now):
                self._forced_at = now
                self._fetch(now)

            try:
                return self._keys[kid]
            except KeyError:
                raise UnknownSigningKey(kid) from None


def parse_bearer(authorization_header: str | None) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        NoBearer: If the header is missing, uses another scheme or is empty
    """
    if not authorization_header or not authorization_header.startswith("Bearer "):
        raise NoBearer
    token = authorization_header[len("Bearer ") :].strip()
    if not token:
        raise NoBearer("Bearer token is empty")
    return token


class TokenVerifier:
    """Establishes trust in a presented bearer token.

    Stateless apart from the key source, so one instance is safely
    shared across concurrent requests.
    """

    def __init__(
        self,
        key_source: KeySource,
        issuer: str,
        audience: str,
        algorithms: Iterable[str] = ("RS256",),
    ) -> None:
        self._key_source = key_source
        self._issuer = issuer
        self._audience = audience
        self._algorithms = list(algorithms)

    @classmethod
    def from_config(cls, config: Config, key_source: KeySource | None = None) -> TokenVerifier:
        """Build a verifier for the configured user pool and app client.

        Raises:
            ConfigError: If the issuer or audience is not configured
        """
        config.require_verifier_settings()
        issuer = config.resolved_issuer or ""
        if key_source is None:
            key_source = JWKSKeySource(
                config.jwks_url or "",
                cache_ttl=config.jwks_cache_ttl,
                timeout=config.http_timeout,
            )
        return cls(key_source, issuer=issuer, audience=config.app_client_id or "")

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def audience(self) -> str:
        return self._audience

    def verify(self, authorization_header: str | None) -> dict[str, Any]:
        """Verify the bearer token in an Authorization header.

        Args:
            authorization_header: Raw header value (may be None)

        Returns:
            Decoded claims (sub, optional email, cognito:groups, ...)

        Raises:
            NoBearer: If there is no bearer token
            InvalidToken: If any check fails; ``cause`` names the check
        """
        token = parse_bearer(authorization_header)

        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as e:
            raise InvalidToken("malformed") from e

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise InvalidToken("malformed")

        try:
            key = self._key_source.get_key(kid)
        except UnknownSigningKey as e:
            raise InvalidToken("unknown_key") from e
        except KeySetUnavailable as e:
            raise InvalidToken("key_fetch_failed") from e

        try:
            claims: dict[str, Any] = jwt.decode(
                token,
                key,
                algorithms=self._algorithms,
                issuer=self._issuer,
                audience=self._audience,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            raise InvalidToken("expired") from e
        except jwt.InvalidIssuerError as e:
            raise InvalidToken("invalid_issuer") from e
        except jwt.InvalidAudienceError as e:
            raise InvalidToken("invalid_audience") from e
        except jwt.MissingRequiredClaimError as e:
            raise InvalidToken("missing_claim") from e
        except jwt.InvalidSignatureError as e:
            raise InvalidToken("invalid_signature") from e
        except jwt.DecodeError as e:
            raise InvalidToken("malformed") from e
        except jwt.PyJWTError as e:
            raise InvalidToken("invalid") from e

        return claims
