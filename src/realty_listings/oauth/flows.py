"""OAuth 2.0 Authorization Code flow with PKCE for a public client.

Drives login against the hosted identity provider without a client
secret. The user agent is reached through a ``Navigator`` and per-session
state lives in a ``SessionStorage``, mirroring ``window.location`` and
``sessionStorage`` in a browser.

State machine::

    LoggedOut --start_login--> AwaitingRedirect --handle_redirect--> LoggedIn
    AwaitingRedirect --exchange failure--> LoggedOut
    LoggedIn --logout--> LoggedOut

There is no refresh transition: expired tokens require a new login.
"""

from __future__ import annotations

import webbrowser
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from realty_listings.logging_config import get_logger
from realty_listings.oauth.pkce import create_pkce_pair
from realty_listings.oauth.session import AuthSessionStore, TokenSet
from realty_listings.security import (
    DEFAULT_PRIVILEGED_GROUPS,
    AuthError,
    MissingVerifier,
    TokenExchangeFailed,
    mask_sensitive_data,
)

if TYPE_CHECKING:
    from realty_listings.config import Config
    from realty_listings.oauth.session import AuthSession
    from realty_listings.oauth.storage import SessionStorage

logger = get_logger(__name__)

VERIFIER_KEY = "pkce_verifier"

DEFAULT_TIMEOUT = 10.0


class Navigator(ABC):
    """Moves the user agent between pages."""

    @abstractmethod
    def assign(self, url: str) -> None:
        """Navigate to ``url`` (a new history entry)."""

    @abstractmethod
    def replace(self, url: str) -> None:
        """Rewrite the current location without navigating."""


class WebBrowserNavigator(Navigator):
    """Opens pages in the system web browser.

    A desktop browser's address bar cannot be rewritten from outside, so
    ``replace`` only records the cleaned location.
    """

    def __init__(self) -> None:
        self.current_url: str | None = None

    def assign(self, url: str) -> None:
        self.current_url = url
        if not webbrowser.open(url):
            logger.warning("Could not open a browser; visit the URL manually")

    def replace(self, url: str) -> None:
        self.current_url = url


def strip_query_param(url: str, name: str) -> str:
    """Remove one query parameter, leaving every other byte of the URL as it was."""
    parts = urlsplit(url)
    kept = [
        pair for pair in parts.query.split("&") if pair and pair.partition("=")[0] != name
    ]
    return urlunsplit(parts._replace(query="&".join(kept)))


class PKCELoginFlow:
    """Authorization Code + PKCE login, code exchange and logout."""

    def __init__(
        self,
        hosted_ui_domain: str,
        client_id: str,
        redirect_uri: str,
        logout_uri: str,
        scopes: Iterable[str],
        storage: SessionStorage,
        navigator: Navigator,
        session_store: AuthSessionStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the login flow.

        Args:
            hosted_ui_domain: Base URL of the hosted login pages
            client_id: Public app client identifier
            redirect_uri: Registered callback URL
            logout_uri: Registered sign-out URL
            scopes: Requested scopes
            storage: Per-session storage for the verifier and tokens
            navigator: User agent navigation
            session_store: Owner of the AuthSession (built on ``storage`` if omitted)
            http_client: Optional custom HTTP client
            timeout: Token endpoint timeout in seconds
        """
        domain = hosted_ui_domain.rstrip("/")
        self.authorize_url = f"{domain}/oauth2/authorize"
        self.token_url = f"{domain}/oauth2/token"
        self.logout_url = f"{domain}/logout"
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.logout_uri = logout_uri
        self.scope = " ".join(scopes)
        self._storage = storage
        self._navigator = navigator
        self._session_store = session_store or AuthSessionStore(storage)
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_config(
        cls,
        config: Config,
        storage: SessionStorage,
        navigator: Navigator,
        http_client: httpx.AsyncClient | None = None,
    ) -> PKCELoginFlow:
        """Build the flow from application configuration.

        Raises:
            ConfigError: If the hosted domain or client ID is missing
        """
        config.require_login_settings()
        return cls(
            hosted_ui_domain=config.hosted_ui_domain or "",
            client_id=config.app_client_id or "",
            redirect_uri=config.redirect_uri,
            logout_uri=config.logout_uri,
            scopes=config.oauth_scopes.split(),
            storage=storage,
            navigator=navigator,
            session_store=AuthSessionStore(
                storage, config.privileged_groups or DEFAULT_PRIVILEGED_GROUPS
            ),
            http_client=http_client,
            timeout=config.http_timeout,
        )

    @property
    def session_store(self) -> AuthSessionStore:
        return self._session_store

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def build_login_url(self) -> str:
        """Create a fresh verifier and return the authorization URL.

        The verifier is stored (replacing any earlier one, which cancels
        that attempt); only its S256 challenge goes into the URL. No
        network call is made.
        """
        pkce = create_pkce_pair()
        await self._storage.set_item(VERIFIER_KEY, pkce.code_verifier)

        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": self.scope,
            "code_challenge_method": "S256",
            "code_challenge": pkce.code_challenge,
        }
        logger.debug("Built authorization URL for client %s", self.client_id)
        return f"{self.authorize_url}?{urlencode(params)}"

    async def start_login(self) -> None:
        """Send the user agent to the authorization endpoint."""
        self._navigator.assign(await self.build_login_url())

    async def handle_redirect(self, url: str) -> AuthSession | None:
        """Complete a login from the redirect URL, if it carries a code.

        Without a ``code`` parameter nothing happens. With one, the stored
        verifier is consumed (deleted whatever the outcome), the code is
        exchanged for tokens and the code is stripped from the visible URL.

        Args:
            url: Current location of the user agent

        Returns:
            The new AuthSession, or None if the URL carries no code

        Raises:
            MissingVerifier: If no verifier is stored; the token endpoint is not called
            TokenExchangeFailed: If the token endpoint rejects the exchange
        """
        code = dict(parse_qsl(urlsplit(url).query)).get("code")
        if not code:
            return None

        try:
            verifier = await self._storage.get_item(VERIFIER_KEY)
            if not verifier:
                raise MissingVerifier
            tokens = await self._exchange_code(code, verifier)
            return await self._session_store.save(tokens)
        except AuthError as e:
            logger.error("Login failed: %s", e)
            await self._session_store.clear()
            raise
        finally:
            await self._storage.remove_item(VERIFIER_KEY)
            self._navigator.replace(strip_query_param(url, "code"))

    async def _exchange_code(self, code: str, verifier: str) -> TokenSet:
        """POST the code and verifier to the token endpoint."""
        client = await self._get_client()

        data = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": verifier,
        }

        logger.debug("Exchanging authorization code: %s", mask_sensitive_data(data))

        try:
            response = await client.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            logger.error("Token exchange transport error: %s", e)
            raise TokenExchangeFailed(0, str(e) or type(e).__name__) from e

        if not response.is_success:
            logger.error(
                "Token exchange failed: %s %s",
                response.status_code,
                response.reason_phrase,
            )
            raise TokenExchangeFailed(response.status_code, response.text)

        try:
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError("Token response is not a JSON object")
            tokens = TokenSet.from_token_response(payload)
        except ValueError as e:
            raise TokenExchangeFailed(response.status_code, str(e)) from e

        logger.info("Exchanged authorization code for tokens")
        return tokens

    async def logout(self) -> None:
        """Clear local state, then send the user agent to the sign-out endpoint.

        Local state goes first so logout holds even if the remote page stalls.
        """
        await self._session_store.clear()
        await self._storage.remove_item(VERIFIER_KEY)

        params = {"client_id": self.client_id, "logout_uri": self.logout_uri}
        self._navigator.assign(f"{self.logout_url}?{urlencode(params)}")

    async def current_session(self) -> AuthSession | None:
        """Return the logged-in session, if any."""
        return await self._session_store.load()
