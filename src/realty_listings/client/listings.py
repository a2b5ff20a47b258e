"""Async client for the listings API.

Reads are anonymous. Mutating calls take their headers from an
``AuthStrategy``, normally ``SessionAuthStrategy`` bound to the login
session.
"""

from __future__ import annotations

import urllib.parse
from typing import TYPE_CHECKING, Any

import httpx

from realty_listings.client.exceptions import (
    ListingNotFoundError,
    ListingsAPIError,
    ListingsAuthenticationError,
    ListingsRateLimitError,
    ListingsValidationError,
)
from realty_listings.logging_config import get_logger

if TYPE_CHECKING:
    from realty_listings.security import AuthStrategy

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


class ListingsClient:
    """Client for the listings API.

    Example:
        ```python
        auth = SessionAuthStrategy(session_store)
        client = ListingsClient("https://api.example.com", auth)

        homes = await client.list_properties(available=True, beds=3)
        await client.update_property(homes[0]["id"], {"price": 410000})
        ```
    """

    def __init__(
        self,
        base_url: str,
        auth_strategy: AuthStrategy,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: API base URL
            auth_strategy: Supplies headers for mutating calls
            http_client: Optional custom HTTP client
        """
        self._base_url = base_url.rstrip("/")
        self._auth_strategy = auth_strategy
        self._client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=DEFAULT_TIMEOUT,
                headers={"Accept": "application/json"},
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    @staticmethod
    def _listing_path(listing_id: str) -> str:
        return f"/properties/{urllib.parse.quote(listing_id, safe='')}"

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Raise the exception matching an error response.

        Raises:
            ListingsAPIError: Subclass chosen by status code
        """
        status = response.status_code

        body: dict | str | None
        try:
            body = response.json()
        except ValueError:
            body = response.text or None

        if isinstance(body, dict):
            message = str(body.get("message") or body.get("reason") or body.get("error") or body)
        else:
            message = body or f"HTTP {status}"

        if status == 401:
            raise ListingsAuthenticationError(message, status, body)
        if status == 404:
            raise ListingNotFoundError(message, status, body)
        if status == 400:
            raise ListingsValidationError(message, status, body)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise ListingsRateLimitError(
                message,
                status,
                body,
                float(retry_after) if retry_after else None,
            )

        raise ListingsAPIError(message, status, body)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        authenticated: bool = False,
    ) -> Any:
        """Make an API request.

        Args:
            method: HTTP method
            path: API path (without base URL)
            params: Query parameters; None values are dropped
            json_data: JSON body
            authenticated: Attach headers from the auth strategy

        Returns:
            Parsed JSON response, or None for an empty reply

        Raises:
            NotAuthenticated: If an authenticated call has no login session
            ListingsAPIError: On API errors
        """
        client = await self._get_client()

        if params:
            params = {k: v for k, v in params.items() if v is not None}

        headers = await self._auth_strategy.get_auth_headers() if authenticated else {}

        logger.debug("Listings API request: %s %s", method, path)

        try:
            response = await client.request(
                method=method,
                url=f"{self._base_url}{path}",
                params=params,
                json=json_data,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise ListingsAPIError(f"Request to listings API failed: {e}") from e

        if not response.is_success:
            self._handle_error_response(response)

        if response.status_code == 204 or not response.content:
            return None

        return response.json()

    async def list_properties(
        self,
        available: bool | None = None,
        beds: float | None = None,
        baths: float | None = None,
        max_price: float | None = None,
    ) -> list[dict[str, Any]]:
        """List listings, newest first.

        Args:
            available: Only listings with this availability
            beds: Minimum bedrooms
            baths: Minimum bathrooms
            max_price: Maximum price

        Returns:
            Listing dictionaries
        """
        params: dict[str, Any] = {
            "available": None if available is None else str(available).lower(),
            "beds": beds,
            "baths": baths,
            "maxPrice": max_price,
        }
        result = await self._request("GET", "/properties", params=params)
        return list(result or [])

    async def get_property(self, listing_id: str) -> dict[str, Any]:
        """Get one listing.

        Raises:
            ListingNotFoundError: If the listing does not exist
        """
        return dict(await self._request("GET", self._listing_path(listing_id)))

    async def create_property(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a listing; requires a privileged login."""
        result = await self._request("POST", "/properties", json_data=fields, authenticated=True)
        return dict(result)

    async def update_property(self, listing_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Update some fields of a listing; requires a privileged login."""
        result = await self._request(
            "PUT", self._listing_path(listing_id), json_data=fields, authenticated=True
        )
        return dict(result)

    async def delete_property(self, listing_id: str) -> None:
        """Delete a listing; requires a privileged login."""
        await self._request("DELETE", self._listing_path(listing_id), authenticated=True)

    async def request_upload(self, filename: str, content_type: str) -> dict[str, Any]:
        """Ask for a pre-signed photo upload URL; requires a privileged login."""
        result = await self._request(
            "POST",
            "/uploads",
            json_data={"filename": filename, "contentType": content_type},
            authenticated=True,
        )
        return dict(result)

    async def send_contact(
        self,
        name: str,
        email: str,
        message: str,
        listing_id: str | None = None,
    ) -> None:
        """Submit the public contact form."""
        body: dict[str, Any] = {"name": name, "email": email, "message": message}
        if listing_id:
            body["listingId"] = listing_id
        await self._request("POST", "/contact", json_data=body)
