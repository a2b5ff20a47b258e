"""Listings API client."""

from realty_listings.client.exceptions import (
    ListingNotFoundError,
    ListingsAPIError,
    ListingsAuthenticationError,
    ListingsRateLimitError,
    ListingsValidationError,
)
from realty_listings.client.listings import ListingsClient

__all__ = [
    "ListingNotFoundError",
    "ListingsAPIError",
    "ListingsAuthenticationError",
    "ListingsClient",
    "ListingsRateLimitError",
    "ListingsValidationError",
]
