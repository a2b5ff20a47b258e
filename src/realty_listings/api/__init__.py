"""Listings backend: token verification, listing storage, uploads and contact relay."""

from realty_listings.api.app import create_api_app, create_app_from_config, run_server
from realty_listings.api.listings import (
    DynamoListingStore,
    InMemoryListingStore,
    Listing,
    ListingStore,
)
from realty_listings.api.verifier import (
    JWKSKeySource,
    KeySource,
    StaticKeySource,
    TokenVerifier,
)

__all__ = [
    "DynamoListingStore",
    "InMemoryListingStore",
    "JWKSKeySource",
    "KeySource",
    "Listing",
    "ListingStore",
    "StaticKeySource",
    "TokenVerifier",
    "create_api_app",
    "create_app_from_config",
    "run_server",
]
