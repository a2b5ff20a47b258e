"""OAuth 2.0 public-client login for the realty listings site.

Authorization Code flow with PKCE against the hosted identity provider,
plus the session storage and session state it maintains.
"""

from realty_listings.oauth.flows import (
    Navigator,
    PKCELoginFlow,
    WebBrowserNavigator,
)
from realty_listings.oauth.pkce import PKCEPair, generate_code_challenge, generate_code_verifier
from realty_listings.oauth.session import AuthSession, AuthSessionStore, IdentityClaims, TokenSet
from realty_listings.oauth.storage import (
    EncryptedFileSessionStorage,
    InMemorySessionStorage,
    SessionStorage,
)

__all__ = [
    "AuthSession",
    "AuthSessionStore",
    "EncryptedFileSessionStorage",
    "IdentityClaims",
    "InMemorySessionStorage",
    "Navigator",
    "PKCELoginFlow",
    "PKCEPair",
    "SessionStorage",
    "TokenSet",
    "WebBrowserNavigator",
    "generate_code_challenge",
    "generate_code_verifier",
]
