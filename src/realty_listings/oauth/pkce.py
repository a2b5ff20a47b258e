"""PKCE (Proof Key for Code Exchange) primitives.

Implements the S256 method of RFC 7636 for a public client.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass

# 64 bytes hex-encoded is 128 characters, the RFC 7636 maximum length
DEFAULT_VERIFIER_BYTES = 64
MIN_VERIFIER_BYTES = 32


@dataclass(frozen=True)
class PKCEPair:
    """PKCE code verifier and challenge pair.

    Attributes:
        code_verifier: Secret kept in session storage, sent only to the token endpoint
        code_challenge: SHA256 hash of the verifier sent with the authorization request
    """

    code_verifier: str
    code_challenge: str


def generate_code_verifier(nbytes: int = DEFAULT_VERIFIER_BYTES) -> str:
    """Generate a hex-encoded random code verifier.

    Args:
        nbytes: Number of random bytes (between 32 and 64)

    Returns:
        Hex string of ``2 * nbytes`` characters

    Raises:
        ValueError: If nbytes is outside the allowed range
    """
    if nbytes < MIN_VERIFIER_BYTES:
        msg = f"nbytes must be at least {MIN_VERIFIER_BYTES} for sufficient entropy"
        raise ValueError(msg)
    if nbytes > DEFAULT_VERIFIER_BYTES:
        msg = "nbytes must be at most 64 (verifier limited to 128 characters)"
        raise ValueError(msg)

    return secrets.token_hex(nbytes)


def generate_code_challenge(verifier: str) -> str:
    """Compute ``BASE64URL(SHA256(verifier))`` without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def create_pkce_pair(nbytes: int = DEFAULT_VERIFIER_BYTES) -> PKCEPair:
    """Create a fresh verifier and its matching challenge."""
    verifier = generate_code_verifier(nbytes)
    return PKCEPair(code_verifier=verifier, code_challenge=generate_code_challenge(verifier))
