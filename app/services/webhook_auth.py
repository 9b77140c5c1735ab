"""
Webhook Authenticator

Verifies webhook authenticity against a shared secret.

GitHub signs the raw body: X-Hub-Signature-256: sha256=<hex(HMAC_SHA256(body, secret))>.
The digest must be computed over the exact bytes received - decoding and
re-serializing the JSON first changes the bytes and breaks verification.

Railway cannot sign payloads, so its endpoint carries a shared token instead.
"""

import hashlib
import hmac
import logging
from typing import Optional

from app.errors import AuthenticationFailure, ConfigurationMissing

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: bytes) -> str:
    """Return the expected header value for body under secret."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: Optional[str], body: bytes, signature_header: Optional[str]) -> None:
    """
    Verify an HMAC-SHA256 webhook signature.

    Args:
        secret: Shared webhook secret
        body: Raw, unmodified request body
        signature_header: Value of X-Hub-Signature-256

    Raises:
        ConfigurationMissing: If no secret is configured
        AuthenticationFailure: If the header is missing, malformed or does not match
    """
    if not secret:
        raise ConfigurationMissing("Webhook secret is not configured")

    if not signature_header:
        raise AuthenticationFailure("Missing webhook signature header")

    if not signature_header.startswith(SIGNATURE_PREFIX):
        raise AuthenticationFailure("Webhook signature must be 'sha256=<hex>'")

    expected = compute_signature(secret, body)

    if not hmac.compare_digest(expected.encode("utf-8"), signature_header.strip().encode("utf-8")):
        raise AuthenticationFailure("Webhook signature mismatch")


def verify_token(expected_token: Optional[str], provided_token: Optional[str]) -> None:
    """
    Verify a shared webhook token (deploy platform).

    Raises:
        ConfigurationMissing: If no token is configured
        AuthenticationFailure: If the provided token is missing or wrong
    """
    if not expected_token:
        raise ConfigurationMissing("Webhook token is not configured")

    if not provided_token:
        raise AuthenticationFailure("Missing webhook token")

    if not hmac.compare_digest(expected_token.encode("utf-8"), provided_token.encode("utf-8")):
        raise AuthenticationFailure("Invalid webhook token")
