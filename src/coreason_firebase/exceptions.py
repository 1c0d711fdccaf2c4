# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_firebase

"""
Custom exceptions for the coreason-firebase package.

Every exception carries a stable ``reason`` string so callers can branch on the
failure kind without matching on messages. Messages never contain key material,
assertions or raw tokens.
"""


class CoreasonFirebaseError(Exception):
    """Base exception for all coreason-firebase errors."""

    reason = "error"


class InvalidCertificateError(CoreasonFirebaseError):
    """Raised when the service-account certificate is unavailable or its private key cannot be used."""

    reason = "invalid_certificate"


class OversizedResponseError(CoreasonFirebaseError):
    """Raised when an HTTP response is too large."""

    reason = "oversized_response"


class ProviderRequestError(CoreasonFirebaseError):
    """
    Raised when a request to the identity provider fails.

    Attributes:
        status_code (int | None): The HTTP status, if a response was received.
        retryable (bool): Whether repeating the request may succeed (timeouts, 5xx, 429).
    """

    reason = "provider_request_failed"

    def __init__(self, message: str, status_code: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class TokenExchangeError(ProviderRequestError):
    """Raised when exchanging a signed assertion for an access token fails."""

    reason = "token_exchange_failed"


class PublicKeyFetchError(ProviderRequestError):
    """Raised when the provider's public signing keys cannot be fetched."""

    reason = "public_key_fetch_failed"


class InvalidTokenError(CoreasonFirebaseError):
    """
    Raised when an identity token fails verification.
    Catch this to handle every verification failure at once.
    """

    reason = "invalid_token"


class MalformedTokenError(InvalidTokenError):
    """Raised when the token is not a structurally valid compact JWT."""

    reason = "malformed_token"


class UnknownKeyIdError(InvalidTokenError):
    """Raised when the token's key id is absent from the provider's key set, even after a refresh."""

    reason = "unknown_key_id"

    def __init__(self, key_id: str) -> None:
        super().__init__(f"No public key found for key id '{key_id}'")
        self.key_id = key_id


class InvalidSignatureError(InvalidTokenError):
    """Raised when the token's signature cannot be verified."""

    reason = "invalid_signature"


class InvalidClaimsError(InvalidTokenError):
    """Raised when a claim fails validation. ``field`` names the offending claim."""

    reason = "invalid_claims"

    def __init__(self, field: str, detail: str) -> None:
        super().__init__(f"Invalid claim '{field}': {detail}")
        self.field = field
