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
AssertionBuilder component for turning a service-account certificate into a signed JWT.
"""

import time
from typing import Any

from authlib.jose import JsonWebToken, RSAKey
from authlib.jose.errors import JoseError
from cryptography.exceptions import UnsupportedAlgorithm

from coreason_firebase.config import DEFAULT_SCOPES, OAUTH_TOKEN_URL
from coreason_firebase.exceptions import InvalidCertificateError
from coreason_firebase.models import Certificate

ALGORITHM = "RS256"
DEFAULT_LIFETIME = 3600


def build_claims(
    client_email: str,
    audience: str,
    scopes: list[str],
    lifetime_seconds: int = DEFAULT_LIFETIME,
    subject_id: str | None = None,
    now: int | None = None,
) -> dict[str, Any]:
    """
    Builds the claim set of an assertion.

    Service assertions and custom (user-bound) assertions differ only by the
    presence of ``uid``.

    Args:
        client_email: The service account email, used as the issuer.
        audience: The token endpoint the assertion is addressed to.
        scopes: Capabilities requested for the resulting access token.
        lifetime_seconds: Seconds between 'iat' and 'exp'.
        subject_id: The end-user id for a custom token, or None.
        now: Issue time in epoch seconds. Defaults to the current time.

    Returns:
        dict[str, Any]: The claims, in 'iat', 'exp', 'aud', 'iss', 'scope'[, 'uid'] order.

    Raises:
        ValueError: If lifetime_seconds is not positive.
    """
    if lifetime_seconds <= 0:
        raise ValueError("lifetime_seconds must be positive")

    issued_at = int(time.time()) if now is None else now
    claims: dict[str, Any] = {
        "iat": issued_at,
        "exp": issued_at + lifetime_seconds,
        "aud": audience,
        "iss": client_email,
        "scope": " ".join(scopes),
    }
    if subject_id is not None:
        claims["uid"] = subject_id
    return claims


class AssertionBuilder:
    """
    Signs RS256 assertions with a service account's private key.

    Attributes:
        audience (str): The 'aud' claim of every assertion.
        scopes (list[str]): The scopes requested by every assertion.
    """

    def __init__(self, audience: str = OAUTH_TOKEN_URL, scopes: list[str] | None = None) -> None:
        self.audience = audience
        self.scopes = list(DEFAULT_SCOPES if scopes is None else scopes)
        self.jwt = JsonWebToken([ALGORITHM])

    def _load_key(self, certificate: Certificate) -> RSAKey:
        try:
            key = RSAKey.import_key(certificate.private_key.get_secret_value())
        except (ValueError, TypeError, UnsupportedAlgorithm, JoseError) as e:
            # Never include the key or the parser's message (which may echo it)
            raise InvalidCertificateError(
                f"Private key for {certificate.client_email} is not a valid PEM RSA key"
            ) from e

        if key.public_only:
            raise InvalidCertificateError(f"Private key for {certificate.client_email} is a public key")
        return key

    def build(
        self,
        certificate: Certificate,
        lifetime_seconds: int = DEFAULT_LIFETIME,
        subject_id: str | None = None,
    ) -> str:
        """
        Builds and signs an assertion.

        Args:
            certificate: The service-account certificate.
            lifetime_seconds: Lifetime of the assertion. Defaults to 3600.
            subject_id: End-user id for a custom token. Omit for a service assertion.

        Returns:
            str: The compact serialization (header.payload.signature).

        Raises:
            InvalidCertificateError: If the private key cannot be parsed into an RSA signing key.
            ValueError: If lifetime_seconds is not positive.
        """
        key = self._load_key(certificate)
        claims = build_claims(
            certificate.client_email,
            self.audience,
            self.scopes,
            lifetime_seconds=lifetime_seconds,
            subject_id=subject_id,
        )

        header = {"alg": ALGORITHM, "typ": "JWT"}
        if certificate.private_key_id:
            header["kid"] = certificate.private_key_id

        token: bytes = self.jwt.encode(header, claims, key)
        return token.decode("ascii")
