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
TokenVerifier component for validating Firebase ID token signatures and claims.
"""

import hashlib
import hmac
import time
from typing import Any

from authlib.jose import JsonWebToken
from authlib.jose.errors import BadSignatureError, DecodeError, JoseError
from authlib.jose.util import extract_header
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_firebase.exceptions import (
    CoreasonFirebaseError,
    InvalidClaimsError,
    InvalidSignatureError,
    MalformedTokenError,
)
from coreason_firebase.key_cache import KeyCache
from coreason_firebase.utils.logger import logger

tracer = trace.get_tracer(__name__)

ALGORITHM = "RS256"
MAX_SUBJECT_LENGTH = 128


def _is_numeric(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class TokenVerifier:
    """
    Verifies ID tokens issued by the identity provider.

    Verification runs parse -> key lookup -> signature -> claims and stops at the
    first failure. A stale or unknown key id costs at most one key refresh,
    performed by the KeyCache.

    Attributes:
        key_cache (KeyCache): Source of the public keys.
        audience (str): The expected 'aud' claim (the project id).
        issuer (str): The expected 'iss' claim.
        leeway (int): Acceptable clock skew in seconds.
    """

    def __init__(
        self,
        key_cache: KeyCache,
        audience: str,
        issuer: str,
        pii_salt: SecretStr,
        leeway: int = 0,
    ) -> None:
        """
        Initialize the TokenVerifier.

        Args:
            key_cache: The KeyCache to fetch public keys from.
            audience: The expected audience (aud) claim.
            issuer: The expected issuer (iss) claim.
            pii_salt: Salt for anonymizing subjects in logs and traces.
            leeway: Acceptable clock skew in seconds. Defaults to 0.
        """
        self.key_cache = key_cache
        self.audience = audience
        self.issuer = issuer
        self.pii_salt = pii_salt
        self.leeway = leeway
        self.jwt = JsonWebToken([ALGORITHM])

    def _anonymize(self, value: str) -> str:
        return hmac.new(
            self.pii_salt.get_secret_value().encode("utf-8"),
            value.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _parse_header(self, token: str) -> dict[str, Any]:
        segments = token.split(".")
        if len(segments) != 3 or not all(segments):
            raise MalformedTokenError("Token must have three non-empty segments")

        try:
            header: dict[str, Any] = extract_header(segments[0].encode("ascii"), DecodeError)
        except (DecodeError, ValueError, UnicodeEncodeError) as e:
            raise MalformedTokenError("Token header is not valid base64url JSON") from e

        if header.get("alg") != ALGORITHM:
            raise InvalidSignatureError(f"Unsupported signing algorithm, expected {ALGORITHM}")

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise MalformedTokenError("Token header has no 'kid'")
        return header

    def _verify_signature(self, token: str, public_key: str) -> dict[str, Any]:
        try:
            claims = self.jwt.decode(token, public_key)
        except BadSignatureError as e:
            raise InvalidSignatureError("Token signature does not match the public key") from e
        except DecodeError as e:
            raise MalformedTokenError("Token payload is not valid base64url JSON") from e
        except (JoseError, ValueError) as e:
            raise InvalidSignatureError(f"Token signature could not be verified: {type(e).__name__}") from e
        return dict(claims)

    def _validate_claims(self, payload: dict[str, Any], now: float) -> None:
        exp = payload.get("exp")
        if not _is_numeric(exp):
            raise InvalidClaimsError("exp", "missing or not a number")
        if exp <= now - self.leeway:
            raise InvalidClaimsError("exp", "token has expired")

        iat = payload.get("iat")
        if not _is_numeric(iat):
            raise InvalidClaimsError("iat", "missing or not a number")
        if iat > now + self.leeway:
            raise InvalidClaimsError("iat", "token was issued in the future")

        if "auth_time" in payload:
            auth_time = payload["auth_time"]
            if not _is_numeric(auth_time) or auth_time > now + self.leeway:
                raise InvalidClaimsError("auth_time", "must be a time in the past")

        if "nbf" in payload:
            nbf = payload["nbf"]
            if not _is_numeric(nbf) or nbf > now + self.leeway:
                raise InvalidClaimsError("nbf", "token is not valid yet")

        if payload.get("aud") != self.audience:
            raise InvalidClaimsError("aud", f"expected '{self.audience}'")

        if payload.get("iss") != self.issuer:
            raise InvalidClaimsError("iss", f"expected '{self.issuer}'")

        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise InvalidClaimsError("sub", "must be a non-empty string")
        if len(sub) > MAX_SUBJECT_LENGTH:
            raise InvalidClaimsError("sub", f"must be at most {MAX_SUBJECT_LENGTH} characters")

        user_id = payload.get("user_id")
        if user_id is not None and user_id != sub:
            raise InvalidClaimsError("user_id", "must match 'sub'")

    async def verify(self, token: str) -> dict[str, Any]:
        """
        Verifies the token and returns its claims.

        Emits an OpenTelemetry span `verify_identity_token`.
        Sets attribute `enduser.id` (anonymized) on success.

        Args:
            token: The raw ID token (without "Bearer " prefix).

        Returns:
            dict[str, Any]: The decoded claims, with 'user_id' set to 'sub' if absent.

        Raises:
            MalformedTokenError: If the token is not a compact JWT.
            UnknownKeyIdError: If the signing key is unknown, even after a refresh.
            InvalidSignatureError: If the signature or algorithm is wrong.
            InvalidClaimsError: If a claim is invalid; ``field`` names it.
            PublicKeyFetchError: If the keys cannot be fetched.
        """
        with tracer.start_as_current_span(
            "verify_identity_token", record_exception=False, set_status_on_exception=False
        ) as span:
            try:
                if not isinstance(token, str) or not token.strip():
                    raise MalformedTokenError("Token must be a non-empty string")
                token = token.strip()

                header = self._parse_header(token)
                public_key = await self.key_cache.get_key(header["kid"])
                payload = self._verify_signature(token, public_key)
                self._validate_claims(payload, time.time())
            except CoreasonFirebaseError as e:
                logger.warning(f"Token verification failed ({e.reason}): {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.reason))
                raise

            payload.setdefault("user_id", payload["sub"])

            user_hash = self._anonymize(payload["sub"])
            logger.info(f"Token verified for user {user_hash}")
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))
            return payload
