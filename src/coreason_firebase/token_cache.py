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
TokenCache component for issuing and caching service access tokens.
"""

import time

import anyio
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_firebase.api import AuthAPIProtocol
from coreason_firebase.assertion import DEFAULT_LIFETIME, AssertionBuilder
from coreason_firebase.certificate import CertificateSource
from coreason_firebase.exceptions import CoreasonFirebaseError
from coreason_firebase.models import AccessToken, TokenResponse
from coreason_firebase.utils.logger import logger

tracer = trace.get_tracer(__name__)

MAX_UID_LENGTH = 128


class TokenCache:
    """
    Owns a single cached access token and refreshes it lazily.

    Concurrent callers that find the token stale share one in-flight refresh:
    the first acquires the lock and exchanges a new assertion, the others wait
    on the lock and then reuse the token it stored. The slot holds an immutable
    AccessToken and is replaced by reference, so readers never see a partial value.

    Attributes:
        api (AuthAPIProtocol): The provider API used for the exchange.
        certificate_source (CertificateSource): Supplier of the signing certificate.
        builder (AssertionBuilder): Builds the signed assertions.
        lifetime_seconds (int): Lifetime of each assertion.
        refresh_margin (float): Seconds before expiry at which a token is considered stale.
    """

    def __init__(
        self,
        api: AuthAPIProtocol,
        certificate_source: CertificateSource,
        builder: AssertionBuilder | None = None,
        lifetime_seconds: int = DEFAULT_LIFETIME,
        refresh_margin: float = 60.0,
    ) -> None:
        self.api = api
        self.certificate_source = certificate_source
        self.builder = builder or AssertionBuilder()
        self.lifetime_seconds = lifetime_seconds
        self.refresh_margin = refresh_margin
        self._token: AccessToken | None = None
        self._lock: anyio.Lock | None = None

    @property
    def cached_token(self) -> AccessToken | None:
        return self._token

    def invalidate(self) -> None:
        """Drops the cached token; the next call refreshes."""
        self._token = None

    def _fresh_token(self) -> AccessToken | None:
        token = self._token
        if token is not None and token.is_fresh(time.time(), self.refresh_margin):
            return token
        return None

    async def get_access_token(self) -> AccessToken:
        """
        Returns the cached access token, refreshing it if missing or about to expire.

        Returns:
            AccessToken: A token valid for at least ``refresh_margin`` more seconds.

        Raises:
            InvalidCertificateError: If the certificate is unavailable or unusable.
            TokenExchangeError: If the provider rejects or cannot be reached. The cache is left unchanged.
        """
        if self._lock is None:
            self._lock = anyio.Lock()

        # Double-checked locking (Check 1: no lock)
        token = self._fresh_token()
        if token is not None:
            return token

        async with self._lock:
            # Check 2: a concurrent caller may have refreshed while we waited
            token = self._fresh_token()
            if token is not None:
                return token
            return await self._refresh()

    async def _refresh(self) -> AccessToken:
        """
        Exchanges a fresh service assertion and stores the result.
        Must be called while holding the lock.
        """
        with tracer.start_as_current_span(
            "refresh_access_token", record_exception=False, set_status_on_exception=False
        ) as span:
            try:
                # Certificate sources may touch the filesystem
                certificate = await anyio.to_thread.run_sync(self.certificate_source.load)
                assertion = self.builder.build(certificate, self.lifetime_seconds)

                issued_at = time.time()
                response = await self.api.exchange_assertion(assertion)
            except CoreasonFirebaseError as e:
                logger.error(f"Access token refresh failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.reason))
                raise

            token = AccessToken(
                token=response.access_token,
                token_type=response.token_type,
                expires_at=issued_at + response.expires_in,
            )
            self._token = token

            logger.info(f"Access token refreshed, expires in {response.expires_in}s")
            span.set_attribute("token.expires_in", response.expires_in)
            span.set_status(Status(StatusCode.OK))
            return token

    async def get_custom_token(self, user_id: str) -> TokenResponse:
        """
        Issues a token bound to ``user_id``. Never cached: every call signs and exchanges a new assertion.

        Args:
            user_id: The end-user id, embedded as the 'uid' claim.

        Returns:
            TokenResponse: The provider's response for the custom assertion.

        Raises:
            ValueError: If user_id is empty or longer than 128 characters.
            InvalidCertificateError: If the certificate is unavailable or unusable.
            TokenExchangeError: If the exchange fails.
        """
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("user_id must be a non-empty string")
        if len(user_id) > MAX_UID_LENGTH:
            raise ValueError(f"user_id must be at most {MAX_UID_LENGTH} characters")

        with tracer.start_as_current_span(
            "issue_custom_token", record_exception=False, set_status_on_exception=False
        ) as span:
            try:
                certificate = await anyio.to_thread.run_sync(self.certificate_source.load)
                assertion = self.builder.build(certificate, self.lifetime_seconds, subject_id=user_id)
                response = await self.api.exchange_assertion(assertion)
            except CoreasonFirebaseError as e:
                logger.error(f"Custom token issuance failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.reason))
                raise

            span.set_status(Status(StatusCode.OK))
            return response
