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
FirebaseAuth facades wiring the caches, the verifier and the provider API together.
"""

from contextlib import ExitStack
from typing import Any

import httpx
from anyio.from_thread import BlockingPortal, start_blocking_portal
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_firebase.api import AuthAPIProtocol, HTTPAuthAPI, MemoryAuthAPI
from coreason_firebase.assertion import AssertionBuilder
from coreason_firebase.certificate import CertificateSource, certificate_source_from_config
from coreason_firebase.config import FirebaseAuthConfig
from coreason_firebase.exceptions import CoreasonFirebaseError
from coreason_firebase.key_cache import KeyCache
from coreason_firebase.models import AccessToken, TokenResponse
from coreason_firebase.token_cache import TokenCache
from coreason_firebase.verifier import TokenVerifier


class FirebaseAuthAsync:
    """
    Async implementation of FirebaseAuth (The Core).
    Handles resources via async context manager.

    Each instance owns its own token and key caches; create one per application
    and share it, rather than relying on process-wide state.
    """

    def __init__(
        self,
        config: FirebaseAuthConfig,
        client: httpx.AsyncClient | None = None,
        certificate_source: CertificateSource | None = None,
        api: AuthAPIProtocol | None = None,
    ) -> None:
        """
        Initialize the FirebaseAuthAsync.

        Args:
            config: The configuration object.
            client: External async client (optional). If not provided, one is created with `config.http_timeout`.
            certificate_source: Supplier of the service-account certificate. Defaults to the one described by config.
            api: Provider API override. Defaults to HTTPAuthAPI, or MemoryAuthAPI when `config.api_mode == "memory"`.
        """
        self.config = config
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.http_timeout)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        if api is None:
            if self.config.api_mode == "memory":
                api = MemoryAuthAPI(keys_ttl=self.config.public_keys_default_ttl)
            else:
                api = HTTPAuthAPI(
                    self._client,
                    token_url=self.config.token_url,
                    public_keys_url=self.config.public_keys_url,
                    default_keys_ttl=self.config.public_keys_default_ttl,
                )
        self.api = api

        # Pydantic validator guarantees audience/issuer are populated, but we assert for MyPy
        if self.config.audience is None or self.config.issuer is None:
            raise CoreasonFirebaseError("Audience and issuer configuration are missing")

        self.token_cache = TokenCache(
            api=self.api,
            certificate_source=certificate_source or certificate_source_from_config(self.config),
            builder=AssertionBuilder(audience=self.config.token_url, scopes=self.config.scopes),
            lifetime_seconds=self.config.assertion_lifetime,
            refresh_margin=self.config.token_refresh_margin,
        )
        self.key_cache = KeyCache(self.api, refresh_cooldown=self.config.public_keys_refresh_cooldown)
        self.verifier = TokenVerifier(
            key_cache=self.key_cache,
            audience=self.config.audience,
            issuer=self.config.issuer,
            pii_salt=self.config.pii_salt,
            leeway=self.config.clock_skew_leeway,
        )

    async def __aenter__(self) -> "FirebaseAuthAsync":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def issue_access_token(self) -> AccessToken:
        """
        Returns a cached service access token, refreshing it when near expiry.

        Raises:
            InvalidCertificateError: If no usable certificate is configured.
            TokenExchangeError: If the provider exchange fails.
        """
        return await self.token_cache.get_access_token()

    async def issue_custom_token(self, user_id: str) -> TokenResponse:
        """
        Signs and exchanges a token bound to ``user_id``. Never cached.

        Raises:
            ValueError: If user_id is empty or too long.
            InvalidCertificateError: If no usable certificate is configured.
            TokenExchangeError: If the provider exchange fails.
        """
        return await self.token_cache.get_custom_token(user_id)

    async def verify_identity_token(self, token: str) -> dict[str, Any]:
        """
        Verifies an ID token and returns its claims.

        Raises:
            InvalidTokenError: Or one of its subclasses, if verification fails.
            PublicKeyFetchError: If the public keys cannot be fetched.
        """
        return await self.verifier.verify(token)

    async def get_public_keys(self) -> dict[str, str]:
        """Returns the cached public keys (key id -> PEM), refreshing them if stale."""
        return await self.key_cache.get_all_keys()

    async def get_public_key(self, key_id: str) -> str:
        """
        Returns one cached public key by id.

        Raises:
            UnknownKeyIdError: If the key id is unknown after a refresh.
        """
        return await self.key_cache.get_key(key_id)


class FirebaseAuth:
    """
    Synchronous facade over FirebaseAuthAsync.

    Calls run on a single background event loop (an anyio blocking portal) so the
    caches, their locks and the HTTP client are shared across calls.
    """

    def __init__(
        self,
        config: FirebaseAuthConfig,
        certificate_source: CertificateSource | None = None,
        api: AuthAPIProtocol | None = None,
    ) -> None:
        self._closed = False
        self._exit_stack = ExitStack()
        self._portal: BlockingPortal = self._exit_stack.enter_context(start_blocking_portal())
        try:
            self._async = self._portal.call(self._create_async, config, certificate_source, api)
        except BaseException:
            self._exit_stack.close()
            raise

    @staticmethod
    async def _create_async(
        config: FirebaseAuthConfig,
        certificate_source: CertificateSource | None,
        api: AuthAPIProtocol | None,
    ) -> FirebaseAuthAsync:
        # The client must be created inside the portal's event loop
        return FirebaseAuthAsync(config, certificate_source=certificate_source, api=api)

    def __enter__(self) -> "FirebaseAuth":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._portal.call(self._async.__aexit__, None, None, None)
        finally:
            self._exit_stack.close()

    def issue_access_token(self) -> AccessToken:
        return self._portal.call(self._async.issue_access_token)

    def issue_custom_token(self, user_id: str) -> TokenResponse:
        return self._portal.call(self._async.issue_custom_token, user_id)

    def verify_identity_token(self, token: str) -> dict[str, Any]:
        return self._portal.call(self._async.verify_identity_token, token)

    def get_public_keys(self) -> dict[str, str]:
        return self._portal.call(self._async.get_public_keys)

    def get_public_key(self, key_id: str) -> str:
        return self._portal.call(self._async.get_public_key, key_id)
