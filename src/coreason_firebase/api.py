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
Identity provider API: the two outbound calls (token exchange, public-key fetch).
"""

import time
from typing import Protocol

import anyio
import httpx
from pydantic import ValidationError

from coreason_firebase.config import OAUTH_TOKEN_URL, PUBLIC_KEYS_URL
from coreason_firebase.exceptions import (
    OversizedResponseError,
    PublicKeyFetchError,
    TokenExchangeError,
)
from coreason_firebase.models import PublicKeySet, TokenResponse
from coreason_firebase.transport import parse_max_age, safe_json_fetch
from coreason_firebase.utils.logger import logger

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


def _is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


class AuthAPIProtocol(Protocol):
    """Protocol for the identity provider endpoints used by the caches."""

    async def exchange_assertion(self, assertion: str) -> TokenResponse:
        """Exchanges a signed assertion for an access token."""
        ...

    async def fetch_public_keys(self) -> PublicKeySet:
        """Fetches the current public signing keys and their expiry."""
        ...


class HTTPAuthAPI:
    """
    Talks to the real provider over HTTPS.

    Attributes:
        token_url (str): The OAuth2 token-exchange endpoint.
        public_keys_url (str): The public-key endpoint.
        default_keys_ttl (int): Key-set lifetime used when the response has no max-age.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_url: str = OAUTH_TOKEN_URL,
        public_keys_url: str = PUBLIC_KEYS_URL,
        default_keys_ttl: int = 3600,
        max_attempts: int = 3,
    ) -> None:
        """
        Initialize the HTTPAuthAPI.

        Args:
            client: The async HTTP client. Its timeout bounds every request.
            token_url: The OAuth2 token-exchange endpoint.
            public_keys_url: The public-key endpoint.
            default_keys_ttl: Fallback key-set lifetime in seconds. Defaults to 3600.
            max_attempts: Attempts for the public-key GET. Defaults to 3.
        """
        self.client = client
        self.token_url = token_url
        self.public_keys_url = public_keys_url
        self.default_keys_ttl = default_keys_ttl
        self.max_attempts = max_attempts

    async def exchange_assertion(self, assertion: str) -> TokenResponse:
        """
        POSTs the assertion to the token endpoint.

        Not retried: the caller decides based on ``TokenExchangeError.retryable``.

        Raises:
            TokenExchangeError: On timeouts, transport errors, non-2xx responses or malformed bodies.
        """
        try:
            response = await safe_json_fetch(
                self.client,
                self.token_url,
                method="POST",
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Token exchange timed out: {self.token_url}")
            raise TokenExchangeError(f"Token exchange with {self.token_url} timed out", retryable=True) from e
        except httpx.HTTPError as e:
            logger.warning(f"Token exchange transport error: {e}")
            raise TokenExchangeError(f"Token exchange with {self.token_url} failed: {e}", retryable=True) from e
        except OversizedResponseError as e:
            raise TokenExchangeError(str(e)) from e

        if not 200 <= response.status_code < 300:
            detail = ""
            if isinstance(response.data, dict):
                error = response.data.get("error")
                description = response.data.get("error_description")
                detail = ": ".join(str(part) for part in (error, description) if part)
            logger.error(f"Token exchange rejected with status {response.status_code} {detail}")
            raise TokenExchangeError(
                f"Token exchange rejected with status {response.status_code}" + (f" ({detail})" if detail else ""),
                status_code=response.status_code,
                retryable=_is_retryable_status(response.status_code),
            )

        if not isinstance(response.data, dict):
            raise TokenExchangeError("Token endpoint returned a non-JSON body", status_code=response.status_code)

        try:
            return TokenResponse(**response.data)
        except ValidationError as e:
            # Pydantic's message would echo the input, which holds the token
            raise TokenExchangeError(
                f"Token endpoint returned an invalid token response ({e.error_count()} errors)",
                status_code=response.status_code,
            ) from None

    async def fetch_public_keys(self) -> PublicKeySet:
        """
        GETs the public keys, retrying transient failures with exponential backoff (initial=0.1s, max=1.0s).

        The set expires after the response's Cache-Control max-age, or ``default_keys_ttl`` without one.

        Raises:
            PublicKeyFetchError: If every attempt fails or the body is not a kid -> PEM mapping.
        """
        wait_initial = 0.1
        wait_max = 1.0

        for attempt in range(self.max_attempts):
            last_attempt = attempt == self.max_attempts - 1
            try:
                fetched_at = time.time()
                response = await safe_json_fetch(self.client, self.public_keys_url)
            except OversizedResponseError as e:
                raise PublicKeyFetchError(str(e)) from e
            except httpx.HTTPError as e:
                if last_attempt:
                    raise PublicKeyFetchError(
                        f"Failed to fetch public keys from {self.public_keys_url}: {e}", retryable=True
                    ) from e
                logger.debug(f"Public key fetch attempt {attempt + 1} failed: {e}")
            else:
                if 200 <= response.status_code < 300:
                    return self._parse_key_set(response.data, response.headers, fetched_at)

                retryable = _is_retryable_status(response.status_code)
                if last_attempt or not retryable:
                    raise PublicKeyFetchError(
                        f"Public key endpoint returned status {response.status_code}",
                        status_code=response.status_code,
                        retryable=retryable,
                    )
                logger.debug(f"Public key fetch attempt {attempt + 1} returned {response.status_code}")

            await anyio.sleep(min(wait_initial * (2**attempt), wait_max))

        raise PublicKeyFetchError(f"Failed to fetch public keys from {self.public_keys_url}")  # pragma: no cover

    def _parse_key_set(self, data: object, headers: httpx.Headers, fetched_at: float) -> PublicKeySet:
        if not isinstance(data, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in data.items()
        ):
            raise PublicKeyFetchError("Public key endpoint returned an invalid key mapping")

        max_age = parse_max_age(headers.get("Cache-Control"))
        ttl = self.default_keys_ttl if max_age is None else max_age
        logger.info(f"Fetched {len(data)} public keys, valid for {ttl}s")
        return PublicKeySet(keys=data, expires_at=fetched_at + ttl)


class MemoryAuthAPI:
    """
    In-process implementation of AuthAPIProtocol.
    Issues opaque tokens and serves a fixed key set. Not for production use.

    Attributes:
        keys (dict[str, str]): The key set returned by fetch_public_keys.
        exchange_calls (int): Number of exchange_assertion calls.
        fetch_calls (int): Number of fetch_public_keys calls.
        assertions (list[str]): Every assertion received, in order.
    """

    def __init__(self, keys: dict[str, str] | None = None, expires_in: int = 3600, keys_ttl: int = 3600) -> None:
        self.keys = dict(keys or {})
        self.expires_in = expires_in
        self.keys_ttl = keys_ttl
        self.exchange_calls = 0
        self.fetch_calls = 0
        self.assertions: list[str] = []

    async def exchange_assertion(self, assertion: str) -> TokenResponse:
        self.exchange_calls += 1
        self.assertions.append(assertion)
        return TokenResponse(
            access_token=f"memory-token-{self.exchange_calls}",
            expires_in=self.expires_in,
            token_type="Bearer",
        )

    async def fetch_public_keys(self) -> PublicKeySet:
        self.fetch_calls += 1
        return PublicKeySet(keys=dict(self.keys), expires_at=time.time() + self.keys_ttl)
