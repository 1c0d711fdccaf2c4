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
KeyCache component for fetching and caching the provider's public signing keys.
"""

import time

import anyio
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from coreason_firebase.api import AuthAPIProtocol
from coreason_firebase.exceptions import PublicKeyFetchError, UnknownKeyIdError
from coreason_firebase.models import PublicKeySet
from coreason_firebase.utils.logger import logger

tracer = trace.get_tracer(__name__)


class KeyCache:
    """
    Caches the provider's public keys until the expiry the provider advertised.

    Attributes:
        api (AuthAPIProtocol): The provider API used to fetch keys.
        refresh_cooldown (float): Minimum seconds between refreshes triggered by unknown key ids.
    """

    def __init__(self, api: AuthAPIProtocol, refresh_cooldown: float = 30.0) -> None:
        """
        Initialize the KeyCache.

        Args:
            api: The provider API used to fetch keys.
            refresh_cooldown: While the cached set is still valid, an unknown key id
                only triggers a refetch if the last refresh is older than this. Defaults to 30.0.
        """
        self.api = api
        self.refresh_cooldown = refresh_cooldown
        self._key_set: PublicKeySet | None = None
        self._last_refresh: float = 0.0
        self._lock: anyio.Lock | None = None

    def _valid_set(self) -> PublicKeySet | None:
        key_set = self._key_set
        if key_set is not None and not key_set.is_expired(time.time()):
            return key_set
        return None

    def _get_lock(self) -> anyio.Lock:
        if self._lock is None:
            self._lock = anyio.Lock()
        return self._lock

    async def _refresh_critical_section(self) -> PublicKeySet:
        """
        Fetches and installs a new key set.
        Must be called while holding the lock. On failure the current set is kept.
        """
        with tracer.start_as_current_span(
            "refresh_public_keys", record_exception=False, set_status_on_exception=False
        ) as span:
            try:
                key_set = await self.api.fetch_public_keys()
            except PublicKeyFetchError as e:
                logger.error(f"Public key refresh failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, e.reason))
                raise

            self._key_set = key_set
            self._last_refresh = time.time()
            span.set_attribute("keys.count", len(key_set.keys))
            span.set_status(Status(StatusCode.OK))
            return key_set

    async def get_key(self, key_id: str) -> str:
        """
        Returns the PEM public key (or certificate) for ``key_id``.

        A stale set, or a valid set missing ``key_id``, triggers at most one refresh.

        Raises:
            UnknownKeyIdError: If the key id is absent after the refresh (or the refresh is in cooldown).
            PublicKeyFetchError: If the refresh fails.
        """
        # Double-checked locking (Check 1: no lock)
        key_set = self._valid_set()
        if key_set is not None and key_id in key_set.keys:
            return key_set.keys[key_id]

        async with self._get_lock():
            # Check 2: another caller may have refreshed while we waited
            key_set = self._valid_set()
            if key_set is not None:
                if key_id in key_set.keys:
                    return key_set.keys[key_id]

                # DoS protection: a valid set that was just refreshed is not refetched for unknown ids
                if time.time() - self._last_refresh < self.refresh_cooldown:
                    logger.warning(f"Unknown key id '{key_id}' and key refresh cooldown active")
                    raise UnknownKeyIdError(key_id)

            key_set = await self._refresh_critical_section()

        pem = key_set.get(key_id)
        if pem is None:
            logger.warning(f"Unknown key id '{key_id}' after refreshing public keys")
            raise UnknownKeyIdError(key_id)
        return pem

    async def get_all_keys(self) -> dict[str, str]:
        """
        Returns a copy of the current key id -> PEM mapping, refreshing first if stale.

        Raises:
            PublicKeyFetchError: If a needed refresh fails.
        """
        key_set = self._valid_set()
        if key_set is None:
            async with self._get_lock():
                key_set = self._valid_set()
                if key_set is None:
                    key_set = await self._refresh_critical_section()
        return dict(key_set.keys)

    async def refresh(self) -> dict[str, str]:
        """
        Forces a refresh unless one completed within ``refresh_cooldown``.

        Returns:
            dict[str, str]: The (possibly refreshed) key mapping.
        """
        async with self._get_lock():
            key_set = self._key_set
            if key_set is not None and time.time() - self._last_refresh < self.refresh_cooldown:
                logger.warning("Public key refresh cooldown active. Returning cached keys.")
                return dict(key_set.keys)
            key_set = await self._refresh_critical_section()
        return dict(key_set.keys)
