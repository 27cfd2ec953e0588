#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Final, TypeVar

from ._identity import AWSCredentialIdentity
from .exceptions import CredentialsProviderError, ExpiredOrRejectedCredentialsError
from .interfaces.identity import AWSIdentityProperties, CredentialsResolver

if TYPE_CHECKING:
    from .config import AuthConfig

logger: Final = logging.getLogger(__name__)

DEFAULT_SAFETY_WINDOW: Final = timedelta(minutes=5)

T = TypeVar("T")


class CredentialsCache(CredentialsResolver):
    """Caches the credentials of a resolver until shortly before they expire.

    Credentials are refreshed once ``now`` is within ``safety_window`` of their
    expiration. Concurrent callers that need a refresh share a single call to the
    wrapped resolver and all receive its result or its exception.
    """

    def __init__(
        self,
        resolver: CredentialsResolver,
        *,
        safety_window: timedelta = DEFAULT_SAFETY_WINDOW,
    ) -> None:
        if safety_window < timedelta(0):
            raise ValueError("safety_window must not be negative")
        self._resolver = resolver
        self._safety_window = safety_window
        self._cached: AWSCredentialIdentity | None = None
        self._refresh_task: asyncio.Task[AWSCredentialIdentity] | None = None
        # Bumped by invalidate() so an in-flight refresh doesn't repopulate the cache
        self._generation = 0

    @classmethod
    def from_config(
        cls, resolver: CredentialsResolver, config: AuthConfig
    ) -> CredentialsCache:
        """Create a cache using the safety window of a resolved config."""
        return cls(resolver, safety_window=config.credentials_safety_window)

    @property
    def cached(self) -> AWSCredentialIdentity | None:
        return self._cached

    def _is_fresh(self, credentials: AWSCredentialIdentity) -> bool:
        if credentials.expiration is None:
            return True
        return datetime.now(UTC) < credentials.expiration - self._safety_window

    async def get_identity(
        self, *, properties: AWSIdentityProperties | None = None
    ) -> AWSCredentialIdentity:
        """Return the cached credentials, refreshing them if needed.

        A refresh that is already in flight is joined rather than restarted, so
        callers that arrive during it share the result produced with the
        ``properties`` of the caller that started it.
        """
        cached = self._cached
        if cached is not None and self._is_fresh(cached):
            return cached

        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(
                self._refresh(properties or {}, self._generation)
            )
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task
        # Cancelling one waiter must not cancel the refresh shared by the others.
        return await asyncio.shield(task)

    async def _refresh(
        self, properties: AWSIdentityProperties, generation: int
    ) -> AWSCredentialIdentity:
        logger.debug("Refreshing credentials from %s.", type(self._resolver).__name__)
        credentials = await self._resolver.get_identity(properties=properties)
        expiration = credentials.expiration
        if expiration is not None and expiration <= datetime.now(UTC):
            raise CredentialsProviderError(
                f"Refreshed credentials already expired at {expiration}."
            )
        if not self._is_fresh(credentials):
            logger.debug(
                "Refreshed credentials expire at %s, inside the safety window.",
                credentials.expiration,
            )
        if generation == self._generation:
            self._cached = credentials
        return credentials

    def _on_refresh_done(self, task: asyncio.Task[AWSCredentialIdentity]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the exception as retrieved; every waiter re-raises it.
            task.exception()

    def invalidate(self) -> None:
        """Drop the cached credentials so the next call refreshes them."""
        logger.debug("Invalidating cached credentials.")
        self._generation += 1
        self._cached = None
        self._refresh_task = None


async def invoke_with_refresh(
    cache: CredentialsCache,
    call: Callable[[AWSCredentialIdentity], Awaitable[T]],
    *,
    properties: AWSIdentityProperties | None = None,
) -> T:
    """Run ``call`` with cached credentials, retrying once with fresh ones if they
    are rejected.

    :param cache: The cache to take credentials from.
    :param call: The operation to run, typically a signed request. It signals a
        signature or credential rejection by raising
        :py:class:`~aws_sdk_auth.exceptions.ExpiredOrRejectedCredentialsError`.
    :raises ExpiredOrRejectedCredentialsError: If the refreshed credentials are
        rejected as well.
    """
    credentials = await cache.get_identity(properties=properties)
    try:
        return await call(credentials)
    except ExpiredOrRejectedCredentialsError as e:
        logger.debug("Credentials were rejected, refreshing and retrying once: %s", e)
        cache.invalidate()

    credentials = await cache.get_identity(properties=properties)
    return await call(credentials)
