#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final

from .._identity import AWSCredentialIdentity
from ..aiohttp import AIOHTTPClient
from ..exceptions import (
    CredentialsError,
    CredentialsNotConfiguredError,
    CredentialsNotFoundError,
    CredentialsProviderError,
    ProfileError,
    ResolverAttempt,
)
from ..interfaces.http import HTTPClient
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver
from ..profiles.store import CredentialProfileStore
from .container import ContainerCredentialsResolver
from .environment import EnvironmentCredentialsResolver
from .imds import IMDSConfig, IMDSCredentialsResolver
from .profile import ProfileCredentialsResolver
from .static import StaticCredentialsResolver

if TYPE_CHECKING:
    from ..config import AuthConfig

logger: Final = logging.getLogger(__name__)

DEFAULT_ATTEMPT_TIMEOUT: Final = 5.0


def _source_name(resolver: CredentialsResolver) -> str:
    return type(resolver).__name__


class CredentialsResolverChain(CredentialsResolver):
    """Attempts to resolve credentials by checking a sequence of resolvers in order.

    The first resolver that returns credentials wins and later resolvers are never
    invoked. A resolver raising
    :py:class:`~aws_sdk_auth.exceptions.CredentialsNotConfiguredError` is recorded
    as not configured; any other credentials or profile error, or running out of
    time, is recorded as a failure. Either way the next resolver is tried. When
    every resolver is exhausted a
    :py:class:`~aws_sdk_auth.exceptions.CredentialsNotFoundError` listing every
    attempt is raised.
    """

    def __init__(
        self,
        resolvers: Sequence[CredentialsResolver],
        *,
        attempt_timeout: float | None = DEFAULT_ATTEMPT_TIMEOUT,
    ) -> None:
        """Construct a CredentialsResolverChain.

        :param resolvers: The sequence of resolvers to resolve credentials from.
        :param attempt_timeout: Seconds each resolver may take, or ``None`` for no
            limit.
        """
        self._resolvers = tuple(resolvers)
        self._attempt_timeout = attempt_timeout

    @property
    def resolvers(self) -> tuple[CredentialsResolver, ...]:
        return self._resolvers

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        logger.debug("Attempting to resolve credentials from resolver chain.")
        attempts: list[ResolverAttempt] = []
        for resolver in self._resolvers:
            source = _source_name(resolver)
            logger.debug("Attempting to resolve credentials from %s.", source)
            try:
                credentials = await asyncio.wait_for(
                    resolver.get_identity(properties=properties),
                    timeout=self._attempt_timeout,
                )
                self._check_unexpired(credentials, source)
            except CredentialsNotConfiguredError as e:
                logger.debug("%s is not configured: %s", source, e)
                attempts.append(ResolverAttempt(source, False, str(e)))
            except (CredentialsError, ProfileError) as e:
                logger.debug("Failed to resolve credentials from %s: %s", source, e)
                attempts.append(ResolverAttempt(source, True, str(e)))
            except TimeoutError:
                reason = f"timed out after {self._attempt_timeout} seconds"
                logger.debug(
                    "Failed to resolve credentials from %s: %s", source, reason
                )
                attempts.append(ResolverAttempt(source, True, reason))
            else:
                logger.debug("Resolved credentials from %s.", source)
                return credentials

        raise CredentialsNotFoundError(attempts)

    def _check_unexpired(
        self, credentials: AWSCredentialIdentity, source: str
    ) -> None:
        expiration = credentials.expiration
        if expiration is not None and expiration <= datetime.now(UTC):
            raise CredentialsProviderError(
                f"{source} returned credentials that expired at {expiration}."
            )


def create_default_chain(
    config: AuthConfig,
    *,
    store: CredentialProfileStore | None = None,
    http_client: HTTPClient | None = None,
    credentials: AWSCredentialIdentity | None = None,
    environ: Mapping[str, str] | None = None,
) -> CredentialsResolverChain:
    """Build the standard resolver chain.

    The order is: explicit static credentials, environment variables, the
    configured shared profile, the container credentials endpoint and the instance
    metadata service.

    :param config: A resolved :py:class:`~aws_sdk_auth.config.AuthConfig`.
    :param store: The profile store to read profiles from. Defaults to the shared
        files named in ``config``.
    :param http_client: Client for the network-bound resolvers. Defaults to an
        :py:class:`~aws_sdk_auth.aiohttp.AIOHTTPClient`.
    :param credentials: Explicit credentials that take precedence over everything.
    """
    http_client = http_client or AIOHTTPClient()
    if store is None:
        store = CredentialProfileStore.from_shared_files(config)
    resolvers: list[CredentialsResolver] = [
        StaticCredentialsResolver(credentials=credentials),
        EnvironmentCredentialsResolver(environ=environ),
        ProfileCredentialsResolver(
            store,
            profile_name=config.profile,
            http_client=http_client,
            region=config.region,
            max_chain_depth=config.max_role_chain_depth,
            environ=environ,
        ),
        ContainerCredentialsResolver(http_client, environ=environ),
        IMDSCredentialsResolver(
            http_client, IMDSConfig.from_auth_config(config), environ=environ
        ),
    ]
    return CredentialsResolverChain(resolvers, attempt_timeout=config.attempt_timeout)
