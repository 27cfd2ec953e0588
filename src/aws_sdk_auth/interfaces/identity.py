#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol, TypedDict, runtime_checkable

from ..utils import ensure_utc

if TYPE_CHECKING:
    from .._identity import AWSCredentialIdentity


@runtime_checkable
class Identity(Protocol):
    """An entity available to the client representing who the user is."""

    expiration: datetime | None = None
    """The expiration time of the identity.

    If time zone is provided, it is updated to UTC. The value must always be in UTC.
    """

    def __post_init__(self) -> None:
        if self.expiration is not None:
            self.expiration = ensure_utc(self.expiration)

    @property
    def is_expired(self) -> bool:
        """Whether the identity is expired."""
        if self.expiration is None:
            return False
        return datetime.now(tz=UTC) >= self.expiration


@runtime_checkable
class AWSCredentialsIdentity(Identity, Protocol):
    """AWS Credentials Identity."""

    access_key_id: str
    """A unique identifier for an AWS user or role."""

    secret_access_key: str
    """A secret key used in conjunction with the access key ID to authenticate
    programmatic access to AWS services."""

    session_token: str | None = None
    """A temporary token used to specify the current session for the supplied
    credentials."""


class AWSIdentityProperties(TypedDict, total=False):
    access_key_id: str | None
    secret_access_key: str | None
    session_token: str | None


class CredentialsResolver(Protocol):
    """Used to load AWS credentials from a given source.

    Resolvers raise :py:class:`~aws_sdk_auth.exceptions.CredentialsNotConfiguredError`
    when their source doesn't apply to the current environment and
    :py:class:`~aws_sdk_auth.exceptions.CredentialsProviderError` when the source is
    configured but can't produce credentials.
    """

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        """Load credentials from this resolver.

        :param properties: Properties used to help determine the identity to return.
        """
        ...
