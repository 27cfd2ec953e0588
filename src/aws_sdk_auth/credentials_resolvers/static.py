#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from .._identity import AWSCredentialIdentity
from ..exceptions import CredentialsNotConfiguredError, CredentialsProviderError
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver


class StaticCredentialsResolver(CredentialsResolver):
    """Resolve static AWS Credentials.

    Credentials passed to the constructor win; otherwise the ``access_key_id``,
    ``secret_access_key`` and ``session_token`` identity properties are used.
    """

    def __init__(self, *, credentials: AWSCredentialIdentity | None = None) -> None:
        self._credentials = credentials

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        if self._credentials is not None:
            return self._credentials

        access_key_id = properties.get("access_key_id")
        secret_access_key = properties.get("secret_access_key")
        if not access_key_id and not secret_access_key:
            raise CredentialsNotConfiguredError(
                "No static credentials were provided."
            )
        if not access_key_id or not secret_access_key:
            raise CredentialsProviderError(
                "Static credentials require both access_key_id and secret_access_key."
            )
        return AWSCredentialIdentity(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=properties.get("session_token"),
        )
