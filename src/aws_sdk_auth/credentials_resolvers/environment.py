#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import os
from collections.abc import Mapping

from .._identity import AWSCredentialIdentity
from ..exceptions import CredentialsNotConfiguredError, CredentialsProviderError
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver

_ACCESS_KEY_VARS = ("AWS_ACCESS_KEY_ID", "AWS_ACCESS_KEY")
_SECRET_KEY_VARS = ("AWS_SECRET_ACCESS_KEY", "AWS_SECRET_KEY")


def _first_set(environ: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        if value := environ.get(name):
            return value
    return None


class EnvironmentCredentialsResolver(CredentialsResolver):
    """Resolves AWS Credentials from system environment variables.

    The environment is read on every call so rotated values are picked up.
    """

    def __init__(self, *, environ: Mapping[str, str] | None = None):
        self._environ = environ

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        environ = os.environ if self._environ is None else self._environ
        access_key_id = _first_set(environ, _ACCESS_KEY_VARS)
        secret_access_key = _first_set(environ, _SECRET_KEY_VARS)

        if access_key_id is None and secret_access_key is None:
            raise CredentialsNotConfiguredError(
                "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY are not set."
            )
        if access_key_id is None or secret_access_key is None:
            raise CredentialsProviderError(
                "AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY must both be set."
            )

        return AWSCredentialIdentity(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=environ.get("AWS_SESSION_TOKEN") or None,
            account_id=environ.get("AWS_ACCOUNT_ID") or None,
        )
