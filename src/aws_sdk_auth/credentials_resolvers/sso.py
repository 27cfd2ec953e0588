#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final
from urllib.parse import urlencode

from .._http import URI, AWSRequest, Field, Fields
from .._identity import AWSCredentialIdentity
from ..exceptions import CredentialsProviderError, HTTPTransportError
from ..interfaces.http import HTTPClient
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver
from ..utils import epoch_millis_to_datetime, parse_timestamp
from ._documents import load_json_document

logger: Final = logging.getLogger(__name__)

DEFAULT_SSO_CACHE_DIR: Final = Path("~/.aws/sso/cache")
_GET_ROLE_CREDENTIALS_PATH = "/federation/credentials"
_BEARER_TOKEN_HEADER = "x-amz-sso_bearer_token"  # noqa: S105


@dataclass(frozen=True, kw_only=True)
class SSOParameters:
    """Identifies the IAM Identity Center account and role to get credentials for."""

    start_url: str
    region: str
    account_id: str
    role_name: str
    session_name: str | None = None
    """Name of the ``sso-session`` the cached token belongs to, if any."""

    @property
    def cache_key(self) -> str:
        return hashlib.sha1(  # noqa: S324
            (self.session_name or self.start_url).encode("utf-8")
        ).hexdigest()


class SSOCredentialsResolver(CredentialsResolver):
    """Resolves AWS Credentials from a cached IAM Identity Center (SSO) login.

    The access token written by ``aws sso login`` is exchanged for role credentials
    through the portal ``GetRoleCredentials`` API. Refreshing the login itself is left
    to the CLI.
    """

    def __init__(
        self,
        http_client: HTTPClient,
        parameters: SSOParameters,
        *,
        cache_dir: str | Path | None = None,
        timeout: float = 5,
    ):
        self._http_client = http_client
        self._parameters = parameters
        self._cache_dir = Path(cache_dir or DEFAULT_SSO_CACHE_DIR).expanduser()
        self._timeout = timeout

    @property
    def token_path(self) -> Path:
        return self._cache_dir / f"{self._parameters.cache_key}.json"

    async def _load_access_token(self) -> str:
        path = self.token_path
        try:
            raw = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise CredentialsProviderError(
                f"No cached SSO token found at {path}. Run 'aws sso login' first."
            ) from e

        token = load_json_document(raw, source="the SSO token cache")
        access_token = token.get("accessToken")
        expires_at = token.get("expiresAt")
        if not access_token or not expires_at:
            raise CredentialsProviderError(
                f"The cached SSO token at {path} is missing accessToken or expiresAt."
            )
        try:
            expiration = parse_timestamp(expires_at)
        except (TypeError, ValueError) as e:
            raise CredentialsProviderError(
                f"Invalid expiresAt {expires_at!r} in the cached SSO token."
            ) from e
        if expiration <= datetime.now(UTC):
            raise CredentialsProviderError(
                "The cached SSO token has expired. Run 'aws sso login' to refresh it."
            )
        return access_token

    def _build_request(self, access_token: str) -> AWSRequest:
        query = urlencode(
            {
                "role_name": self._parameters.role_name,
                "account_id": self._parameters.account_id,
            }
        )
        return AWSRequest(
            method="GET",
            destination=URI(
                host=f"portal.sso.{self._parameters.region}.amazonaws.com",
                path=_GET_ROLE_CREDENTIALS_PATH,
                query=query,
            ),
            fields=Fields(
                [
                    Field(name=_BEARER_TOKEN_HEADER, values=[access_token]),
                    Field(name="Accept", values=["application/json"]),
                ]
            ),
        )

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        access_token = await self._load_access_token()
        request = self._build_request(access_token)
        logger.debug(
            "Requesting SSO role credentials for %s in account %s",
            self._parameters.role_name,
            self._parameters.account_id,
        )
        try:
            response = await self._http_client.send(request, timeout=self._timeout)
        except (HTTPTransportError, TimeoutError) as e:
            raise CredentialsProviderError("Unable to reach the SSO portal.") from e

        body = await response.consume_body_async()
        if response.status != 200:
            raise CredentialsProviderError(
                f"GetRoleCredentials failed with status {response.status}: "
                f"{body.decode('utf-8', errors='replace')}"
            )
        document = load_json_document(body, source="GetRoleCredentials")
        return self._parse_role_credentials(document)

    def _parse_role_credentials(
        self, document: dict[str, Any]
    ) -> AWSCredentialIdentity:
        creds = document.get("roleCredentials")
        if not isinstance(creds, dict):
            raise CredentialsProviderError(
                "GetRoleCredentials response is missing roleCredentials."
            )
        access_key_id = creds.get("accessKeyId")
        secret_access_key = creds.get("secretAccessKey")
        if not access_key_id or not secret_access_key:
            raise CredentialsProviderError(
                "accessKeyId and secretAccessKey are required for SSO credentials"
            )
        expiration = creds.get("expiration")
        try:
            expires = (
                epoch_millis_to_datetime(expiration) if expiration is not None else None
            )
        except (TypeError, ValueError, OverflowError) as e:
            raise CredentialsProviderError(
                f"Invalid expiration {expiration!r} in the SSO role credentials."
            ) from e
        return AWSCredentialIdentity(
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            session_token=creds.get("sessionToken"),
            expiration=expires,
            account_id=self._parameters.account_id,
        )
