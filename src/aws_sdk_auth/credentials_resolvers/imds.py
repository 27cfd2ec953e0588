#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import TYPE_CHECKING, Final, Literal
from urllib.parse import urlparse

from .. import __version__
from .._http import URI, AWSRequest, Field, Fields
from .._identity import AWSCredentialIdentity
from ..exceptions import (
    CredentialsNotConfiguredError,
    CredentialsProviderError,
    HTTPTransportError,
)
from ..interfaces.http import HTTPClient
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver
from ..utils import strict_parse_bool
from ._documents import credentials_from_document, load_json_document

if TYPE_CHECKING:
    from ..config import AuthConfig

logger: Final = logging.getLogger(__name__)

_USER_AGENT_FIELD = Field(
    name="User-Agent",
    values=[f"aws-sdk-auth-imds-client/{__version__}"],
)

# Token request statuses that mean IMDSv2 isn't available and the token-less
# flow should be used instead.
_LEGACY_FALLBACK_STATUSES = frozenset({403, 404, 405})


@dataclass(init=False)
class IMDSConfig:
    """Configuration for EC2Metadata."""

    _HOST_MAPPING = MappingProxyType(
        {"IPv4": "169.254.169.254", "IPv6": "[fd00:ec2::254]"}
    )
    _MIN_TTL = 5
    _MAX_TTL = 21600

    endpoint_uri: URI
    endpoint_mode: Literal["IPv4", "IPv6"]
    token_ttl: int
    timeout: float
    disabled: bool
    ec2_instance_profile_name: str | None

    def __init__(
        self,
        *,
        endpoint_uri: URI | None = None,
        endpoint_mode: Literal["IPv4", "IPv6"] = "IPv4",
        token_ttl: int = _MAX_TTL,
        timeout: float = 1,
        disabled: bool = False,
        ec2_instance_profile_name: str | None = None,
    ):
        self.endpoint_mode = endpoint_mode
        self.endpoint_uri = self._resolve_endpoint(endpoint_uri, endpoint_mode)
        self.token_ttl = self._validate_token_ttl(token_ttl)
        self.timeout = timeout
        self.disabled = disabled
        self.ec2_instance_profile_name = ec2_instance_profile_name

    @classmethod
    def from_auth_config(cls, config: AuthConfig) -> IMDSConfig:
        endpoint_uri = None
        if config.ec2_metadata_endpoint:
            parsed = urlparse(config.ec2_metadata_endpoint)
            if not parsed.hostname:
                raise ValueError(
                    f"Invalid EC2 metadata endpoint: {config.ec2_metadata_endpoint}"
                )
            host = parsed.hostname
            if ":" in host:
                host = f"[{host}]"
            endpoint_uri = URI(
                scheme=parsed.scheme or "http", host=host, port=parsed.port
            )
        return cls(
            endpoint_uri=endpoint_uri,
            endpoint_mode=config.ec2_metadata_endpoint_mode,
            disabled=config.ec2_metadata_disabled,
        )

    def _validate_token_ttl(self, ttl: int) -> int:
        if not self._MIN_TTL <= ttl <= self._MAX_TTL:
            raise ValueError(
                f"Token TTL must be between {self._MIN_TTL} and {self._MAX_TTL} "
                "seconds."
            )
        return ttl

    def _resolve_endpoint(
        self, endpoint_uri: URI | None, endpoint_mode: Literal["IPv4", "IPv6"]
    ) -> URI:
        if endpoint_uri is not None:
            return endpoint_uri

        return URI(
            scheme="http",
            host=self._HOST_MAPPING.get(endpoint_mode, self._HOST_MAPPING["IPv4"]),
            port=80,
        )


class Token:
    """Represents an IMDSv2 session token with a value and method for checking
    expiration."""

    def __init__(self, value: str, ttl: int):
        self._value = value
        self._ttl = ttl
        self._created_time = datetime.now(UTC)

    def is_expired(self) -> bool:
        return datetime.now(UTC) - self._created_time >= timedelta(seconds=self._ttl)

    @property
    def value(self) -> str:
        return self._value


class TokenCache:
    """Holds the token needed to fetch instance metadata.

    In addition, it knows how to refresh itself. When the service doesn't support
    IMDSv2 the cache yields ``None`` and callers use the token-less flow.
    """

    _TOKEN_PATH = "/latest/api/token"  # noqa: S105

    def __init__(self, http_client: HTTPClient, config: IMDSConfig):
        self._http_client = http_client
        self._config = config
        self._base_uri = config.endpoint_uri
        self._refresh_lock = asyncio.Lock()
        self._token: Token | None = None

    def _should_refresh(self) -> bool:
        return self._token is None or self._token.is_expired()

    def clear(self) -> None:
        self._token = None

    async def _refresh(self) -> None:
        async with self._refresh_lock:
            if not self._should_refresh():
                return
            headers = Fields(
                [
                    _USER_AGENT_FIELD,
                    Field(
                        name="x-aws-ec2-metadata-token-ttl-seconds",
                        values=[str(self._config.token_ttl)],
                    ),
                ]
            )
            request = AWSRequest(
                method="PUT",
                destination=URI(
                    scheme=self._base_uri.scheme,
                    host=self._base_uri.host,
                    port=self._base_uri.port,
                    path=self._TOKEN_PATH,
                ),
                fields=headers,
            )
            self._token = None
            try:
                response = await self._http_client.send(
                    request, timeout=self._config.timeout
                )
            except (HTTPTransportError, TimeoutError) as e:
                logger.debug("IMDS token request failed, using legacy flow: %s", e)
                return

            token_value = await response.consume_body_async()
            if response.status in _LEGACY_FALLBACK_STATUSES:
                logger.debug(
                    "IMDS token request returned %s, using legacy flow",
                    response.status,
                )
                return
            if response.status != 200:
                raise CredentialsProviderError(
                    f"IMDS token request failed with status {response.status}."
                )
            try:
                value = token_value.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CredentialsProviderError(
                    "IMDS returned a token that isn't valid UTF-8."
                ) from e
            self._token = Token(value, self._config.token_ttl)

    async def get_token(self) -> Token | None:
        if self._should_refresh():
            await self._refresh()
        return self._token


class EC2Metadata:
    def __init__(self, http_client: HTTPClient, config: IMDSConfig | None = None):
        self._http_client = http_client
        self._config = config or IMDSConfig()
        self._token_cache = TokenCache(
            http_client=self._http_client, config=self._config
        )

    async def get(self, *, path: str) -> str:
        """Fetch a metadata path.

        :raises CredentialsNotConfiguredError: If the path doesn't exist.
        :raises CredentialsProviderError: If the service can't be reached or fails.
        """
        token = await self._token_cache.get_token()
        headers = Fields([_USER_AGENT_FIELD])
        if token is not None:
            headers.set_field(
                Field(name="x-aws-ec2-metadata-token", values=[token.value])
            )
        request = AWSRequest(
            method="GET",
            destination=URI(
                scheme=self._config.endpoint_uri.scheme,
                host=self._config.endpoint_uri.host,
                port=self._config.endpoint_uri.port,
                path=path,
            ),
            fields=headers,
        )
        try:
            response = await self._http_client.send(
                request, timeout=self._config.timeout
            )
        except (HTTPTransportError, TimeoutError) as e:
            raise CredentialsProviderError(
                f"Unable to reach the instance metadata service at "
                f"{self._config.endpoint_uri.netloc}."
            ) from e

        body = await response.consume_body_async()
        if response.status == 401:
            self._token_cache.clear()
        if response.status == 404:
            raise CredentialsNotConfiguredError(f"Instance metadata {path} not found.")
        if response.status != 200:
            raise CredentialsProviderError(
                f"Instance metadata request for {path} failed with status "
                f"{response.status}."
            )
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CredentialsProviderError(
                f"Instance metadata {path} isn't valid UTF-8."
            ) from e


class IMDSCredentialsResolver(CredentialsResolver):
    """Resolves AWS Credentials from an EC2 Instance Metadata Service (IMDS) client."""

    _METADATA_PATH_BASE = "/latest/meta-data/iam/security-credentials"
    ENV_VAR_DISABLED = "AWS_EC2_METADATA_DISABLED"

    def __init__(
        self,
        http_client: HTTPClient,
        config: IMDSConfig | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ):
        self._http_client = http_client
        self._config = config or IMDSConfig()
        self._ec2_metadata_client = EC2Metadata(
            http_client=http_client, config=self._config
        )
        self._profile_name = self._config.ec2_instance_profile_name
        self._environ = environ

    def _is_disabled(self) -> bool:
        if self._config.disabled:
            return True
        env = os.environ if self._environ is None else self._environ
        value = env.get(self.ENV_VAR_DISABLED)
        if not value:
            return False
        try:
            return strict_parse_bool(value)
        except ValueError as e:
            raise CredentialsProviderError(
                f"Invalid value for {self.ENV_VAR_DISABLED}: {value!r}"
            ) from e

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        if self._is_disabled():
            raise CredentialsNotConfiguredError(
                "The instance metadata service is disabled."
            )

        profile = self._profile_name
        if profile is None:
            profiles = await self._ec2_metadata_client.get(
                path=f"{self._METADATA_PATH_BASE}/"
            )
            profile = next(
                (line.strip() for line in profiles.splitlines() if line.strip()), None
            )
            if profile is None:
                raise CredentialsNotConfiguredError(
                    "No instance profile is attached to this instance."
                )

        logger.debug("Fetching instance metadata credentials for role %s", profile)
        creds_str = await self._ec2_metadata_client.get(
            path=f"{self._METADATA_PATH_BASE}/{profile}"
        )
        creds = load_json_document(creds_str, source="instance metadata")
        code = creds.get("Code", "Success")
        if code != "Success":
            raise CredentialsProviderError(
                f"Instance metadata returned credentials with code {code!r}."
            )
        return credentials_from_document(creds, source="instance metadata")
