#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import ipaddress
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final
from urllib.parse import urlparse

from .._http import URI, AWSRequest, Field, Fields
from .._identity import AWSCredentialIdentity
from ..exceptions import (
    CredentialsNotConfiguredError,
    CredentialsProviderError,
    HTTPTransportError,
)
from ..interfaces.http import HTTPClient
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver
from ._documents import credentials_from_document, load_json_document

logger: Final = logging.getLogger(__name__)

_CONTAINER_METADATA_IP = "169.254.170.2"
_CONTAINER_METADATA_ALLOWED_HOSTS = frozenset(
    {
        _CONTAINER_METADATA_IP,
        "169.254.170.23",
        "fd00:ec2::23",
        "localhost",
    }
)
_DEFAULT_TIMEOUT = 2
_DEFAULT_RETRIES = 3
_DEFAULT_RETRY_DELAY = 1


@dataclass
class ContainerCredentialsConfig:
    """Configuration for container credential retrieval operations."""

    timeout: float = _DEFAULT_TIMEOUT
    retries: int = _DEFAULT_RETRIES
    retry_delay: float = _DEFAULT_RETRY_DELAY


class ContainerMetadataClient:
    """Client for remote credential retrieval in Container environments like ECS/EKS."""

    def __init__(self, http_client: HTTPClient, config: ContainerCredentialsConfig):
        self._http_client = http_client
        self._config = config

    def _validate_allowed_url(self, uri: URI) -> None:
        if uri.scheme == "https" or self._is_loopback(uri.host):
            return

        if not self._is_allowed_container_metadata_host(uri.host):
            raise CredentialsProviderError(
                f"Unsupported host '{uri.host}'. "
                f"Can only retrieve metadata over http from a loopback address or "
                f"one of: {', '.join(sorted(_CONTAINER_METADATA_ALLOWED_HOSTS))}"
            )

    async def get_credentials(self, uri: URI, fields: Fields) -> dict[str, Any]:
        self._validate_allowed_url(uri)
        fields.set_field(Field(name="Accept", values=["application/json"]))

        last_exc: Exception | None = None
        for attempt in range(1, self._config.retries + 1):
            try:
                return await self._fetch(uri, fields)
            except (CredentialsProviderError, HTTPTransportError, TimeoutError) as e:
                logger.debug(
                    "Container metadata attempt %d/%d failed: %s",
                    attempt,
                    self._config.retries,
                    e,
                )
                last_exc = e
            if attempt < self._config.retries:
                await asyncio.sleep(self._config.retry_delay)

        raise CredentialsProviderError(
            "Failed to retrieve container metadata after "
            f"{self._config.retries} attempt(s)"
        ) from last_exc

    async def _fetch(self, uri: URI, fields: Fields) -> dict[str, Any]:
        request = AWSRequest(method="GET", destination=uri, fields=fields)
        response = await self._http_client.send(request, timeout=self._config.timeout)
        body = await response.consume_body_async()
        if response.status != 200:
            raise CredentialsProviderError(
                f"Container metadata service returned {response.status}: "
                f"{body.decode('utf-8', errors='replace')}"
            )
        return load_json_document(body, source="container metadata")

    def _is_loopback(self, hostname: str) -> bool:
        try:
            return ipaddress.ip_address(hostname.strip("[]")).is_loopback
        except ValueError:
            return False

    def _is_allowed_container_metadata_host(self, hostname: str) -> bool:
        return hostname.strip("[]") in _CONTAINER_METADATA_ALLOWED_HOSTS


class ContainerCredentialsResolver(CredentialsResolver):
    """Resolves AWS Credentials from container credential sources."""

    ENV_VAR = "AWS_CONTAINER_CREDENTIALS_RELATIVE_URI"
    ENV_VAR_FULL = "AWS_CONTAINER_CREDENTIALS_FULL_URI"
    ENV_VAR_AUTH_TOKEN = "AWS_CONTAINER_AUTHORIZATION_TOKEN"  # noqa: S105
    ENV_VAR_AUTH_TOKEN_FILE = "AWS_CONTAINER_AUTHORIZATION_TOKEN_FILE"  # noqa: S105

    def __init__(
        self,
        http_client: HTTPClient,
        config: ContainerCredentialsConfig | None = None,
        *,
        environ: Mapping[str, str] | None = None,
    ):
        self._http_client = http_client
        self._config = config or ContainerCredentialsConfig()
        self._client = ContainerMetadataClient(http_client, self._config)
        self._environ = environ

    @property
    def _env(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def _resolve_uri_from_env(self) -> URI:
        env = self._env
        if env.get(self.ENV_VAR):
            return URI(
                scheme="http",
                host=_CONTAINER_METADATA_IP,
                path=env[self.ENV_VAR],
            )
        elif env.get(self.ENV_VAR_FULL):
            parsed = urlparse(env[self.ENV_VAR_FULL])
            if not parsed.hostname:
                raise CredentialsProviderError(
                    f"{self.ENV_VAR_FULL} is not a valid URL: {env[self.ENV_VAR_FULL]}"
                )
            return URI(
                scheme=parsed.scheme or "http",
                host=parsed.hostname,
                port=parsed.port,
                path=parsed.path,
                query=parsed.query or None,
            )
        else:
            raise CredentialsNotConfiguredError(
                f"Neither {self.ENV_VAR} or {self.ENV_VAR_FULL} environment "
                "variables are set. Unable to resolve credentials."
            )

    async def _resolve_fields_from_env(self) -> Fields:
        env = self._env
        fields = Fields()
        if env.get(self.ENV_VAR_AUTH_TOKEN_FILE):
            filename = env[self.ENV_VAR_AUTH_TOKEN_FILE]
            try:
                auth_token = await asyncio.to_thread(self._read_file, filename)
            except OSError as e:
                raise CredentialsProviderError(f"Unable to open {filename}.") from e

            fields.set_field(Field(name="Authorization", values=[auth_token]))
        elif env.get(self.ENV_VAR_AUTH_TOKEN):
            auth_token = env[self.ENV_VAR_AUTH_TOKEN]
            fields.set_field(Field(name="Authorization", values=[auth_token]))

        if "Authorization" in fields and any(
            c in fields["Authorization"].as_string() for c in "\r\n"
        ):
            raise CredentialsProviderError(
                "The container authorization token must not contain line breaks."
            )
        return fields

    def _read_file(self, filename: str) -> str:
        with open(filename, encoding="utf-8") as f:
            try:
                return f.read().strip()
            except UnicodeDecodeError as e:
                raise CredentialsProviderError(
                    f"Unable to read valid utf-8 bytes from {filename}."
                ) from e

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        uri = self._resolve_uri_from_env()
        fields = await self._resolve_fields_from_env()
        logger.debug("Fetching container credentials from %s", uri.netloc)
        creds = await self._client.get_credentials(uri, fields)
        return credentials_from_document(creds, source="container")
