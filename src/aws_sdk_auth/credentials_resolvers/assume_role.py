#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Final, Protocol
from urllib.parse import urlencode

from .._http import URI, AWSRequest, Field, Fields
from .._identity import AWSCredentialIdentity
from ..exceptions import (
    CredentialsProviderError,
    ExpiredOrRejectedCredentialsError,
    HTTPTransportError,
)
from ..interfaces.http import HTTPClient
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver
from ..signers import SigningContext, SigV4Signer
from ..utils import parse_timestamp

logger: Final = logging.getLogger(__name__)

STS_API_VERSION: Final = "2011-06-15"
_STS_NAMESPACE = {"sts": f"https://sts.amazonaws.com/doc/{STS_API_VERSION}/"}
_DEFAULT_DURATION_SECONDS = 3600
_MIN_DURATION_SECONDS = 900
_MAX_DURATION_SECONDS = 43200
_GLOBAL_SIGNING_REGION = "us-east-1"
# STS error codes that mean the source credentials themselves were refused
_REJECTED_CREDENTIALS_CODES = frozenset(
    {"ExpiredToken", "InvalidClientTokenId", "SignatureDoesNotMatch"}
)


def default_role_session_name() -> str:
    return f"aws-sdk-auth-session-{int(time.time())}"


@dataclass(frozen=True, kw_only=True)
class AssumeRoleParameters:
    role_arn: str
    role_session_name: str = field(default_factory=default_role_session_name)
    duration_seconds: int = _DEFAULT_DURATION_SECONDS
    external_id: str | None = None

    def __post_init__(self) -> None:
        if not self.role_arn:
            raise ValueError("role_arn must be non-empty")
        if not _MIN_DURATION_SECONDS <= self.duration_seconds <= _MAX_DURATION_SECONDS:
            raise ValueError(
                f"duration_seconds must be between {_MIN_DURATION_SECONDS} and "
                f"{_MAX_DURATION_SECONDS}, got {self.duration_seconds}"
            )


class RoleAssumer(Protocol):
    """Exchanges source credentials for temporary role credentials."""

    async def assume_role(
        self,
        source_credentials: AWSCredentialIdentity,
        parameters: AssumeRoleParameters,
    ) -> AWSCredentialIdentity: ...


class STSRoleAssumer(RoleAssumer):
    """Calls the STS ``AssumeRole`` Query API."""

    def __init__(
        self,
        http_client: HTTPClient,
        *,
        region: str | None = None,
        endpoint: URI | None = None,
        signer: SigV4Signer | None = None,
        timeout: float = 5,
    ):
        self._http_client = http_client
        self._signing_region = region or _GLOBAL_SIGNING_REGION
        if endpoint is None:
            host = f"sts.{region}.amazonaws.com" if region else "sts.amazonaws.com"
            endpoint = URI(host=host, path="/")
        self._endpoint = endpoint
        self._signer = signer or SigV4Signer()
        self._timeout = timeout

    def _build_request(
        self,
        source_credentials: AWSCredentialIdentity,
        parameters: AssumeRoleParameters,
    ) -> AWSRequest:
        form = {
            "Action": "AssumeRole",
            "Version": STS_API_VERSION,
            "RoleArn": parameters.role_arn,
            "RoleSessionName": parameters.role_session_name,
            "DurationSeconds": str(parameters.duration_seconds),
        }
        if parameters.external_id is not None:
            form["ExternalId"] = parameters.external_id
        request = AWSRequest(
            method="POST",
            destination=self._endpoint,
            body=urlencode(form).encode("utf-8"),
            fields=Fields(
                [
                    Field(
                        name="Content-Type",
                        values=["application/x-www-form-urlencoded; charset=utf-8"],
                    ),
                ]
            ),
        )
        context = SigningContext.from_request(
            request,
            service="sts",
            region=self._signing_region,
            timestamp=datetime.now(UTC),
        )
        signature = self._signer.sign(context, source_credentials)
        return signature.apply(request)

    async def assume_role(
        self,
        source_credentials: AWSCredentialIdentity,
        parameters: AssumeRoleParameters,
    ) -> AWSCredentialIdentity:
        request = self._build_request(source_credentials, parameters)
        logger.debug("Assuming role %s", parameters.role_arn)
        try:
            response = await self._http_client.send(request, timeout=self._timeout)
        except (HTTPTransportError, TimeoutError) as e:
            raise CredentialsProviderError(
                f"Unable to reach STS at {self._endpoint.netloc}."
            ) from e

        body = await response.consume_body_async()
        try:
            root = ET.fromstring(body)
        except ET.ParseError as e:
            raise CredentialsProviderError(
                f"Unable to parse the AssumeRole response (status {response.status})."
            ) from e

        if response.status != 200:
            code = _find_text(root, "Error/Code")
            message = _find_text(root, "Error/Message")
            details = f"{code}: {message}" if code else f"status {response.status}"
            if code in _REJECTED_CREDENTIALS_CODES:
                raise ExpiredOrRejectedCredentialsError(
                    f"STS rejected the source credentials ({details})."
                )
            raise CredentialsProviderError(
                f"AssumeRole for {parameters.role_arn} failed ({details})."
            )
        return _parse_assume_role_response(root)


def _find_text(root: ET.Element, path: str) -> str | None:
    # STS responses are namespaced but error documents from proxies may not be.
    namespaced = "/".join(f"sts:{part}" for part in path.split("/"))
    element = root.find(f".//{namespaced}", _STS_NAMESPACE)
    if element is None:
        element = root.find(f".//{path}")
    if element is None or element.text is None:
        return None
    return element.text.strip()


def _parse_assume_role_response(root: ET.Element) -> AWSCredentialIdentity:
    access_key_id = _find_text(root, "Credentials/AccessKeyId")
    secret_access_key = _find_text(root, "Credentials/SecretAccessKey")
    session_token = _find_text(root, "Credentials/SessionToken")
    expiration = _find_text(root, "Credentials/Expiration")
    if not access_key_id or not secret_access_key or not session_token:
        raise CredentialsProviderError(
            "The AssumeRole response is missing credentials."
        )

    account_id = None
    arn = _find_text(root, "AssumedRoleUser/Arn")
    if arn is not None:
        arn_parts = arn.split(":")
        if len(arn_parts) > 4 and arn_parts[4]:
            account_id = arn_parts[4]

    try:
        parsed_expiration = parse_timestamp(expiration) if expiration else None
    except ValueError as e:
        raise CredentialsProviderError(
            f"Invalid Expiration {expiration!r} in the AssumeRole response."
        ) from e

    return AWSCredentialIdentity(
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        session_token=session_token,
        expiration=parsed_expiration,
        account_id=account_id,
    )


class AssumeRoleCredentialsResolver(CredentialsResolver):
    """Resolves temporary role credentials from a source resolver's credentials."""

    def __init__(
        self,
        *,
        source: CredentialsResolver,
        parameters: AssumeRoleParameters,
        role_assumer: RoleAssumer,
    ):
        self._source = source
        self._parameters = parameters
        self._role_assumer = role_assumer

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        source_credentials = await self._source.get_identity(properties=properties)
        return await self._role_assumer.assume_role(
            source_credentials, self._parameters
        )
