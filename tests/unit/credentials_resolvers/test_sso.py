#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
import hashlib
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from urllib.parse import parse_qs

import pytest
from aws_sdk_auth.credentials_resolvers import SSOCredentialsResolver, SSOParameters
from aws_sdk_auth.exceptions import CredentialsProviderError, HTTPTransportError
from aws_sdk_auth.testing import MockHTTPClient

START_URL = "https://my-org.awsapps.com/start"
PARAMETERS = SSOParameters(
    start_url=START_URL,
    region="us-west-2",
    account_id="123456789012",
    role_name="ReadOnly",
)
ROLE_CREDENTIALS = {
    "roleCredentials": {
        "accessKeyId": "sso-akid",
        "secretAccessKey": "sso-secret",
        "sessionToken": "sso-token",
        "expiration": 1767225600000,
    }
}


def _write_token(
    cache_dir: Path,
    parameters: SSOParameters = PARAMETERS,
    *,
    expires_in: timedelta = timedelta(hours=1),
    **overrides: object,
) -> Path:
    expires_at = datetime.now(UTC) + expires_in
    document = {
        "startUrl": parameters.start_url,
        "region": parameters.region,
        "accessToken": "cached-access-token",
        "expiresAt": expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        **overrides,
    }
    path = cache_dir / f"{parameters.cache_key}.json"
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def _client(status: int = 200, body: object = ROLE_CREDENTIALS) -> MockHTTPClient:
    client = MockHTTPClient()
    client.add_response(status=status, body=json.dumps(body).encode("utf-8"))
    return client


def test_cache_key_uses_start_url():
    assert PARAMETERS.cache_key == hashlib.sha1(START_URL.encode("utf-8")).hexdigest()


def test_cache_key_prefers_session_name():
    parameters = SSOParameters(
        start_url=START_URL,
        region="us-west-2",
        account_id="123456789012",
        role_name="ReadOnly",
        session_name="my-sso",
    )
    assert parameters.cache_key == hashlib.sha1(b"my-sso").hexdigest()


def test_token_path(tmp_path: Path):
    resolver = SSOCredentialsResolver(MockHTTPClient(), PARAMETERS, cache_dir=tmp_path)
    assert resolver.token_path == tmp_path / f"{PARAMETERS.cache_key}.json"


@pytest.mark.asyncio
async def test_resolves_role_credentials(tmp_path: Path):
    _write_token(tmp_path)
    http_client = _client()
    resolver = SSOCredentialsResolver(http_client, PARAMETERS, cache_dir=tmp_path)

    credentials = await resolver.get_identity(properties={})

    assert credentials.access_key_id == "sso-akid"
    assert credentials.secret_access_key == "sso-secret"
    assert credentials.session_token == "sso-token"
    assert credentials.expiration == datetime(2026, 1, 1, tzinfo=UTC)
    assert credentials.account_id == "123456789012"


@pytest.mark.asyncio
async def test_portal_request(tmp_path: Path):
    _write_token(tmp_path)
    http_client = _client()
    resolver = SSOCredentialsResolver(
        http_client, PARAMETERS, cache_dir=tmp_path, timeout=3
    )

    await resolver.get_identity(properties={})

    request = http_client.captured_requests[0]
    assert request.method == "GET"
    assert request.destination.scheme == "https"
    assert request.destination.host == "portal.sso.us-west-2.amazonaws.com"
    assert request.destination.path == "/federation/credentials"
    assert parse_qs(request.destination.query) == {
        "role_name": ["ReadOnly"],
        "account_id": ["123456789012"],
    }
    bearer = request.fields["x-amz-sso_bearer_token"].as_string()
    assert bearer == "cached-access-token"
    assert http_client.captured_timeouts == [3]


@pytest.mark.asyncio
async def test_missing_token_file(tmp_path: Path):
    http_client = MockHTTPClient()
    resolver = SSOCredentialsResolver(http_client, PARAMETERS, cache_dir=tmp_path)

    with pytest.raises(CredentialsProviderError, match="aws sso login"):
        await resolver.get_identity(properties={})
    assert http_client.call_count == 0


@pytest.mark.asyncio
async def test_expired_token(tmp_path: Path):
    _write_token(tmp_path, expires_in=timedelta(minutes=-1))
    http_client = MockHTTPClient()
    resolver = SSOCredentialsResolver(http_client, PARAMETERS, cache_dir=tmp_path)

    with pytest.raises(CredentialsProviderError, match="expired"):
        await resolver.get_identity(properties={})
    assert http_client.call_count == 0


@pytest.mark.asyncio
async def test_token_missing_access_token(tmp_path: Path):
    _write_token(tmp_path, accessToken="")
    resolver = SSOCredentialsResolver(MockHTTPClient(), PARAMETERS, cache_dir=tmp_path)

    with pytest.raises(CredentialsProviderError, match="missing accessToken"):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_token_invalid_expires_at(tmp_path: Path):
    _write_token(tmp_path, expiresAt="soon")
    resolver = SSOCredentialsResolver(MockHTTPClient(), PARAMETERS, cache_dir=tmp_path)

    with pytest.raises(CredentialsProviderError, match="Invalid expiresAt"):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_token_numeric_expires_at(tmp_path: Path):
    _write_token(tmp_path, expiresAt=1767225600)
    resolver = SSOCredentialsResolver(MockHTTPClient(), PARAMETERS, cache_dir=tmp_path)

    with pytest.raises(CredentialsProviderError, match="Invalid expiresAt"):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_token_file_not_json(tmp_path: Path):
    (tmp_path / f"{PARAMETERS.cache_key}.json").write_text("{", encoding="utf-8")
    resolver = SSOCredentialsResolver(MockHTTPClient(), PARAMETERS, cache_dir=tmp_path)

    with pytest.raises(CredentialsProviderError, match="Unable to parse JSON"):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_portal_error_status(tmp_path: Path):
    _write_token(tmp_path)
    http_client = _client(status=401, body={"message": "Session token not found"})
    resolver = SSOCredentialsResolver(http_client, PARAMETERS, cache_dir=tmp_path)

    with pytest.raises(CredentialsProviderError, match="status 401"):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_portal_unreachable(tmp_path: Path):
    _write_token(tmp_path)
    http_client = MockHTTPClient()
    http_client.add_error(HTTPTransportError("connection refused"))
    resolver = SSOCredentialsResolver(http_client, PARAMETERS, cache_dir=tmp_path)

    with pytest.raises(CredentialsProviderError, match="Unable to reach"):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {},
        {"roleCredentials": "nope"},
        {"roleCredentials": {"accessKeyId": "akid"}},
    ],
)
async def test_malformed_role_credentials(tmp_path: Path, body: object):
    _write_token(tmp_path)
    resolver = SSOCredentialsResolver(
        _client(body=body), PARAMETERS, cache_dir=tmp_path
    )

    with pytest.raises(CredentialsProviderError):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
@pytest.mark.parametrize("expiration", ["1767225600000", 10**20])
async def test_invalid_role_credentials_expiration(
    tmp_path: Path, expiration: object
):
    _write_token(tmp_path)
    body = {
        "roleCredentials": {
            **ROLE_CREDENTIALS["roleCredentials"],
            "expiration": expiration,
        }
    }
    resolver = SSOCredentialsResolver(
        _client(body=body), PARAMETERS, cache_dir=tmp_path
    )

    with pytest.raises(CredentialsProviderError, match="Invalid expiration"):
        await resolver.get_identity(properties={})
