#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from aws_sdk_auth._identity import AWSCredentialIdentity
from aws_sdk_auth.credentials_resolvers import (
    AssumeRoleCredentialsResolver,
    AssumeRoleParameters,
    ContainerCredentialsResolver,
    IMDSCredentialsResolver,
    ProcessCredentialsResolver,
    ProfileCredentialsResolver,
    SSOCredentialsResolver,
    StaticCredentialsResolver,
)
from aws_sdk_auth.exceptions import (
    AmbiguousProfileError,
    CircularProfileReferenceError,
    CredentialsNotConfiguredError,
    CredentialsProviderError,
    ProfileChainTooDeepError,
    ProfileNotFoundError,
)
from aws_sdk_auth.profiles import (
    CredentialProfile,
    CredentialProfileOptions,
    CredentialProfileStore,
)
from aws_sdk_auth.testing import MockHTTPClient


class RecordingRoleAssumer:
    def __init__(self) -> None:
        self.calls: list[tuple[str, AssumeRoleParameters]] = []

    async def assume_role(
        self,
        source_credentials: AWSCredentialIdentity,
        parameters: AssumeRoleParameters,
    ) -> AWSCredentialIdentity:
        self.calls.append((source_credentials.access_key_id, parameters))
        return AWSCredentialIdentity(
            access_key_id=f"assumed:{parameters.role_arn}",
            secret_access_key="role-secret",
            session_token="role-token",
        )


def _store(**profiles: CredentialProfileOptions) -> CredentialProfileStore:
    store = CredentialProfileStore()
    for name, options in profiles.items():
        store.register_profile(CredentialProfile(name=name, options=options))
    return store


def _basic(key: str = "AKIDBASE") -> CredentialProfileOptions:
    return CredentialProfileOptions(access_key=key, secret_key="secret")


def _role(source: str, arn: str | None = None) -> CredentialProfileOptions:
    return CredentialProfileOptions(
        role_arn=arn or f"arn:aws:iam::123456789012:role/{source}",
        source_profile=source,
    )


@pytest.fixture
def http_client() -> MockHTTPClient:
    return MockHTTPClient()


@pytest.fixture
def role_assumer() -> RecordingRoleAssumer:
    return RecordingRoleAssumer()


def _resolver(
    store: CredentialProfileStore,
    http_client: MockHTTPClient,
    role_assumer: RecordingRoleAssumer,
    **kwargs: object,
) -> ProfileCredentialsResolver:
    kwargs.setdefault("environ", {})
    return ProfileCredentialsResolver(
        store,
        http_client=http_client,
        role_assumer=role_assumer,
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.mark.asyncio
async def test_basic_profile(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    store = _store(default=_basic())
    resolver = _resolver(store, http_client, role_assumer)

    credentials = await resolver.get_identity(properties={})

    assert credentials.access_key_id == "AKIDBASE"
    assert credentials.secret_access_key == "secret"
    assert credentials.session_token is None


@pytest.mark.asyncio
async def test_session_profile(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    options = CredentialProfileOptions(
        access_key="AKID", secret_key="secret", token="token"
    )
    resolver = _resolver(
        _store(dev=options), http_client, role_assumer, profile_name="dev"
    )

    credentials = await resolver.get_identity(properties={})
    assert credentials.session_token == "token"


def test_profile_name_selection(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    store = _store()
    assert _resolver(store, http_client, role_assumer).profile_name == "default"
    assert (
        _resolver(
            store, http_client, role_assumer, environ={"AWS_PROFILE": "from-env"}
        ).profile_name
        == "from-env"
    )
    assert (
        _resolver(
            store,
            http_client,
            role_assumer,
            profile_name="explicit",
            environ={"AWS_PROFILE": "from-env"},
        ).profile_name
        == "explicit"
    )


@pytest.mark.asyncio
async def test_missing_profile_is_not_configured(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    resolver = _resolver(_store(), http_client, role_assumer, profile_name="absent")
    with pytest.raises(CredentialsNotConfiguredError):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_profile_without_credentials_is_not_configured(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    store = CredentialProfileStore()
    store.register_profile(CredentialProfile(name="default", region="us-west-2"))
    resolver = _resolver(store, http_client, role_assumer)
    with pytest.raises(CredentialsNotConfiguredError):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_ambiguous_profile(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    options = CredentialProfileOptions(
        access_key="AKID", secret_key="secret", credential_process="/bin/creds"
    )
    resolver = _resolver(_store(default=options), http_client, role_assumer)
    with pytest.raises(AmbiguousProfileError):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_role_chain(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    store = _store(
        target=_role("middle", "arn:aws:iam::123456789012:role/target"),
        middle=_role("base", "arn:aws:iam::123456789012:role/middle"),
        base=_basic(),
    )
    resolver = _resolver(store, http_client, role_assumer, profile_name="target")

    credentials = await resolver.get_identity(properties={})

    assert [(source, params.role_arn) for source, params in role_assumer.calls] == [
        ("AKIDBASE", "arn:aws:iam::123456789012:role/middle"),
        (
            "assumed:arn:aws:iam::123456789012:role/middle",
            "arn:aws:iam::123456789012:role/target",
        ),
    ]
    assert credentials.access_key_id == "assumed:arn:aws:iam::123456789012:role/target"
    assert http_client.call_count == 0


@pytest.mark.asyncio
async def test_role_parameters_from_profile(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    options = CredentialProfileOptions(
        role_arn="arn:aws:iam::123456789012:role/admin",
        source_profile="base",
        external_id="external",
        role_session_name="my-session",
        duration_seconds="900",
    )
    store = _store(admin=options, base=_basic())
    resolver = _resolver(store, http_client, role_assumer, profile_name="admin")

    await resolver.get_identity(properties={})

    ((_, params),) = role_assumer.calls
    assert params == AssumeRoleParameters(
        role_arn="arn:aws:iam::123456789012:role/admin",
        role_session_name="my-session",
        duration_seconds=900,
        external_id="external",
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("duration", ["soon", "60"])
async def test_invalid_duration(
    duration: str, http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    options = CredentialProfileOptions(
        role_arn="arn:aws:iam::123456789012:role/admin",
        source_profile="base",
        duration_seconds=duration,
    )
    store = _store(default=options, base=_basic())
    resolver = _resolver(store, http_client, role_assumer)
    with pytest.raises(CredentialsProviderError):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_mfa_profiles_are_rejected(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    options = CredentialProfileOptions(
        role_arn="arn:aws:iam::123456789012:role/admin",
        source_profile="base",
        mfa_serial="arn:aws:iam::123456789012:mfa/user",
    )
    store = _store(default=options, base=_basic())
    resolver = _resolver(store, http_client, role_assumer)
    with pytest.raises(CredentialsProviderError, match="MFA"):
        await resolver.get_identity(properties={})
    assert role_assumer.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "profiles, expected_chain",
    [
        ({"a": "a"}, ("a", "a")),
        ({"a": "b", "b": "a"}, ("a", "b", "a")),
        ({"a": "b", "b": "c", "c": "a"}, ("a", "b", "c", "a")),
        ({"a": "b", "b": "c", "c": "b"}, ("a", "b", "c", "b")),
    ],
)
async def test_circular_source_profiles(
    profiles: dict[str, str],
    expected_chain: tuple[str, ...],
    http_client: MockHTTPClient,
    role_assumer: RecordingRoleAssumer,
) -> None:
    store = _store(**{name: _role(source) for name, source in profiles.items()})
    resolver = _resolver(store, http_client, role_assumer, profile_name="a")

    with pytest.raises(CircularProfileReferenceError) as exc_info:
        await resolver.get_identity(properties={})

    assert exc_info.value.chain == expected_chain
    assert http_client.call_count == 0
    assert role_assumer.calls == []


@pytest.mark.asyncio
async def test_role_chain_too_deep(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    store = _store(
        r1=_role("r2"), r2=_role("r3"), r3=_role("base"), base=_basic()
    )
    resolver = _resolver(
        store, http_client, role_assumer, profile_name="r1", max_chain_depth=2
    )

    with pytest.raises(ProfileChainTooDeepError) as exc_info:
        await resolver.get_identity(properties={})

    assert exc_info.value.max_depth == 2
    assert role_assumer.calls == []


@pytest.mark.asyncio
async def test_role_chain_at_max_depth(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    store = _store(r1=_role("r2"), r2=_role("base"), base=_basic())
    resolver = _resolver(
        store, http_client, role_assumer, profile_name="r1", max_chain_depth=2
    )

    await resolver.get_identity(properties={})
    assert len(role_assumer.calls) == 2


def test_max_chain_depth_must_be_positive(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    with pytest.raises(ValueError):
        _resolver(_store(), http_client, role_assumer, max_chain_depth=0)


@pytest.mark.asyncio
async def test_missing_source_profile(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    store = _store(default=_role("absent"))
    resolver = _resolver(store, http_client, role_assumer)

    with pytest.raises(ProfileNotFoundError) as exc_info:
        await resolver.get_identity(properties={})
    assert exc_info.value.profile_name == "absent"


@pytest.mark.asyncio
async def test_source_profile_without_credentials(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    store = _store(default=_role("empty"))
    store.register_profile(CredentialProfile(name="empty", region="us-east-1"))
    resolver = _resolver(store, http_client, role_assumer)

    with pytest.raises(CredentialsProviderError):
        await resolver.get_identity(properties={})


@pytest.mark.asyncio
async def test_role_from_environment_credential_source(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    options = CredentialProfileOptions(
        role_arn="arn:aws:iam::123456789012:role/admin",
        credential_source="Environment",
    )
    resolver = _resolver(
        _store(default=options),
        http_client,
        role_assumer,
        environ={"AWS_ACCESS_KEY_ID": "AKIDENV", "AWS_SECRET_ACCESS_KEY": "secret"},
    )

    credentials = await resolver.get_identity(properties={})

    assert role_assumer.calls[0][0] == "AKIDENV"
    assert credentials.access_key_id == "assumed:arn:aws:iam::123456789012:role/admin"


@pytest.mark.parametrize(
    "options, expected_type",
    [
        (_basic(), StaticCredentialsResolver),
        (
            CredentialProfileOptions(credential_process="/usr/bin/creds --json"),
            ProcessCredentialsResolver,
        ),
        (
            CredentialProfileOptions(
                sso_start_url="https://example.awsapps.com/start",
                sso_region="us-east-1",
                sso_account_id="123456789012",
                sso_role_name="ReadOnly",
            ),
            SSOCredentialsResolver,
        ),
        (
            CredentialProfileOptions(credential_source="EcsContainer"),
            ContainerCredentialsResolver,
        ),
        (
            CredentialProfileOptions(credential_source="Ec2InstanceMetadata"),
            IMDSCredentialsResolver,
        ),
        (
            CredentialProfileOptions(
                role_arn="arn:aws:iam::123456789012:role/admin",
                credential_source="Ec2InstanceMetadata",
            ),
            AssumeRoleCredentialsResolver,
        ),
        (_role("base"), AssumeRoleCredentialsResolver),
    ],
)
def test_build_resolver_by_profile_type(
    options: CredentialProfileOptions,
    expected_type: type,
    http_client: MockHTTPClient,
    role_assumer: RecordingRoleAssumer,
) -> None:
    store = _store(default=options, base=_basic())
    resolver = _resolver(store, http_client, role_assumer).build_resolver()
    assert isinstance(resolver, expected_type)


def test_unparseable_credential_process(
    http_client: MockHTTPClient, role_assumer: RecordingRoleAssumer
) -> None:
    options = CredentialProfileOptions(credential_process="'unterminated")
    resolver = _resolver(_store(default=options), http_client, role_assumer)
    with pytest.raises(CredentialsProviderError):
        resolver.build_resolver()


@pytest.mark.asyncio
async def test_sso_profile_using_sso_session(
    tmp_path: Path, http_client: MockHTTPClient
) -> None:
    config_path = tmp_path / "config"
    config_path.write_text(
        "[profile sso]\n"
        "sso_session = corp\n"
        "sso_account_id = 123456789012\n"
        "sso_role_name = ReadOnly\n"
        "\n"
        "[sso-session corp]\n"
        "sso_start_url = https://corp.awsapps.com/start\n"
        "sso_region = eu-central-1\n",
        encoding="utf-8",
    )
    cache_dir = tmp_path / "sso-cache"
    cache_dir.mkdir()
    expires_at = datetime.now(UTC) + timedelta(hours=1)
    (cache_dir / f"{hashlib.sha1(b'corp').hexdigest()}.json").write_text(
        json.dumps(
            {
                "accessToken": "session-token",
                "expiresAt": expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            }
        ),
        encoding="utf-8",
    )
    http_client.add_response(
        body=json.dumps(
            {
                "roleCredentials": {
                    "accessKeyId": "sso-akid",
                    "secretAccessKey": "sso-secret",
                    "sessionToken": "sso-token",
                }
            }
        ).encode("utf-8")
    )
    resolver = ProfileCredentialsResolver(
        CredentialProfileStore(config_path=config_path),
        profile_name="sso",
        http_client=http_client,
        environ={},
        sso_cache_dir=cache_dir,
    )

    credentials = await resolver.get_identity(properties={})

    assert credentials.access_key_id == "sso-akid"
    request = http_client.captured_requests[0]
    assert request.destination.host == "portal.sso.eu-central-1.amazonaws.com"
    assert request.fields["x-amz-sso_bearer_token"].as_string() == "session-token"
