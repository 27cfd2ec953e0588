#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Final

from .._identity import AWSCredentialIdentity
from ..aiohttp import AIOHTTPClient
from ..config import DEFAULT_PROFILE_NAME
from ..exceptions import (
    CircularProfileReferenceError,
    CredentialsNotConfiguredError,
    CredentialsProviderError,
    ProfileChainTooDeepError,
)
from ..interfaces.http import HTTPClient
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver
from ..profiles.profile import (
    CREDENTIAL_SOURCE_EC2_INSTANCE_METADATA,
    CREDENTIAL_SOURCE_ECS_CONTAINER,
    CREDENTIAL_SOURCE_ENVIRONMENT,
    CredentialProfile,
    CredentialProfileType,
)
from ..profiles.store import CredentialProfileStore
from .assume_role import (
    AssumeRoleCredentialsResolver,
    AssumeRoleParameters,
    RoleAssumer,
    STSRoleAssumer,
)
from .container import ContainerCredentialsConfig, ContainerCredentialsResolver
from .environment import EnvironmentCredentialsResolver
from .imds import IMDSConfig, IMDSCredentialsResolver
from .process import ProcessCredentialsConfig, ProcessCredentialsResolver
from .sso import SSOCredentialsResolver, SSOParameters
from .static import StaticCredentialsResolver

logger: Final = logging.getLogger(__name__)

DEFAULT_MAX_CHAIN_DEPTH: Final = 5


class ProfileCredentialsResolver(CredentialsResolver):
    """Resolves AWS Credentials described by a profile in a profile store.

    The profile is the one named in the constructor, else ``AWS_PROFILE``, else
    ``default``. Assume-role profiles are followed through their ``source_profile``
    references up to ``max_chain_depth`` hops. The whole chain is validated before
    any credentials are requested.
    """

    def __init__(
        self,
        store: CredentialProfileStore,
        *,
        profile_name: str | None = None,
        http_client: HTTPClient | None = None,
        role_assumer: RoleAssumer | None = None,
        region: str | None = None,
        max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
        environ: Mapping[str, str] | None = None,
        process_config: ProcessCredentialsConfig | None = None,
        container_config: ContainerCredentialsConfig | None = None,
        imds_config: IMDSConfig | None = None,
        sso_cache_dir: str | Path | None = None,
    ):
        if max_chain_depth < 1:
            raise ValueError("max_chain_depth must be at least 1")
        self._store = store
        self._profile_name = profile_name
        self._http_client = http_client
        self._role_assumer = role_assumer
        self._region = region
        self._max_chain_depth = max_chain_depth
        self._environ = environ
        self._process_config = process_config
        self._container_config = container_config
        self._imds_config = imds_config
        self._sso_cache_dir = sso_cache_dir

    @property
    def profile_name(self) -> str:
        if self._profile_name:
            return self._profile_name
        env = os.environ if self._environ is None else self._environ
        return env.get("AWS_PROFILE") or DEFAULT_PROFILE_NAME

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        resolver = self.build_resolver()
        return await resolver.get_identity(properties=properties)

    def build_resolver(self) -> CredentialsResolver:
        """Build the resolver for the selected profile without resolving anything.

        :raises CredentialsNotConfiguredError: If the profile doesn't exist or
            describes no credentials.
        :raises ProfileError: If the profile chain is invalid.
        """
        name = self.profile_name
        profile = self._store.try_get_profile(name)
        if profile is None:
            raise CredentialsNotConfiguredError(f"Profile {name!r} is not defined.")
        if profile.profile_type is None:
            raise CredentialsNotConfiguredError(
                f"Profile {name!r} does not describe credentials."
            )

        role_profiles, base_profile = self._walk_role_chain(profile)
        resolver = self._base_resolver(base_profile)
        for role_profile in reversed(role_profiles):
            resolver = AssumeRoleCredentialsResolver(
                source=resolver,
                parameters=self._assume_role_parameters(role_profile),
                role_assumer=self._get_role_assumer(role_profile),
            )
        return resolver

    def _walk_role_chain(
        self, profile: CredentialProfile
    ) -> tuple[list[CredentialProfile], CredentialProfile]:
        """Follow ``source_profile`` references to the profile that holds the base
        credentials.

        :returns: The assume-role profiles in order, target first, and the base
            profile.
        """
        chain = [profile.name]
        visited = {profile.name}
        role_profiles: list[CredentialProfile] = []
        current = profile
        while current.profile_type is CredentialProfileType.ASSUME_ROLE:
            role_profiles.append(current)
            source_name = current.options.source_profile
            assert source_name is not None  # noqa: S101
            if source_name in visited:
                raise CircularProfileReferenceError([*chain, source_name])
            if len(role_profiles) > self._max_chain_depth:
                raise ProfileChainTooDeepError(
                    [*chain, source_name], self._max_chain_depth
                )
            chain.append(source_name)
            visited.add(source_name)
            current = self._store.get_profile(source_name)
            logger.debug(
                "Profile %r sources credentials from %r", chain[-2], source_name
            )

        if current.profile_type is None:
            raise CredentialsProviderError(
                f"Source profile {current.name!r} does not describe credentials."
            )
        return role_profiles, current

    def _base_resolver(self, profile: CredentialProfile) -> CredentialsResolver:
        options = profile.options
        match profile.profile_type:
            case CredentialProfileType.BASIC | CredentialProfileType.SESSION:
                assert options.access_key and options.secret_key  # noqa: S101
                return StaticCredentialsResolver(
                    credentials=AWSCredentialIdentity(
                        access_key_id=options.access_key,
                        secret_access_key=options.secret_key,
                        session_token=options.token or None,
                    )
                )
            case CredentialProfileType.CREDENTIAL_PROCESS:
                assert options.credential_process  # noqa: S101
                try:
                    return ProcessCredentialsResolver(
                        options.credential_process, self._process_config
                    )
                except ValueError as e:
                    raise CredentialsProviderError(
                        f"Invalid credential_process in profile {profile.name!r}: {e}"
                    ) from e
            case CredentialProfileType.SSO:
                assert options.sso_start_url and options.sso_region  # noqa: S101
                assert options.sso_account_id and options.sso_role_name  # noqa: S101
                return SSOCredentialsResolver(
                    self._get_http_client(),
                    SSOParameters(
                        start_url=options.sso_start_url,
                        region=options.sso_region,
                        account_id=options.sso_account_id,
                        role_name=options.sso_role_name,
                        session_name=options.sso_session or None,
                    ),
                    cache_dir=self._sso_cache_dir,
                )
            case CredentialProfileType.CONTAINER_METADATA:
                return self._credential_source_resolver(CREDENTIAL_SOURCE_ECS_CONTAINER)
            case CredentialProfileType.INSTANCE_METADATA:
                return self._credential_source_resolver(
                    CREDENTIAL_SOURCE_EC2_INSTANCE_METADATA
                )
            case CredentialProfileType.ASSUME_ROLE_CREDENTIAL_SOURCE:
                assert options.credential_source  # noqa: S101
                return AssumeRoleCredentialsResolver(
                    source=self._credential_source_resolver(options.credential_source),
                    parameters=self._assume_role_parameters(profile),
                    role_assumer=self._get_role_assumer(profile),
                )
            case _:
                raise CredentialsProviderError(
                    f"Profile {profile.name!r} can't be used as a credentials source."
                )

    def _credential_source_resolver(
        self, credential_source: str
    ) -> CredentialsResolver:
        match credential_source:
            case "Environment":
                return EnvironmentCredentialsResolver(environ=self._environ)
            case "EcsContainer":
                return ContainerCredentialsResolver(
                    self._get_http_client(),
                    self._container_config,
                    environ=self._environ,
                )
            case "Ec2InstanceMetadata":
                return IMDSCredentialsResolver(
                    self._get_http_client(), self._imds_config, environ=self._environ
                )
            case _:
                raise CredentialsProviderError(
                    f"Unsupported credential_source {credential_source!r}, expected "
                    f"one of {CREDENTIAL_SOURCE_ENVIRONMENT}, "
                    f"{CREDENTIAL_SOURCE_ECS_CONTAINER} or "
                    f"{CREDENTIAL_SOURCE_EC2_INSTANCE_METADATA}."
                )

    def _assume_role_parameters(
        self, profile: CredentialProfile
    ) -> AssumeRoleParameters:
        options = profile.options
        if options.mfa_serial:
            raise CredentialsProviderError(
                f"Profile {profile.name!r} requires MFA, which isn't supported."
            )
        assert options.role_arn  # noqa: S101
        kwargs: dict[str, str | int] = {}
        if options.role_session_name:
            kwargs["role_session_name"] = options.role_session_name
        if options.duration_seconds:
            try:
                kwargs["duration_seconds"] = int(options.duration_seconds)
            except ValueError as e:
                raise CredentialsProviderError(
                    f"Invalid duration_seconds {options.duration_seconds!r} in "
                    f"profile {profile.name!r}."
                ) from e
        try:
            return AssumeRoleParameters(
                role_arn=options.role_arn,
                external_id=options.external_id or None,
                **kwargs,  # type: ignore[arg-type]
            )
        except ValueError as e:
            raise CredentialsProviderError(
                f"Invalid assume role settings in profile {profile.name!r}: {e}"
            ) from e

    def _get_http_client(self) -> HTTPClient:
        if self._http_client is None:
            self._http_client = AIOHTTPClient()
        return self._http_client

    def _get_role_assumer(self, profile: CredentialProfile) -> RoleAssumer:
        if self._role_assumer is not None:
            return self._role_assumer
        return STSRoleAssumer(
            self._get_http_client(), region=profile.region or self._region
        )
