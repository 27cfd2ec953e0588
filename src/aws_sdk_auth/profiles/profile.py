#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, Final

from ..exceptions import AmbiguousProfileError, ProfileError

if TYPE_CHECKING:
    from .._identity import AWSCredentialIdentity
    from .store import CredentialProfileStore

CREDENTIAL_SOURCE_ECS_CONTAINER: Final = "EcsContainer"
CREDENTIAL_SOURCE_EC2_INSTANCE_METADATA: Final = "Ec2InstanceMetadata"
CREDENTIAL_SOURCE_ENVIRONMENT: Final = "Environment"

CREDENTIAL_SOURCES: Final = frozenset(
    {
        CREDENTIAL_SOURCE_ECS_CONTAINER,
        CREDENTIAL_SOURCE_EC2_INSTANCE_METADATA,
        CREDENTIAL_SOURCE_ENVIRONMENT,
    }
)


class CredentialProfileType(StrEnum):
    """The kinds of credentials a profile can describe.

    Members are declared in precedence order.
    """

    BASIC = "basic"
    SESSION = "session"
    ASSUME_ROLE = "assume_role"
    ASSUME_ROLE_CREDENTIAL_SOURCE = "assume_role_credential_source"
    CREDENTIAL_PROCESS = "credential_process"
    SSO = "sso"
    CONTAINER_METADATA = "container_metadata"
    INSTANCE_METADATA = "instance_metadata"


_DESCRIPTIONS: Final = MappingProxyType(
    {
        CredentialProfileType.BASIC: "Static access key",
        CredentialProfileType.SESSION: "Static access key with session token",
        CredentialProfileType.ASSUME_ROLE: "Assume role from a source profile",
        CredentialProfileType.ASSUME_ROLE_CREDENTIAL_SOURCE: (
            "Assume role from a credential source"
        ),
        CredentialProfileType.CREDENTIAL_PROCESS: "External credential process",
        CredentialProfileType.SSO: "IAM Identity Center (SSO)",
        CredentialProfileType.CONTAINER_METADATA: "Container credentials endpoint",
        CredentialProfileType.INSTANCE_METADATA: "EC2 instance metadata",
    }
)


@dataclass(kw_only=True)
class CredentialProfileOptions:
    """The recognized options of a credential profile.

    Attribute names are Pythonic; :py:attr:`FILE_KEYS` maps them to the keys used in
    the shared credentials and config files.
    """

    access_key: str | None = None
    secret_key: str | None = field(default=None, repr=False)
    token: str | None = field(default=None, repr=False)
    role_arn: str | None = None
    source_profile: str | None = None
    credential_source: str | None = None
    external_id: str | None = None
    role_session_name: str | None = None
    duration_seconds: str | None = None
    mfa_serial: str | None = None
    credential_process: str | None = None
    sso_start_url: str | None = None
    sso_region: str | None = None
    sso_account_id: str | None = None
    sso_role_name: str | None = None
    sso_session: str | None = None

    FILE_KEYS: ClassVar[Mapping[str, str]] = MappingProxyType(
        {
            "access_key": "aws_access_key_id",
            "secret_key": "aws_secret_access_key",
            "token": "aws_session_token",
            "role_arn": "role_arn",
            "source_profile": "source_profile",
            "credential_source": "credential_source",
            "external_id": "external_id",
            "role_session_name": "role_session_name",
            "duration_seconds": "duration_seconds",
            "mfa_serial": "mfa_serial",
            "credential_process": "credential_process",
            "sso_start_url": "sso_start_url",
            "sso_region": "sso_region",
            "sso_account_id": "sso_account_id",
            "sso_role_name": "sso_role_name",
            "sso_session": "sso_session",
        }
    )

    @classmethod
    def from_file_values(
        cls, values: Mapping[str, str]
    ) -> tuple[CredentialProfileOptions, dict[str, str]]:
        """Split raw file values into recognized options and leftover properties."""
        attributes_by_key = {key: attr for attr, key in cls.FILE_KEYS.items()}
        options: dict[str, str] = {}
        leftovers: dict[str, str] = {}
        for key, value in values.items():
            attribute = attributes_by_key.get(key)
            if attribute is None:
                leftovers[key] = value
            else:
                options[attribute] = value
        return cls(**options), leftovers

    def to_file_values(self) -> dict[str, str]:
        """The non-empty options keyed by their file names."""
        return {
            self.FILE_KEYS[name]: value
            for name, value in self.as_dict().items()
            if value
        }

    def as_dict(self) -> dict[str, str | None]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def is_set(self, name: str) -> bool:
        return bool(getattr(self, name))


@dataclass(frozen=True)
class _ProfileTypeRule:
    profile_type: CredentialProfileType
    required: frozenset[str]
    credential_sources: frozenset[str] | None = None

    def matches(self, options: CredentialProfileOptions) -> bool:
        if not all(options.is_set(name) for name in self.required):
            return False
        if self.credential_sources is None:
            return True
        return options.credential_source in self.credential_sources


_RULES: Final = (
    _ProfileTypeRule(
        CredentialProfileType.BASIC, frozenset({"access_key", "secret_key"})
    ),
    _ProfileTypeRule(
        CredentialProfileType.SESSION,
        frozenset({"access_key", "secret_key", "token"}),
    ),
    _ProfileTypeRule(
        CredentialProfileType.ASSUME_ROLE, frozenset({"role_arn", "source_profile"})
    ),
    _ProfileTypeRule(
        CredentialProfileType.ASSUME_ROLE_CREDENTIAL_SOURCE,
        frozenset({"role_arn", "credential_source"}),
        CREDENTIAL_SOURCES,
    ),
    _ProfileTypeRule(
        CredentialProfileType.CREDENTIAL_PROCESS, frozenset({"credential_process"})
    ),
    _ProfileTypeRule(
        CredentialProfileType.SSO,
        frozenset({"sso_start_url", "sso_region", "sso_account_id", "sso_role_name"}),
    ),
    _ProfileTypeRule(
        CredentialProfileType.CONTAINER_METADATA,
        frozenset({"credential_source"}),
        frozenset({CREDENTIAL_SOURCE_ECS_CONTAINER}),
    ),
    _ProfileTypeRule(
        CredentialProfileType.INSTANCE_METADATA,
        frozenset({"credential_source"}),
        frozenset({CREDENTIAL_SOURCE_EC2_INSTANCE_METADATA}),
    ),
)


def detect_profile_type(
    options: CredentialProfileOptions, *, profile_name: str | None = None
) -> CredentialProfileType | None:
    """Classify profile options into exactly one credential type.

    A rule matches when all of its required options are set. A match whose required
    options are a strict subset of another match's is discarded, so the most
    specific combination wins. Matches that remain from more than one rule are
    mutually exclusive.

    :param options: The options to classify.
    :param profile_name: Used in the error message only.
    :returns: The credential type, or ``None`` if the options describe no
        credentials.
    :raises AmbiguousProfileError: If the options match more than one type.
    """
    matches = [rule for rule in _RULES if rule.matches(options)]
    remaining = [
        rule
        for rule in matches
        if not any(rule.required < other.required for other in matches)
    ]
    if not remaining:
        return None
    if len(remaining) > 1:
        raise AmbiguousProfileError(
            profile_name, [rule.profile_type.value for rule in remaining]
        )
    return remaining[0].profile_type


@dataclass(kw_only=True)
class CredentialProfile:
    """A named set of credential options read from or written to a profile store.

    Options that aren't recognized are kept in ``properties`` so they survive a
    round trip through the store.
    """

    name: str
    options: CredentialProfileOptions = field(default_factory=CredentialProfileOptions)
    region: str | None = None
    properties: dict[str, str] = field(default_factory=dict)
    unique_key: str | None = None
    _store: CredentialProfileStore | None = field(
        default=None, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Profile name must be non-empty.")
        reserved = set(CredentialProfileOptions.FILE_KEYS.values()) | {"region"}
        overlap = reserved.intersection(self.properties)
        if overlap:
            raise ValueError(
                "Properties must not contain recognized option keys: "
                f"{', '.join(sorted(overlap))}."
            )

    @property
    def profile_type(self) -> CredentialProfileType | None:
        """The type of credentials this profile describes, if any.

        :raises AmbiguousProfileError: If the options match more than one type.
        """
        return detect_profile_type(self.options, profile_name=self.name)

    @property
    def can_create_credentials(self) -> bool:
        try:
            return self.profile_type is not None
        except AmbiguousProfileError:
            return False

    @property
    def credential_description(self) -> str | None:
        """A human readable description of the profile's credential type."""
        if not self.can_create_credentials:
            return None
        profile_type = self.profile_type
        assert profile_type is not None  # noqa: S101
        return _DESCRIPTIONS[profile_type]

    def persist(self) -> None:
        """Write this profile back to the store it was registered with."""
        if self._store is None:
            raise ProfileError(
                f"Profile {self.name!r} isn't bound to a profile store."
            )
        self._store.register_profile(self)

    async def get_credentials(self, **resolver_options: Any) -> AWSCredentialIdentity:
        """Resolve credentials from this profile.

        Source profiles are looked up in the store this profile is registered with.

        :param resolver_options: Keyword arguments for
            :py:class:`~aws_sdk_auth.credentials_resolvers.ProfileCredentialsResolver`,
            such as ``http_client`` or ``region``.
        :raises ProfileError: If the profile isn't registered with a store.
        """
        if self._store is None:
            raise ProfileError(
                f"Profile {self.name!r} isn't bound to a profile store."
            )
        from ..credentials_resolvers.profile import ProfileCredentialsResolver

        resolver = ProfileCredentialsResolver(
            self._store, profile_name=self.name, **resolver_options
        )
        return await resolver.get_identity(properties={})

    def __str__(self) -> str:
        try:
            profile_type = self.profile_type
        except AmbiguousProfileError:
            profile_type = None
        return (
            f"[name={self.name}, profile_type={profile_type}, "
            f"region={self.region}, unique_key={self.unique_key}]"
        )
