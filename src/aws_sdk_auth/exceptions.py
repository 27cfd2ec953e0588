# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass


class AWSAuthError(Exception):
    """Base exception type for all exceptions raised by aws-sdk-auth."""


class ProfileError(AWSAuthError):
    """Base exception type for errors in profile lookup and classification."""


class ProfileNotFoundError(ProfileError, KeyError):
    """The named profile is not registered in the profile store."""

    def __init__(self, profile_name: str):
        self.profile_name = profile_name
        super().__init__(f"Profile {profile_name!r} was not found.")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return str(self.args[0])


class AmbiguousProfileError(ProfileError):
    """A profile's options match more than one mutually exclusive profile type."""

    def __init__(self, profile_name: str | None, candidates: Sequence[str]):
        self.profile_name = profile_name
        self.candidates = tuple(candidates)
        name = f"Profile {profile_name!r}" if profile_name else "Profile options"
        super().__init__(
            f"{name} cannot be classified, options match more than one "
            f"credential type: {', '.join(self.candidates)}."
        )


class CircularProfileReferenceError(ProfileError):
    """A profile names itself, directly or transitively, as its own source."""

    def __init__(self, chain: Sequence[str]):
        self.chain = tuple(chain)
        super().__init__(
            "Circular source_profile reference detected: "
            f"{' -> '.join(self.chain)}."
        )


class ProfileChainTooDeepError(ProfileError):
    """A role-chaining walk exceeded the maximum allowed number of hops."""

    def __init__(self, chain: Sequence[str], max_depth: int):
        self.chain = tuple(chain)
        self.max_depth = max_depth
        super().__init__(
            f"Role chain {' -> '.join(self.chain)} exceeds the maximum depth "
            f"of {max_depth}."
        )


class CredentialsError(AWSAuthError):
    """Base exception type for all exceptions raised in credential resolution."""


class CredentialsNotConfiguredError(CredentialsError):
    """The credentials source is not configured in the current environment.

    A chain treats this as "not applicable" and moves on without recording a
    failure.
    """


class CredentialsProviderError(CredentialsError):
    """The credentials source is configured but failed to produce credentials."""


@dataclass(frozen=True)
class ResolverAttempt:
    """The outcome of one resolver attempt inside a resolver chain."""

    source: str
    """Name of the credentials source that was tried."""

    configured: bool
    """Whether the source was configured; ``False`` means it was skipped."""

    reason: str
    """Why the source did not produce credentials."""

    def __str__(self) -> str:
        state = "failed" if self.configured else "not configured"
        return f"{self.source} ({state}): {self.reason}"


class CredentialsNotFoundError(CredentialsError):
    """Every source in a resolver chain was exhausted without credentials."""

    def __init__(self, attempts: Sequence[ResolverAttempt]):
        self.attempts = tuple(attempts)
        if self.attempts:
            details = "; ".join(str(attempt) for attempt in self.attempts)
        else:
            details = "no credentials sources were configured"
        super().__init__(f"Unable to resolve AWS credentials: {details}.")


class ExpiredOrRejectedCredentialsError(CredentialsError):
    """A downstream service rejected the request signature or credentials.

    Raised by the transport layer; it triggers exactly one forced credential refresh
    and retry.
    """


class HTTPTransportError(AWSAuthError):
    """An HTTP exchange failed before a response was received."""


class SigningConfigurationError(AWSAuthError, ValueError):
    """The signing inputs are malformed or missing required elements."""
