# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from .interfaces.identity import AWSCredentialsIdentity


@dataclass(kw_only=True)
class AWSCredentialIdentity(AWSCredentialsIdentity):
    access_key_id: str
    secret_access_key: str = field(repr=False)
    session_token: str | None = field(default=None, repr=False)
    expiration: datetime | None = None
    account_id: str | None = None
    is_anonymous: bool = False

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.is_anonymous:
            return
        if not self.access_key_id or not self.secret_access_key:
            raise ValueError(
                "access_key_id and secret_access_key must be non-empty for "
                "non-anonymous credentials."
            )

    @classmethod
    def anonymous(cls) -> AWSCredentialIdentity:
        """Credentials that mark a request as intentionally unsigned."""
        return cls(access_key_id="", secret_access_key="", is_anonymous=True)

