#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from .profile import (
    CredentialProfile,
    CredentialProfileOptions,
    CredentialProfileType,
    detect_profile_type,
)
from .store import CredentialProfileStore

__all__ = (
    "CredentialProfile",
    "CredentialProfileOptions",
    "CredentialProfileStore",
    "CredentialProfileType",
    "detect_profile_type",
)
