# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
"""AWS SDK Auth resolves AWS credentials from the standard sources and signs requests
with AWS Signature Version 4."""

from __future__ import annotations

__license__ = "Apache-2.0"
__version__ = "0.1.0"

from ._http import URI, AWSRequest, Field, Fields  # noqa: E402
from ._identity import AWSCredentialIdentity  # noqa: E402
from .cache import CredentialsCache, invoke_with_refresh  # noqa: E402
from .config import AuthConfig  # noqa: E402
from .signers import (  # noqa: E402
    ChunkSigner,
    PayloadSigningMode,
    Signature,
    SigningContext,
    SigV4Signer,
    aws_chunked_content_length,
)

__all__ = (
    "URI",
    "AWSCredentialIdentity",
    "AWSRequest",
    "AuthConfig",
    "ChunkSigner",
    "CredentialsCache",
    "Field",
    "Fields",
    "PayloadSigningMode",
    "SigV4Signer",
    "Signature",
    "SigningContext",
    "aws_chunked_content_length",
    "invoke_with_refresh",
)
