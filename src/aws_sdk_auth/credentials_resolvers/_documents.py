#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from .._identity import AWSCredentialIdentity
from ..exceptions import CredentialsProviderError
from ..utils import parse_timestamp


def load_json_document(raw: bytes | str, *, source: str) -> dict[str, Any]:
    """Decode a JSON object returned by a credentials source.

    :raises CredentialsProviderError: If the payload isn't a JSON object.
    """
    try:
        document = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CredentialsProviderError(
            f"Unable to parse JSON returned by {source}."
        ) from e
    if not isinstance(document, dict):
        raise CredentialsProviderError(f"Expected a JSON object from {source}.")
    return document


def credentials_from_document(
    document: Mapping[str, Any],
    *,
    source: str,
    session_token_key: str = "Token",
) -> AWSCredentialIdentity:
    """Build credentials from the ``AccessKeyId``/``SecretAccessKey`` document shape
    shared by the metadata endpoints and credential processes.

    :raises CredentialsProviderError: If required keys are missing or malformed.
    """
    access_key_id = document.get("AccessKeyId")
    secret_access_key = document.get("SecretAccessKey")
    if not access_key_id or not secret_access_key:
        raise CredentialsProviderError(
            f"AccessKeyId and SecretAccessKey are required for {source} credentials"
        )

    expiration = document.get("Expiration")
    if expiration is not None:
        try:
            expiration = parse_timestamp(expiration)
        except (TypeError, ValueError) as e:
            raise CredentialsProviderError(
                f"Invalid Expiration {expiration!r} returned by {source}."
            ) from e

    return AWSCredentialIdentity(
        access_key_id=access_key_id,
        secret_access_key=secret_access_key,
        session_token=document.get(session_token_key),
        expiration=expiration,
        account_id=document.get("AccountId"),
    )
