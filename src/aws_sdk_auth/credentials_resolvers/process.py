#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import asyncio
import contextlib
import logging
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

from .._identity import AWSCredentialIdentity
from ..exceptions import CredentialsProviderError
from ..interfaces.identity import AWSIdentityProperties, CredentialsResolver
from ._documents import credentials_from_document, load_json_document

logger: Final = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30


@dataclass
class ProcessCredentialsConfig:
    """Configuration for process credential retrieval operations."""

    timeout: float = _DEFAULT_TIMEOUT


class ProcessCredentialsResolver(CredentialsResolver):
    """Resolves AWS Credentials from a process.

    The process must print a Version 1 credentials document to stdout.
    """

    def __init__(
        self,
        command: str | Sequence[str],
        config: ProcessCredentialsConfig | None = None,
    ):
        if isinstance(command, str):
            command = shlex.split(command)
        if not command:
            raise ValueError("command must be non-empty")
        self._command = list(command)
        self._config = config or ProcessCredentialsConfig()

    async def get_identity(
        self, *, properties: AWSIdentityProperties
    ) -> AWSCredentialIdentity:
        logger.debug("Running credential process %s", self._command[0])
        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise CredentialsProviderError(
                f"Unable to start credential process {self._command[0]!r}."
            ) from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._config.timeout
            )
        except TimeoutError as e:
            raise CredentialsProviderError(
                f"Credential process timed out after {self._config.timeout} seconds"
            ) from e
        finally:
            # Also reached on cancellation, which must not leave the child running
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if process.returncode != 0:
            raise CredentialsProviderError(
                "Credential process failed with non-zero exit code: "
                f"{stderr.decode('utf-8', errors='replace')}"
            )
        creds = load_json_document(stdout, source="credential process")

        version = creds.get("Version")
        if version != 1:
            raise CredentialsProviderError(
                f"Unsupported version '{version}' for credential process provider, "
                "supported versions: 1"
            )
        return credentials_from_document(
            creds, source="credential process", session_token_key="SessionToken"
        )
