# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import hmac
import threading
from collections.abc import Iterable, Iterator, Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from hashlib import sha256
from itertools import chain
from types import MappingProxyType
from typing import Final
from urllib.parse import parse_qsl, quote

from ._http import URI, AWSRequest, Field
from ._identity import AWSCredentialIdentity
from .exceptions import SigningConfigurationError
from .interfaces.http import FieldPosition
from .utils import ensure_utc, remove_dot_segments

HEADERS_EXCLUDED_FROM_SIGNING: tuple[str, ...] = (
    "accept",
    "accept-encoding",
    "authorization",
    "connection",
    "expect",
    "user-agent",
    "x-amzn-trace-id",
)
DEFAULT_PORTS: dict[str, int] = {"http": 80, "https": 443}

ALGORITHM: Final = "AWS4-HMAC-SHA256"
CHUNK_ALGORITHM: Final = "AWS4-HMAC-SHA256-PAYLOAD"
SIGV4_TIMESTAMP_FORMAT: str = "%Y%m%dT%H%M%SZ"
UNSIGNED_PAYLOAD: str = "UNSIGNED-PAYLOAD"
STREAMING_PAYLOAD: str = "STREAMING-AWS4-HMAC-SHA256-PAYLOAD"
EMPTY_SHA256_HASH = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"

DEFAULT_PRESIGN_EXPIRES: Final = 3600
MAX_PRESIGN_EXPIRES: Final = 604800

_CHUNK_SIGNATURE_PREFIX = ";chunk-signature="
_SIGNATURE_HEX_LENGTH = 64


class PayloadSigningMode(StrEnum):
    SIGNED = "signed"
    """The SHA-256 of the body is part of the signature."""

    UNSIGNED = "unsigned"
    """The body is excluded from the signature with ``UNSIGNED-PAYLOAD``."""

    STREAMING = "streaming"
    """The body is sent ``aws-chunked`` and every chunk is signed separately."""


HeaderPairs = tuple[tuple[str, str], ...]


def _as_pairs(
    values: Mapping[str, str] | Iterable[tuple[str, str]],
) -> HeaderPairs:
    if isinstance(values, Mapping):
        return tuple((str(k), str(v)) for k, v in values.items())
    return tuple((str(k), str(v)) for k, v in values)


@dataclass(frozen=True, kw_only=True)
class SigningContext:
    """Everything about a request that takes part in its signature.

    ``query`` and ``headers`` hold decoded ``(name, value)`` pairs; a name may repeat.
    Mappings are accepted too and converted to pairs.
    """

    method: str
    service: str
    region: str
    path: str = "/"
    query: HeaderPairs = ()
    headers: HeaderPairs = ()
    body: bytes | None = None
    payload_mode: PayloadSigningMode = PayloadSigningMode.SIGNED
    timestamp: datetime | None = None
    expires: int | None = None
    """Lifetime in seconds of a presigned request."""

    uri_encode_path: bool = True
    """Percent-encode the path. Disabled for services such as S3 that sign the path
    as sent."""

    normalize_path: bool = True
    """Remove dot segments from the path before encoding it."""

    content_sha256_header: bool = False
    """Add ``X-Amz-Content-SHA256`` to the signed headers."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "query", _as_pairs(self.query))
        object.__setattr__(self, "headers", _as_pairs(self.headers))
        if self.timestamp is not None:
            object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    @classmethod
    def from_request(
        cls,
        request: AWSRequest,
        *,
        service: str,
        region: str,
        timestamp: datetime | None = None,
        payload_mode: PayloadSigningMode = PayloadSigningMode.SIGNED,
        expires: int | None = None,
        uri_encode_path: bool = True,
        normalize_path: bool = True,
        content_sha256_header: bool = False,
    ) -> SigningContext:
        """Describe an :py:class:`AWSRequest` for signing.

        The ``host`` header is taken from the destination when the request doesn't
        carry one. A signed payload needs the body as bytes or a list of bytes, since
        a one-shot iterator can't be hashed without consuming it.
        """
        headers = list(
            chain.from_iterable(
                fld.as_tuples()
                for fld in request.fields.get_by_type(FieldPosition.HEADER)
            )
        )
        if "host" not in request.fields:
            headers.append(("host", _normalize_host(request.destination)))

        body = request.body
        if body is None or isinstance(body, bytes):
            signed_body = body
        elif isinstance(body, (bytearray, memoryview)):
            signed_body = bytes(body)
        elif isinstance(body, (list, tuple)):
            signed_body = b"".join(body)
        elif payload_mode is PayloadSigningMode.SIGNED:
            raise SigningConfigurationError(
                "A signed payload requires the request body as bytes. Buffer the "
                "body or use an unsigned or streaming payload."
            )
        else:
            signed_body = None

        return cls(
            method=request.method,
            path=request.destination.path or "/",
            query=parse_qsl(request.destination.query or "", keep_blank_values=True),
            headers=headers,
            body=signed_body,
            payload_mode=payload_mode,
            service=service,
            region=region,
            timestamp=timestamp,
            expires=expires,
            uri_encode_path=uri_encode_path,
            normalize_path=normalize_path,
            content_sha256_header=content_sha256_header,
        )


@dataclass(frozen=True, kw_only=True)
class Signature:
    """The outcome of signing a request.

    A header signature carries ``headers`` to add to the request and a presigned
    signature carries ``query_parameters`` to append to its URL.
    """

    signature: str
    credential_scope: str
    signed_headers: str
    canonical_request: str
    string_to_sign: str
    timestamp: str
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    query_parameters: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def apply(self, request: AWSRequest) -> AWSRequest:
        """Return a copy of ``request`` with the signature's headers or query
        parameters merged in."""
        new_request = deepcopy(request)
        for name, value in self.headers.items():
            new_request.fields.set_field(Field(name=name, values=[value]))
        if self.query_parameters:
            signed_query = "&".join(
                f"{quote(k, safe='')}={quote(v, safe='')}"
                for k, v in self.query_parameters.items()
            )
            query = new_request.destination.query
            uri_params = new_request.destination.to_dict()
            uri_params["query"] = f"{query}&{signed_query}" if query else signed_query
            new_request.destination = URI(**uri_params)
        return new_request


def _normalize_host(uri: URI) -> str:
    if uri.port is not None and DEFAULT_PORTS.get(uri.scheme) == uri.port:
        uri_dict = uri.to_dict()
        uri_dict.update({"port": None})
        uri = URI(**uri_dict)
    return uri.netloc


def _hmac(key: bytes, value: str) -> bytes:
    return hmac.new(key=key, msg=value.encode("utf-8"), digestmod=sha256).digest()


@dataclass(frozen=True)
class _SigningScope:
    timestamp: str
    date: str
    region: str
    service: str

    @property
    def credential_scope(self) -> str:
        # Scope format: <YYYYMMDD>/<AWS Region>/<AWS Service>/aws4_request
        return f"{self.date}/{self.region}/{self.service}/aws4_request"


class SigV4Signer:
    """Request signer for applying the AWS Signature Version 4 algorithm.

    The signer holds no state and performs no I/O, so a single instance can be
    shared freely between threads.
    """

    def sign(
        self, context: SigningContext, credentials: AWSCredentialIdentity
    ) -> Signature:
        """Sign a request for the ``Authorization`` header.

        :param context: The request to sign.
        :param credentials: The credentials to sign with.
        :returns: The signature, whose ``headers`` must be added to the request.
        :raises SigningConfigurationError: If the inputs can't be signed.
        """
        scope = self._scope(context, credentials)
        payload_hash = self.payload_hash(context)

        existing = {name.lower() for name, _ in context.headers}
        added: dict[str, str] = {}
        if "x-amz-date" not in existing and "date" not in existing:
            added["X-Amz-Date"] = scope.timestamp
        if credentials.session_token and "x-amz-security-token" not in existing:
            added["X-Amz-Security-Token"] = credentials.session_token
        if (
            context.payload_mode is PayloadSigningMode.STREAMING
            or context.content_sha256_header
        ) and "x-amz-content-sha256" not in existing:
            added["X-Amz-Content-SHA256"] = payload_hash

        fields = self._normalize_signing_fields(
            chain(context.headers, added.items())
        )
        signed_headers = ";".join(fields)
        canonical_request = self.canonical_request(
            method=context.method,
            canonical_path=self._format_canonical_path(context),
            canonical_query=self._format_canonical_query(context.query),
            canonical_fields=self._format_canonical_fields(fields),
            signed_headers=signed_headers,
            payload_hash=payload_hash,
        )
        string_to_sign = self.string_to_sign(
            canonical_request=canonical_request,
            timestamp=scope.timestamp,
            credential_scope=scope.credential_scope,
        )
        signature = self._signature(string_to_sign, credentials, scope)

        authorization = (
            f"{ALGORITHM} "
            f"Credential={credentials.access_key_id}/{scope.credential_scope}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return Signature(
            signature=signature,
            credential_scope=scope.credential_scope,
            signed_headers=signed_headers,
            canonical_request=canonical_request,
            string_to_sign=string_to_sign,
            timestamp=scope.timestamp,
            headers=MappingProxyType({"Authorization": authorization, **added}),
        )

    def presign(
        self, context: SigningContext, credentials: AWSCredentialIdentity
    ) -> Signature:
        """Sign a request in its query string.

        The payload is always ``UNSIGNED-PAYLOAD`` and ``context.expires`` defaults
        to one hour.

        :returns: The signature, whose ``query_parameters`` must be appended to the
            request URL.
        :raises SigningConfigurationError: If the inputs can't be signed or the
            expiry is out of range.
        """
        expires = (
            DEFAULT_PRESIGN_EXPIRES if context.expires is None else context.expires
        )
        if not 1 <= expires <= MAX_PRESIGN_EXPIRES:
            raise SigningConfigurationError(
                f"Presigned requests must expire within 1 to {MAX_PRESIGN_EXPIRES} "
                f"seconds, got {expires}."
            )
        scope = self._scope(context, credentials)
        fields = self._normalize_signing_fields(context.headers)
        signed_headers = ";".join(fields)

        params = {
            "X-Amz-Algorithm": ALGORITHM,
            "X-Amz-Credential": f"{credentials.access_key_id}/{scope.credential_scope}",
            "X-Amz-Date": scope.timestamp,
            "X-Amz-Expires": str(expires),
            "X-Amz-SignedHeaders": signed_headers,
        }
        if credentials.session_token:
            params["X-Amz-Security-Token"] = credentials.session_token

        canonical_request = self.canonical_request(
            method=context.method,
            canonical_path=self._format_canonical_path(context),
            canonical_query=self._format_canonical_query(
                chain(context.query, params.items())
            ),
            canonical_fields=self._format_canonical_fields(fields),
            signed_headers=signed_headers,
            payload_hash=UNSIGNED_PAYLOAD,
        )
        string_to_sign = self.string_to_sign(
            canonical_request=canonical_request,
            timestamp=scope.timestamp,
            credential_scope=scope.credential_scope,
        )
        signature = self._signature(string_to_sign, credentials, scope)
        params["X-Amz-Signature"] = signature
        return Signature(
            signature=signature,
            credential_scope=scope.credential_scope,
            signed_headers=signed_headers,
            canonical_request=canonical_request,
            string_to_sign=string_to_sign,
            timestamp=scope.timestamp,
            query_parameters=MappingProxyType(params),
        )

    def canonical_request(
        self,
        *,
        method: str,
        canonical_path: str,
        canonical_query: str,
        canonical_fields: str,
        signed_headers: str,
        payload_hash: str,
    ) -> str:
        """The canonical request is a standardized string laying out the components used
        in the SigV4 signing algorithm. This is useful to quickly compare inputs to find
        signature mismatches and unintended variances.

        SigV4 defines the canonical request as:
            <HTTPMethod>\n
            <CanonicalURI>\n
            <CanonicalQueryString>\n
            <CanonicalHeaders>\n
            <SignedHeaders>\n
            <HashedPayload>
        """
        return (
            f"{method.upper()}\n"
            f"{canonical_path}\n"
            f"{canonical_query}\n"
            f"{canonical_fields}\n"
            f"{signed_headers}\n"
            f"{payload_hash}"
        )

    def string_to_sign(
        self, *, canonical_request: str, timestamp: str, credential_scope: str
    ) -> str:
        """The string to sign concatenates the formal identifier of the signing
        algorithm, the signing DateTime, the scope of the credentials, and a hash of
        the canonical request.

        SigV4 defines the string to sign as:
            Algorithm \n
            RequestDateTime \n
            CredentialScope  \n
            HashedCanonicalRequest
        """
        return (
            f"{ALGORITHM}\n"
            f"{timestamp}\n"
            f"{credential_scope}\n"
            f"{sha256(canonical_request.encode()).hexdigest()}"
        )

    def signing_key(
        self, *, secret_key: str, date: str, region: str, service: str
    ) -> bytes:
        """Derive the key that is scoped to a specific date, region and service.

        :param date: The signing date as ``YYYYMMDD``.
        """
        # DateKey              = HMAC-SHA256("AWS4"+"<SecretAccessKey>", "<YYYYMMDD>")
        # DateRegionKey        = HMAC-SHA256(<DateKey>, "<aws-region>")
        # DateRegionServiceKey = HMAC-SHA256(<DateRegionKey>, "<aws-service>")
        # SigningKey = HMAC-SHA256(<DateRegionServiceKey>, "aws4_request")
        k_date = _hmac(f"AWS4{secret_key}".encode(), date)
        k_region = _hmac(k_date, region)
        k_service = _hmac(k_region, service)
        return _hmac(k_service, "aws4_request")

    def payload_hash(self, context: SigningContext) -> str:
        match context.payload_mode:
            case PayloadSigningMode.UNSIGNED:
                return UNSIGNED_PAYLOAD
            case PayloadSigningMode.STREAMING:
                return STREAMING_PAYLOAD
            case _:
                if context.body is None:
                    return EMPTY_SHA256_HASH
                return sha256(context.body).hexdigest()

    def _signature(
        self,
        string_to_sign: str,
        credentials: AWSCredentialIdentity,
        scope: _SigningScope,
    ) -> str:
        key = self.signing_key(
            secret_key=credentials.secret_access_key,
            date=scope.date,
            region=scope.region,
            service=scope.service,
        )
        return _hmac(key, string_to_sign).hex()

    def _scope(
        self, context: SigningContext, credentials: AWSCredentialIdentity
    ) -> _SigningScope:
        return _validate(context, credentials)

    def _format_canonical_path(self, context: SigningContext) -> str:
        path = context.path or "/"
        if context.normalize_path:
            path = remove_dot_segments(path)
        if context.uri_encode_path:
            path = quote(string=path, safe="/")
        return path or "/"

    def _format_canonical_query(self, query: Iterable[tuple[str, str]]) -> str:
        query_parts = (
            (quote(string=key, safe=""), quote(string=value, safe=""))
            for key, value in query
        )
        # key-value pairs must be in sorted order for their encoded forms.
        return "&".join(f"{key}={value}" for key, value in sorted(query_parts))

    def _normalize_signing_fields(
        self, headers: Iterable[tuple[str, str]]
    ) -> dict[str, str]:
        normalized: dict[str, list[str]] = {}
        for name, value in headers:
            field_name = name.lower().strip()
            if not self._is_signable_header(field_name):
                continue
            normalized.setdefault(field_name, []).append(" ".join(value.split()))
        if "host" not in normalized:
            raise SigningConfigurationError(
                "A host header is required to sign a request."
            )
        return {name: ",".join(normalized[name]) for name in sorted(normalized)}

    def _is_signable_header(self, field_name: str) -> bool:
        return field_name not in HEADERS_EXCLUDED_FROM_SIGNING

    def _format_canonical_fields(self, fields: Mapping[str, str]) -> str:
        return "".join(f"{key}:{value}\n" for key, value in fields.items())


def _validate(
    context: SigningContext, credentials: AWSCredentialIdentity
) -> _SigningScope:
    if credentials.is_anonymous:
        raise SigningConfigurationError("Anonymous credentials can't sign requests.")
    if not credentials.access_key_id or not credentials.secret_access_key:
        raise SigningConfigurationError(
            "Signing requires an access key id and a secret access key."
        )
    if not context.region:
        raise SigningConfigurationError("A signing region is required.")
    if not context.service:
        raise SigningConfigurationError("A signing service name is required.")
    if context.timestamp is None:
        raise SigningConfigurationError("A signing timestamp is required.")
    if (
        credentials.expiration is not None
        and credentials.expiration <= context.timestamp
    ):
        raise SigningConfigurationError(
            f"Provided credentials expired at {credentials.expiration}. Please "
            "refresh the credentials or update the expiration parameter."
        )
    timestamp = context.timestamp.strftime(SIGV4_TIMESTAMP_FORMAT)
    return _SigningScope(
        timestamp=timestamp,
        date=timestamp[0:8],
        region=context.region,
        service=context.service,
    )


class ChunkSigner:
    """Signs the chunks of an ``aws-chunked`` streaming payload.

    Each chunk signature covers the previous one, starting from the seed signature
    of the request itself, so chunks must be signed in the order they are sent. The
    chain ends with a zero-length chunk.
    """

    def __init__(
        self,
        *,
        context: SigningContext,
        credentials: AWSCredentialIdentity,
        seed_signature: str,
    ):
        scope = _validate(context, credentials)
        self._timestamp = scope.timestamp
        self._credential_scope = scope.credential_scope
        self._signing_key = SigV4Signer().signing_key(
            secret_key=credentials.secret_access_key,
            date=scope.date,
            region=scope.region,
            service=scope.service,
        )
        self._prior_signature = seed_signature
        self._finished = False
        self._signing_lock = threading.Lock()

    @property
    def finished(self) -> bool:
        """Whether the terminating zero-length chunk has been signed."""
        return self._finished

    def sign_chunk(self, chunk: bytes) -> str:
        """Sign the next chunk and advance the chain.

        :raises SigningConfigurationError: If the final chunk was already signed.
        """
        with self._signing_lock:
            if self._finished:
                raise SigningConfigurationError(
                    "The chunk signature chain already ended with the final chunk."
                )
            string_to_sign = (
                f"{CHUNK_ALGORITHM}\n"
                f"{self._timestamp}\n"
                f"{self._credential_scope}\n"
                f"{self._prior_signature}\n"
                f"{EMPTY_SHA256_HASH}\n"
                f"{sha256(chunk).hexdigest()}"
            )
            signature = _hmac(self._signing_key, string_to_sign).hex()
            # set new prior signature before releasing the lock
            self._prior_signature = signature
            if not chunk:
                self._finished = True
        return signature

    def encode_chunk(self, chunk: bytes) -> bytes:
        """Sign a chunk and frame it for the wire."""
        signature = self.sign_chunk(chunk)
        header = f"{len(chunk):x}{_CHUNK_SIGNATURE_PREFIX}{signature}\r\n"
        return header.encode("ascii") + chunk + b"\r\n"

    def iter_chunks(self, body: Iterable[bytes]) -> Iterator[bytes]:
        """Frame every non-empty chunk of ``body`` followed by the final chunk."""
        for chunk in body:
            if chunk:
                yield self.encode_chunk(chunk)
        yield self.encode_chunk(b"")


def aws_chunked_content_length(content_length: int, chunk_size: int) -> int:
    """The length of a body of ``content_length`` bytes once sent ``aws-chunked`` in
    chunks of ``chunk_size`` bytes."""
    if content_length < 0 or chunk_size <= 0:
        raise ValueError("content_length must be >= 0 and chunk_size must be > 0")

    def frame_length(size: int) -> int:
        return (
            len(f"{size:x}")
            + len(_CHUNK_SIGNATURE_PREFIX)
            + _SIGNATURE_HEX_LENGTH
            + 2
            + size
            + 2
        )

    full_chunks, remainder = divmod(content_length, chunk_size)
    length = full_chunks * frame_length(chunk_size) + frame_length(0)
    if remainder:
        length += frame_length(remainder)
    return length
