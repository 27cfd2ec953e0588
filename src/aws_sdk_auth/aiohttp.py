#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from collections.abc import Iterable
from itertools import chain
from urllib.parse import parse_qsl, urlunparse

import aiohttp

from ._http import Field, Fields, HTTPResponse
from .exceptions import HTTPTransportError
from .interfaces.http import URI, FieldPosition, HTTPClient, Request


class AIOHTTPClient(HTTPClient):
    """Implementation of :py:class:`.interfaces.http.HTTPClient` using aiohttp.

    The underlying session is created on first use so the client can be
    constructed outside of a running event loop.
    """

    def __init__(self, *, _session: aiohttp.ClientSession | None = None) -> None:
        self._session = _session

    async def send(
        self, request: Request, *, timeout: float | None = None
    ) -> HTTPResponse:
        """Send HTTP request using aiohttp client.

        :param request: The request including destination URI, fields, payload.
        :param timeout: Total number of seconds the exchange may take.
        :raises HTTPTransportError: If the exchange fails before a response arrives.
        """
        if self._session is None:
            self._session = aiohttp.ClientSession()

        headers_list = list(
            chain.from_iterable(
                fld.as_tuples()
                for fld in request.fields.get_by_type(FieldPosition.HEADER)
            )
        )

        try:
            async with self._session.request(
                method=request.method,
                url=self._serialize_uri_without_query(request.destination),
                params=parse_qsl(
                    request.destination.query or "", keep_blank_values=True
                ),
                headers=headers_list,
                data=self._serialize_body(request.body),
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                return await self._marshal_response(resp)
        except aiohttp.ClientError as e:
            raise HTTPTransportError(
                f"Request to {request.destination.netloc} failed: {e}"
            ) from e

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> AIOHTTPClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _serialize_uri_without_query(self, uri: URI) -> str:
        """Serialize all parts of the URI up to and including the path."""
        components = (uri.scheme, uri.netloc, uri.path or "", "", "", "")
        return urlunparse(components)

    def _serialize_body(self, body: Iterable[bytes] | bytes | None) -> bytes | None:
        if body is None or isinstance(body, bytes):
            return body
        return b"".join(body)

    async def _marshal_response(
        self, aiohttp_resp: aiohttp.ClientResponse
    ) -> HTTPResponse:
        """Convert a ``aiohttp.ClientResponse`` to a buffered ``HTTPResponse``."""
        headers = Fields()
        for header_name, header_val in aiohttp_resp.headers.items():
            try:
                headers[header_name].add(header_val)
            except KeyError:
                headers[header_name] = Field(
                    name=header_name,
                    values=[header_val],
                    kind=FieldPosition.HEADER,
                )

        return HTTPResponse(
            status=aiohttp_resp.status,
            fields=headers,
            body=await aiohttp_resp.read(),
            reason=aiohttp_resp.reason,
        )
