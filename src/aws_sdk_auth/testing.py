#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

from collections import deque
from copy import deepcopy
from typing import Any

from ._http import HTTPResponse, tuples_to_fields
from .interfaces.http import HTTPClient, Request


class MockHTTPClient(HTTPClient):
    """Implementation of :py:class:`.interfaces.http.HTTPClient` solely for testing
    purposes.

    Simulates HTTP request/response behavior. Responses are queued in FIFO order and
    requests are captured for inspection.
    """

    def __init__(self) -> None:
        self._response_queue: deque[dict[str, Any] | BaseException] = deque()
        self._captured_requests: list[Request] = []
        self._captured_timeouts: list[float | None] = []

    def add_response(
        self,
        status: int = 200,
        headers: list[tuple[str, str]] | None = None,
        body: bytes = b"",
    ) -> None:
        """Queue a response for the next request.

        :param status: HTTP status code.
        :param headers: HTTP response headers as list of (name, value) tuples.
        :param body: Response body as bytes.
        """
        self._response_queue.append(
            {
                "status": status,
                "headers": headers or [],
                "body": body,
            }
        )

    def add_error(self, error: BaseException) -> None:
        """Queue an exception to be raised by the next request."""
        self._response_queue.append(error)

    async def send(
        self, request: Request, *, timeout: float | None = None
    ) -> HTTPResponse:
        """Send HTTP request and return configured response.

        :param request: The request including destination URI, fields, payload.
        :param timeout: Recorded for inspection, never enforced.
        :returns: Pre-configured HTTP response from the queue.
        :raises MockHTTPClientError: If no responses are queued.
        """
        self._captured_requests.append(deepcopy(request))
        self._captured_timeouts.append(timeout)

        if not self._response_queue:
            raise MockHTTPClientError(
                "No responses queued in MockHTTPClient. Use add_response() to "
                "queue responses."
            )

        response_data = self._response_queue.popleft()
        if isinstance(response_data, BaseException):
            raise response_data
        return HTTPResponse(
            status=response_data["status"],
            fields=tuples_to_fields(response_data["headers"]),
            body=response_data["body"],
        )

    @property
    def call_count(self) -> int:
        """The number of requests made to this client."""
        return len(self._captured_requests)

    @property
    def captured_requests(self) -> list[Request]:
        """The list of all requests captured by this client."""
        return self._captured_requests.copy()

    @property
    def captured_timeouts(self) -> list[float | None]:
        return self._captured_timeouts.copy()

    def __deepcopy__(self, memo: Any) -> MockHTTPClient:
        return self


class MockHTTPClientError(Exception):
    """Exception raised by MockHTTPClient for test setup issues."""
