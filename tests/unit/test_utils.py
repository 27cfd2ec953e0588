#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from datetime import UTC, datetime, timedelta, timezone

import pytest
from aws_sdk_auth.utils import (
    ensure_utc,
    epoch_millis_to_datetime,
    parse_timestamp,
    remove_dot_segments,
    strict_parse_bool,
)


@pytest.mark.parametrize(
    "given, expected",
    [
        (datetime(2025, 1, 1, 12), datetime(2025, 1, 1, 12, tzinfo=UTC)),
        (
            datetime(2025, 1, 1, 12, tzinfo=timezone(timedelta(hours=2))),
            datetime(2025, 1, 1, 10, tzinfo=UTC),
        ),
    ],
)
def test_ensure_utc(given: datetime, expected: datetime) -> None:
    result = ensure_utc(given)
    assert result == expected
    assert result.tzinfo is UTC


@pytest.mark.parametrize(
    "given, expected",
    [
        ("2025-03-13T07:28:47Z", datetime(2025, 3, 13, 7, 28, 47, tzinfo=UTC)),
        ("2025-03-13T09:28:47+02:00", datetime(2025, 3, 13, 7, 28, 47, tzinfo=UTC)),
        ("2025-03-13T07:28:47", datetime(2025, 3, 13, 7, 28, 47, tzinfo=UTC)),
    ],
)
def test_parse_timestamp(given: str, expected: datetime) -> None:
    assert parse_timestamp(given) == expected


def test_parse_invalid_timestamp() -> None:
    with pytest.raises(ValueError):
        parse_timestamp("next tuesday")


def test_epoch_millis_to_datetime() -> None:
    assert epoch_millis_to_datetime(1767225600123) == datetime(
        2026, 1, 1, 0, 0, 0, 123000, tzinfo=UTC
    )


@pytest.mark.parametrize(
    "given, expected",
    [("true", True), ("TRUE", True), (" false ", False), ("False", False)],
)
def test_strict_parse_bool(given: str, expected: bool) -> None:
    assert strict_parse_bool(given) is expected


@pytest.mark.parametrize("given", ["", "1", "yes", "t"])
def test_strict_parse_bool_rejects(given: str) -> None:
    with pytest.raises(ValueError):
        strict_parse_bool(given)


@pytest.mark.parametrize(
    "given, expected",
    [
        ("/", "/"),
        ("/foo/bar", "/foo/bar"),
        ("/foo/./bar", "/foo/bar"),
        ("/foo/../bar", "/bar"),
        ("/foo/bar/..", "/foo/"),
        ("/../..", "/"),
        ("/foo//bar", "/foo/bar"),
        ("/foo/bar/.", "/foo/bar/"),
    ],
)
def test_remove_dot_segments(given: str, expected: str) -> None:
    assert remove_dot_segments(given) == expected


def test_remove_dot_segments_keeps_consecutive_slashes() -> None:
    assert (
        remove_dot_segments("/foo//bar", remove_consecutive_slashes=False)
        == "/foo//bar"
    )
