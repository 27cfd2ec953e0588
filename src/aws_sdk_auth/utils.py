#  Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
#  SPDX-License-Identifier: Apache-2.0
from datetime import UTC, datetime, timedelta

RFC3339 = "%Y-%m-%dT%H:%M:%SZ"


def ensure_utc(value: datetime) -> datetime:
    """Ensures that the given datetime is a UTC timezone-aware datetime.

    If the datetime isn't timezone-aware, its timezone is set to UTC. If it is aware,
    it's replaced with the equivalent datetime under UTC.

    :param value: A datetime object that may or may not be timezone-aware.
    :returns: A UTC timezone-aware equivalent datetime.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    else:
        return value.astimezone(UTC)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp as returned by credential endpoints into UTC.

    :param value: A timestamp such as ``2025-03-13T07:28:47Z``.
    :raises ValueError: If the value isn't a valid ISO 8601 timestamp.
    """
    return ensure_utc(datetime.fromisoformat(value))


def epoch_millis_to_datetime(value: int | float) -> datetime:
    """Parse a millisecond epoch timestamp into a datetime in UTC."""
    epoch_zero = datetime(1970, 1, 1, 0, 0, 0, tzinfo=UTC)
    return epoch_zero + timedelta(milliseconds=value)


def strict_parse_bool(given: str) -> bool:
    """Parses a case-insensitive ``true``/``false`` string.

    :raises ValueError: if the given string is neither "true" nor "false".
    """
    match given.strip().lower():
        case "true":
            return True
        case "false":
            return False
        case _:
            raise ValueError(f"Expected 'true' or 'false', found: {given}")


def remove_dot_segments(path: str, remove_consecutive_slashes: bool = True) -> str:
    """Removes dot segments from a path per :rfc:`3986#section-5.2.4`.

    Optionally removes consecutive slashes, true by default.

    :param path: The path to modify.
    :param remove_consecutive_slashes: Whether to remove consecutive slashes.
    :returns: The path with dot segments removed.
    """
    output: list[str] = []
    for segment in path.split("/"):
        if segment == ".":
            continue
        elif segment != "..":
            output.append(segment)
        elif output:
            output.pop()
    if path.startswith("/") and (not output or output[0]):
        output.insert(0, "")
    if output and path.endswith(("/.", "/..")):
        output.append("")
    result = "/".join(output)
    if remove_consecutive_slashes:
        result = result.replace("//", "/")
    return result
