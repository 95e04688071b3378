"""Conditional request and byte range evaluation for a single file.

Modification times are compared at whole-second precision because HTTP dates
carry no fractions. Entity tags are never generated, so ``If-Match`` and
``If-None-Match`` are not evaluated and an entity-tag ``If-Range`` never
matches.
"""

import email.utils
from dataclasses import dataclass
from datetime import timezone
from typing import Optional

RANGE_UNIT_PREFIX = "bytes="


class InvalidRange(ValueError):
    """Raised when a Range header cannot be parsed."""


class RangeNotSatisfiable(Exception):
    """Raised when no requested range overlaps the file."""


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte span ``start .. start + length - 1``."""

    start: int
    length: int

    @property
    def end(self) -> int:
        return self.start + self.length - 1

    def content_range(self, size: int) -> str:
        """Return the Content-Range header value for this span."""
        return f"bytes {self.start}-{self.end}/{size}"


def format_http_date(timestamp: float) -> str:
    """Format a POSIX timestamp as an IMF-fixdate string."""
    return email.utils.formatdate(int(timestamp), usegmt=True)


def parse_http_date(value: Optional[str]) -> Optional[int]:
    """Parse an HTTP date into whole POSIX seconds, or None when invalid."""
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def evaluate_preconditions(
    method: str, headers: dict[str, str], mtime: int
) -> Optional[int]:
    """Return 412 or 304 when a date precondition decides the response.

    ``headers`` uses lowercase names. ``None`` means serve normally.
    """
    unmodified_since = parse_http_date(headers.get("if-unmodified-since"))
    if unmodified_since is not None and mtime > unmodified_since:
        return 412

    if method not in {"GET", "HEAD"}:
        return None
    modified_since = parse_http_date(headers.get("if-modified-since"))
    if modified_since is not None and mtime <= modified_since:
        return 304
    return None


def range_is_applicable(headers: dict[str, str], mtime: int) -> bool:
    """Return False when If-Range says the client's copy is stale."""
    if_range = headers.get("if-range")
    if if_range is None:
        return True
    if_range = if_range.strip()
    if if_range.startswith('"') or if_range.startswith("W/"):
        return False
    validator = parse_http_date(if_range)
    return validator is not None and validator == mtime


def _parse_int(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise InvalidRange(f"invalid range value: {text!r}")
    return int(text)


def _parse_spec(spec: str, size: int) -> Optional[ByteRange]:
    """Parse one range spec; None means it does not overlap the file."""
    start_text, separator, end_text = spec.partition("-")
    if not separator:
        raise InvalidRange(f"invalid range spec: {spec!r}")
    start_text = start_text.strip()
    end_text = end_text.strip()

    if not start_text:
        suffix = _parse_int(end_text)
        suffix = min(suffix, size)
        if suffix == 0:
            return None
        return ByteRange(size - suffix, suffix)

    start = _parse_int(start_text)
    if start >= size:
        return None
    if not end_text:
        return ByteRange(start, size - start)
    end = _parse_int(end_text)
    if start > end:
        raise InvalidRange(f"invalid range spec: {spec!r}")
    end = min(end, size - 1)
    return ByteRange(start, end - start + 1)


def parse_range(header: Optional[str], size: int) -> list[ByteRange]:
    """Parse a ``Range`` header against a file of ``size`` bytes.

    Returns an empty list when there is nothing to apply. Raises
    ``InvalidRange`` for malformed headers and ``RangeNotSatisfiable`` when
    every spec starts beyond the end of the file.
    """
    if not header:
        return []
    if not header.startswith(RANGE_UNIT_PREFIX):
        raise InvalidRange("unsupported range unit")

    ranges: list[ByteRange] = []
    saw_disjoint = False
    for spec in header[len(RANGE_UNIT_PREFIX) :].split(","):
        spec = spec.strip()
        if not spec:
            continue
        byte_range = _parse_spec(spec, size)
        if byte_range is None:
            saw_disjoint = True
            continue
        ranges.append(byte_range)

    if not ranges and saw_disjoint:
        raise RangeNotSatisfiable
    return ranges


def total_length(ranges: list[ByteRange]) -> int:
    """Sum of all span lengths."""
    return sum(byte_range.length for byte_range in ranges)
