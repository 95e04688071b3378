"""Unit tests for conditional request and Range evaluation."""

import pytest

from catd.domain.conditional import (
    ByteRange,
    InvalidRange,
    RangeNotSatisfiable,
    evaluate_preconditions,
    format_http_date,
    parse_http_date,
    parse_range,
    range_is_applicable,
    total_length,
)

MTIME = 1_700_000_000
LAST_MODIFIED = format_http_date(MTIME)
EARLIER = format_http_date(MTIME - 60)


def test_http_dates_round_trip_at_second_precision():
    """Formatted dates are IMF-fixdate and parse back to the same second."""
    assert LAST_MODIFIED == "Tue, 14 Nov 2023 22:13:20 GMT"
    assert parse_http_date(LAST_MODIFIED) == MTIME


@pytest.mark.parametrize("value", [None, "", "yesterday", "Tue, 99 Nov 2023"])
def test_invalid_dates_are_ignored(value):
    """Unparseable validators behave as if absent."""
    assert parse_http_date(value) is None


def test_if_modified_since_yields_not_modified():
    """A copy at least as new as the file gets 304."""
    assert evaluate_preconditions("GET", {"if-modified-since": LAST_MODIFIED}, MTIME) == 304
    assert evaluate_preconditions("HEAD", {"if-modified-since": LAST_MODIFIED}, MTIME) == 304
    assert evaluate_preconditions("GET", {"if-modified-since": EARLIER}, MTIME) is None


def test_if_unmodified_since_yields_precondition_failed():
    """A file changed after the validator fails the precondition."""
    assert evaluate_preconditions("GET", {"if-unmodified-since": EARLIER}, MTIME) == 412
    assert (
        evaluate_preconditions("GET", {"if-unmodified-since": LAST_MODIFIED}, MTIME)
        is None
    )


def test_no_validators_serves_normally():
    """Without conditional headers the full response is served."""
    assert evaluate_preconditions("GET", {}, MTIME) is None


def test_if_range_with_matching_date_keeps_ranges():
    """Ranges apply only when the If-Range date matches exactly."""
    assert range_is_applicable({}, MTIME)
    assert range_is_applicable({"if-range": LAST_MODIFIED}, MTIME)
    assert not range_is_applicable({"if-range": EARLIER}, MTIME)
    assert not range_is_applicable({"if-range": '"etag"'}, MTIME)


@pytest.mark.parametrize(
    "header, expected",
    [
        ("bytes=0-9", [ByteRange(0, 10)]),
        ("bytes=90-", [ByteRange(90, 10)]),
        ("bytes=-5", [ByteRange(95, 5)]),
        ("bytes=-500", [ByteRange(0, 100)]),
        ("bytes=95-500", [ByteRange(95, 5)]),
        ("bytes=0-0, 10-19", [ByteRange(0, 1), ByteRange(10, 10)]),
        ("bytes=0-1, 200-300", [ByteRange(0, 2)]),
    ],
)
def test_parse_range_clamps_to_file_size(header, expected):
    """Specs are clamped to the file and disjoint specs are dropped."""
    assert parse_range(header, 100) == expected


def test_parse_range_without_header_returns_nothing():
    """An absent header means the whole file."""
    assert parse_range(None, 100) == []


def test_parse_range_with_no_overlap_is_not_satisfiable():
    """Every spec beyond the end of the file yields 416."""
    with pytest.raises(RangeNotSatisfiable):
        parse_range("bytes=100-200", 100)
    with pytest.raises(RangeNotSatisfiable):
        parse_range("bytes=0-", 0)


@pytest.mark.parametrize(
    "header", ["items=0-1", "bytes=a-b", "bytes=5-1", "bytes=1", "bytes=+1-2"]
)
def test_parse_range_rejects_malformed_headers(header):
    """Malformed specs raise InvalidRange."""
    with pytest.raises(InvalidRange):
        parse_range(header, 100)


def test_content_range_and_total_length():
    """Helpers describe spans the way headers need them."""
    ranges = [ByteRange(0, 10), ByteRange(50, 5)]

    assert ranges[1].content_range(100) == "bytes 50-54/100"
    assert total_length(ranges) == 15
