"""Unit tests for random key generation."""

from collections import Counter

import pytest

from catd.domain.errors import EntropySourceError
from catd.domain.random_key import (
    DEFAULT_KEY_LENGTH,
    LETTERS,
    generate_random_key,
)


class ScriptedEntropy:
    """Entropy source replaying fixed byte batches and recording requests."""

    def __init__(self, *batches: bytes):
        self._batches = list(batches)
        self.requests: list[int] = []

    def __call__(self, size: int) -> bytes:
        self.requests.append(size)
        batch = self._batches.pop(0)
        return batch.ljust(size, b"\xff")


def test_default_key_has_default_length_and_alphabet():
    """Keys are drawn only from ASCII letters."""
    key = generate_random_key()

    assert len(key) == DEFAULT_KEY_LENGTH
    assert set(key) <= set(LETTERS)


@pytest.mark.parametrize("length", [1, 8, 64, 1000])
def test_key_length_matches_request(length):
    """Every requested length is honored exactly."""
    assert len(generate_random_key(length)) == length


def test_bytes_are_masked_to_six_bits():
    """Only the low six bits of each byte select a letter."""
    source = ScriptedEntropy(bytes([0, 0x40 | 1, 0x80 | 25, 0xC0 | 26, 51]))

    assert generate_random_key(5, source) == "abzAZ"


def test_out_of_range_indices_are_rejected_not_wrapped():
    """Indices 52-63 are skipped and more bytes are drawn."""
    source = ScriptedEntropy(bytes([52, 63, 0x3F]), bytes([2, 3, 4]))

    assert generate_random_key(3, source) == "cde"
    assert source.requests == [4, 4]


def test_batches_are_larger_than_the_key():
    """Batches are sized at 1.3 times the key length, rounded up."""
    source = ScriptedEntropy(bytes(range(4)))

    assert generate_random_key(4, source) == "abcd"
    assert source.requests == [6]


def test_distribution_is_roughly_uniform():
    """Over many draws every letter appears close to its expected share."""
    counts = Counter(generate_random_key(52_000))

    assert set(counts) == set(LETTERS)
    expected = 1000
    assert all(abs(count - expected) < 250 for count in counts.values())


def test_entropy_failure_is_reported():
    """OS errors from the entropy source become EntropySourceError."""

    def failing_source(_size):
        raise OSError("no entropy")

    with pytest.raises(EntropySourceError):
        generate_random_key(8, failing_source)


def test_short_read_is_reported():
    """A source returning fewer bytes than requested is an error."""
    with pytest.raises(EntropySourceError):
        generate_random_key(8, lambda size: b"\x00" * (size - 1))


@pytest.mark.parametrize("length", [0, -1, True, 2.5])
def test_invalid_lengths_are_rejected(length):
    """Length must be a positive integer."""
    with pytest.raises(ValueError):
        generate_random_key(length)
