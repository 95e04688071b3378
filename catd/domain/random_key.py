"""Access key generation from the operating system CSPRNG.

Bytes are drawn in batches slightly larger than the requested length. Each
byte is masked to 6 bits (0-63) and values outside the 52-letter alphabet are
rejected, so every letter is equally likely. Reducing with a modulo would
favour the first 12 letters.
"""

import logging
import math
import secrets
from typing import Callable

from catd.domain.correlation_id import CorrelationLoggerAdapter
from catd.domain.errors import EntropySourceError

KEY_LOGGER = CorrelationLoggerAdapter(logging.getLogger("catd.random_key"), {})

LETTERS = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
LETTER_INDEX_BITS = 6
LETTER_INDEX_MASK = (1 << LETTER_INDEX_BITS) - 1
BATCH_FACTOR = 1.3
DEFAULT_KEY_LENGTH = 8

EntropySource = Callable[[int], bytes]


def _read_batch(entropy_source: EntropySource, size: int) -> bytes:
    try:
        batch = entropy_source(size)
    except (OSError, NotImplementedError) as error:
        raise EntropySourceError(f"couldn't create random bytes: {error}") from error
    if len(batch) < size:
        raise EntropySourceError(
            f"couldn't create random bytes: got {len(batch)} of {size}"
        )
    return batch


def generate_random_key(
    length: int = DEFAULT_KEY_LENGTH,
    entropy_source: EntropySource = secrets.token_bytes,
) -> str:
    """Return ``length`` letters drawn uniformly from ``[a-zA-Z]``.

    Raises:
        ValueError: if ``length`` is not a positive integer.
        EntropySourceError: if the entropy source fails or returns short.
    """
    if isinstance(length, bool) or not isinstance(length, int) or length <= 0:
        raise ValueError("length must be a positive integer")

    batch_size = max(1, math.ceil(length * BATCH_FACTOR))
    letters: list[str] = []
    batches = 0
    while len(letters) < length:
        batch = _read_batch(entropy_source, batch_size)
        batches += 1
        for byte in batch:
            index = byte & LETTER_INDEX_MASK
            if index >= len(LETTERS):
                continue
            letters.append(LETTERS[index])
            if len(letters) == length:
                break

    if KEY_LOGGER.logger.isEnabledFor(logging.DEBUG):
        KEY_LOGGER.debug(
            "Random key generated",
            extra={"event": "random_key_generated", "length": length, "batches": batches},
        )
    return "".join(letters)
