"""Identifiers for invocations.

Invocation IDs only need to be readable in logs; uniqueness within a process
is guaranteed by the sequence number carried next to them.
"""

import itertools
import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase
_sequence = itertools.count(1)


def to_base36(number: int) -> str:
    """Render a non-negative integer in base36."""
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits)) or "0"


def generate_short_id(length: int = 16) -> str:
    """Return a ``length``-character ID: millisecond timestamp in base36, padded with random characters."""
    stamp = to_base36(time.time_ns() // 1_000_000)
    if length <= len(stamp):
        return stamp[:length]
    return stamp + "".join(secrets.choice(string.ascii_letters + string.digits) for _ in range(length - len(stamp)))


def next_sequence() -> int:
    """Next value of the process-wide invocation counter; strictly increasing."""
    return next(_sequence)
