"""Cryptographically secure integer sampling for winner draws.

Every random decision the engine makes goes through :func:`secure_randint`.
It reads from :func:`secrets.token_bytes` and uses rejection sampling, so a
range that does not divide the byte space evenly still yields a uniform
result instead of the skew ``int(bytes) % range`` would give.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable

TokenSource = Callable[[int], bytes]


def bytes_needed(span: int) -> int:
    """Return the fewest bytes whose value space covers ``span`` outcomes."""
    if span < 1:
        raise ValueError(f"span must be positive, got {span}")
    return max(1, ((span - 1).bit_length() + 7) // 8)


def secure_randint(
    minimum: int, maximum: int, *, token_bytes: TokenSource = secrets.token_bytes
) -> int:
    """Return a uniformly distributed integer in ``[minimum, maximum]``."""
    span = maximum - minimum + 1
    if span < 1:
        raise ValueError(f"empty range [{minimum}, {maximum}]")
    if span == 1:
        return minimum

    width = bytes_needed(span)
    max_valid = (256**width // span) * span - 1
    while True:
        value = int.from_bytes(token_bytes(width), "big")
        if value <= max_valid:
            return minimum + value % span


__all__ = ["TokenSource", "bytes_needed", "secure_randint"]
