"""Retry delay calculation."""

import random
from typing import Callable


def exponential_backoff_ms(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    jitter_ms: int = 0,
    rand: Callable[[], float] = random.random,
) -> int:
    """
    Compute an exponential retry delay with jitter, bounded by a ceiling.

    The first retry waits ``base_delay_ms``, each further attempt doubles it.

    Args:
        attempt: Number of attempts made so far (1 for the first failure)
        base_delay_ms: Delay for the first retry
        max_delay_ms: Ceiling applied after jitter
        jitter_ms: Upper bound of the uniform random jitter added
        rand: Source of floats in [0, 1)

    Returns:
        Delay in milliseconds
    """
    exponent = max(attempt - 1, 0)
    delay = min(base_delay_ms * (2**exponent), max_delay_ms)
    if jitter_ms > 0:
        delay += int(rand() * jitter_ms)
    return int(min(delay, max_delay_ms))
