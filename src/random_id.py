"""Randomized identifiers for namespacing concurrently running test resources."""

import random
import string
from typing import Optional

ALPHABET = string.ascii_lowercase + string.digits
DEFAULT_LENGTH = 6


def unique_id(length: int = DEFAULT_LENGTH, rng: Optional[random.Random] = None) -> str:
    """Return a short lowercase alphanumeric token.

    36^6 (~2.2 billion) combinations keeps collisions negligible within a
    single test session. Names built from it stay valid for cloud resources
    with tight length and charset rules (e.g. ALB names).

    Args:
        length: Number of characters (must be positive)
        rng: Generator to draw from; defaults to a fresh SystemRandom

    Returns:
        Token such as 'k3x9qa'
    """
    if length < 1:
        raise ValueError(f"length must be positive, got {length}")
    rng = rng or random.SystemRandom()
    return ''.join(rng.choice(ALPHABET) for _ in range(length))
