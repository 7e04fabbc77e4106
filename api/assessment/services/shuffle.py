"""
Deterministic Shuffle
Seeded permutations so that re-fetching an attempt reproduces its ordering
without persisting every option order.
"""
from typing import List, Sequence, TypeVar

T = TypeVar("T")

# Linear congruential generator constants (full period modulo 233280).
LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280


def seed_from_parts(*parts) -> int:
    """Sum of the character codes of all parts concatenated."""
    return sum(ord(ch) for ch in "".join(str(part) for part in parts))


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """
    Returns a Fisher-Yates permutation of items driven by an LCG seeded with seed.

    Args:
        items: Sequence to permute. It is not modified.
        seed: Any integer; equal seeds always give equal orderings.

    Returns:
        A new list with the same elements in permuted order.
    """
    result = list(items)
    state = seed % LCG_MODULUS
    for i in range(len(result) - 1, 0, -1):
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        j = (state * (i + 1)) // LCG_MODULUS
        result[i], result[j] = result[j], result[i]
    return result
